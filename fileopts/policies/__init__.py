"""
FileOpts Policies — per-field collision-resolution modes.
"""

from fileopts.policies.backends import (
    MemoryConfigBackend,
    SqlConfigBackend,
    YamlConfigBackend,
)
from fileopts.policies.models import REMOVE_SENTINEL, FieldPolicy, UploadMode
from fileopts.policies.store import PolicyStore

__all__ = [
    "UploadMode",
    "FieldPolicy",
    "REMOVE_SENTINEL",
    "PolicyStore",
    "MemoryConfigBackend",
    "YamlConfigBackend",
    "SqlConfigBackend",
]
