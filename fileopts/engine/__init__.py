"""FileOpts Engine — configuration, errors, logging, request context, locks."""

from fileopts.engine.errors import FileOptsError  # noqa: F401
from fileopts.engine.locks import MemoryLockService, RedisLockService, create_lock_service  # noqa: F401

__all__ = [
    "FileOptsError",
    "MemoryLockService",
    "RedisLockService",
    "create_lock_service",
]
