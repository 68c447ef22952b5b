"""
FileOpts Policy Models — collision-resolution modes and field policies.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from fileopts.engine.errors import FileOptsConfigError
from fileopts.fields import FieldKey

# Submitting this value for a custom field deletes its entry
REMOVE_SENTINEL = 99


class UploadMode(IntEnum):
    """What happens when the destination file already exists."""

    INHERIT = -1  # defer to the system default
    RENAME = 0    # keep both, suffix the new name
    REPLACE = 1   # overwrite the existing file, reuse its record
    REJECT = 2    # refuse the upload

    @property
    def is_concrete(self) -> bool:
        return self is not UploadMode.INHERIT

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> "UploadMode":
        """
        Accept an UploadMode, an int (-1..2), a numeric string or a mode
        name ("rename", "REPLACE"). Anything else is a configuration error.
        """
        if isinstance(value, UploadMode):
            return value
        if isinstance(value, bool):
            raise FileOptsConfigError(f"Invalid upload mode {value!r}", value=value)
        if isinstance(value, str):
            text = value.strip()
            try:
                value = int(text)
            except ValueError:
                try:
                    return cls[text.upper()]
                except KeyError:
                    raise FileOptsConfigError(f"Invalid upload mode '{value}'", value=value)
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise FileOptsConfigError(f"Invalid upload mode {value}", value=value)
        raise FileOptsConfigError(f"Invalid upload mode {value!r}", value=value)


_LABELS = {
    UploadMode.INHERIT: "Current behaviour",
    UploadMode.RENAME: "Rename the new file",
    UploadMode.REPLACE: "Replace the existing file",
    UploadMode.REJECT: "Prevent the file from being uploaded",
}


@dataclass(frozen=True)
class FieldPolicy:
    """Stored mode for one field. Provenance is informational only."""

    key: FieldKey
    mode: UploadMode

    @property
    def provenance(self) -> str:
        return "custom" if self.key.is_custom else "schema"

    def to_dict(self) -> dict:
        return {
            "field_key": self.key.canonical,
            "mode": int(self.mode),
            "mode_name": self.mode.name.lower(),
            "provenance": self.provenance,
        }
