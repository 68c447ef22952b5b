"""
FileOpts Upload Validation — per-field checks run before a payload is moved.

Checks (all violations collected, then raised together):
    1. Filename not empty
    2. Filename length (240 chars)
    3. Extension allow-list (space separated, empty allows any)
    4. Size limit (field limit, else platform limit; 0 disables)

Empty payloads are accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional

from fileopts.engine.errors import FileOptsValidationError
from fileopts.files.filesystem import FILENAME_MAX_LENGTH, safe_filename, split_extension

if TYPE_CHECKING:
    from fileopts.fields import FieldDefinition
    from fileopts.files.models import FileRecord
    from fileopts.files.staging import StagedPayload

logger = logging.getLogger("fileopts.files.validation")


@dataclass(frozen=True)
class UploadValidators:
    file_extensions: str = ""
    max_filesize_bytes: int = 0
    filename_max_length: int = FILENAME_MAX_LENGTH

    @classmethod
    def from_field(
        cls,
        definition: "FieldDefinition",
        platform_max_bytes: int = 0,
    ) -> "UploadValidators":
        """Field settings win; a field limit of 0 falls back to the platform limit."""
        return cls(
            file_extensions=definition.file_extensions,
            max_filesize_bytes=definition.max_filesize_bytes or platform_max_bytes,
        )

    @property
    def allowed_extensions(self) -> List[str]:
        return [ext.lower().lstrip(".") for ext in self.file_extensions.split() if ext]


def munge_filename(filename: str, allowed_extensions: List[str]) -> str:
    """
    Append ``_`` to every inner extension not on the allow-list, so
    ``evil.php.txt`` is stored as ``evil.php_.txt``. No-op without an
    allow-list.
    """
    if not allowed_extensions:
        return filename
    parts = filename.split(".")
    if len(parts) <= 2:
        return filename
    head, inner, last = parts[0], parts[1:-1], parts[-1]
    munged = [p if p.lower() in allowed_extensions else p + "_" for p in inner]
    return ".".join([head] + munged + [last])


def prepare_filename(filename: str, validators: Optional[UploadValidators] = None) -> str:
    """Sanitize, munge and truncate a client filename."""
    validators = validators or UploadValidators()
    name = safe_filename(filename, validators.filename_max_length)
    name = munge_filename(name, validators.allowed_extensions)
    if len(name) > validators.filename_max_length:
        base, ext = split_extension(name)
        name = base[:validators.filename_max_length - len(ext)] + ext
    return name


class UploadValidator:
    """Runs UploadValidators against a record about to be written."""

    def validate(
        self,
        record: "FileRecord",
        payload: "StagedPayload",
        validators: Optional[UploadValidators] = None,
    ) -> None:
        validators = validators or UploadValidators()
        errors: List[Dict[str, str]] = []
        filename = record.filename or ""

        if not filename:
            errors.append({"field": "filename", "error": "The file's name is empty. Please give a name to the file."})
        elif len(filename) > validators.filename_max_length:
            errors.append({
                "field": "filename",
                "error": (
                    f"The file's name exceeds the {validators.filename_max_length} "
                    f"characters limit. Please rename the file and try again."
                ),
            })

        allowed = validators.allowed_extensions
        if allowed and filename:
            _, ext = split_extension(filename)
            if ext.lstrip(".").lower() not in allowed:
                errors.append({
                    "field": "file_extensions",
                    "error": f"Only files with the following extensions are allowed: {validators.file_extensions}.",
                })

        limit = validators.max_filesize_bytes
        if limit and payload.size > limit:
            errors.append({
                "field": "size",
                "error": (
                    f"The file is {payload.size} bytes exceeding the "
                    f"maximum file size of {limit} bytes."
                ),
            })

        if errors:
            logger.warning(f"Upload of '{filename}' failed validation: {len(errors)} error(s)")
            raise FileOptsValidationError(
                f"Unprocessable upload '{filename}'",
                validation_errors=errors,
                path=record.uri,
            )
