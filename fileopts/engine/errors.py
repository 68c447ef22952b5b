"""
FileOpts Error Hierarchy — Structured exceptions for the upload pipeline.

All errors carry JSON-serializable context so the transport layer can log
them and map them to HTTP responses without inspecting messages.

Hierarchy:
    FileOptsError
    ├── FileOptsConfigError         — Invalid mode / field key / config file
    ├── FileOptsFieldNotFoundError  — Upload target field is unknown
    ├── FileOptsDestinationError    — Destination directory not writable
    ├── FileOptsConflictError       — Reject mode hit an existing file
    ├── FileOptsLockedError         — Destination lock not acquired in budget
    ├── FileOptsValidationError     — Prepared record failed validation
    ├── FileOptsMoveError           — Staged payload could not be moved
    ├── FileOptsPersistError        — Metadata save failed after the move
    └── FileOptsExhaustionError     — Rename ran out of suffixed names
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class FileOptsError(Exception):
    """
    Base error for all FileOpts failures.
    Context keyword arguments are kept verbatim and serialized by to_dict().
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.execution_id: Optional[str] = context.get("execution_id")
        self.field_key: Optional[str] = context.get("field_key")
        self.path: Optional[str] = context.get("path")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to JSON-compatible dict for logging and responses."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "execution_id": self.execution_id,
            "field_key": self.field_key,
            "path": self.path,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("execution_id", "field_key", "path")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.field_key:
            parts.append(f"field_key={self.field_key}")
        if self.path:
            parts.append(f"path={self.path}")
        if self.execution_id:
            parts.append(f"execution_id={self.execution_id}")
        return " | ".join(parts)


class FileOptsConfigError(FileOptsError):
    """Configuration error — invalid mode value, field key or fileopts.yaml."""

    def __init__(self, message: str, **context: Any):
        self.value: Any = context.get("value")
        super().__init__(message, **context)


class FileOptsFieldNotFoundError(FileOptsError):
    """The entity type / bundle / field combination accepts no uploads."""
    pass


class FileOptsDestinationError(FileOptsError):
    """Destination directory could not be created or is not writable."""
    pass


class FileOptsConflictError(FileOptsError):
    """Reject mode found an existing file at the destination. Nothing was written."""
    pass


class FileOptsLockedError(FileOptsError):
    """
    The per-destination lock is held by another request.
    Retryable: carries the suggested delay in seconds.
    """

    def __init__(self, message: str, **context: Any):
        self.retry_after: int = int(context.get("retry_after", 1))
        self.lock_id: Optional[str] = context.get("lock_id")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["retry_after"] = self.retry_after
        d["lock_id"] = self.lock_id
        return d


class FileOptsValidationError(FileOptsError):
    """
    Prepared file record failed field/entity validation.
    Includes per-check error details.
    """

    def __init__(self, message: str, **context: Any):
        self.validation_errors: List[Dict[str, str]] = context.get("validation_errors") or []
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class FileOptsMoveError(FileOptsError):
    """Staged payload could not be moved into place (I/O error)."""
    pass


class FileOptsPersistError(FileOptsError):
    """
    Metadata save failed after the payload was moved.
    Bytes now exist at the destination without a matching record.
    """
    pass


class FileOptsExhaustionError(FileOptsError):
    """Rename probing found no free name within the attempt budget."""

    def __init__(self, message: str, **context: Any):
        self.attempts: Optional[int] = context.get("attempts")
        super().__init__(message, **context)
