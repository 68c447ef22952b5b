"""
FileOpts File Models — managed file records and resolver value types.

FileRecord: metadata row for a file on disk (SQLAlchemy, ``file_managed``).
UploadRequest: what the transport hands to the resolver.
ResolutionOutcome: what the resolver hands back.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import BigInteger, Column, Index, Integer, SmallInteger, String

from fileopts.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from fileopts.files.staging import StagedPayload
    from fileopts.files.validation import UploadValidators
    from fileopts.policies.models import UploadMode

logger = logging.getLogger("fileopts.files.models")

STATUS_TEMPORARY = 0
STATUS_PERMANENT = 1


class FileRecord(Base, TimestampMixin):
    """
    Managed file metadata. ``uri`` is the normalized absolute path of the
    file on disk and is unique: at most one record per physical file.
    """

    __tablename__ = "file_managed"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, nullable=False)
    owner_id = Column(Integer, nullable=False, default=0)
    filename = Column(String(255), nullable=False)
    uri = Column(String(1024), unique=True, nullable=False)
    mime_type = Column(String(255), nullable=False, default="application/octet-stream")
    size_bytes = Column(BigInteger, nullable=False, default=0)
    status = Column(SmallInteger, nullable=False, default=STATUS_TEMPORARY)

    __table_args__ = (
        Index("idx_file_managed_status", "status"),
    )

    @classmethod
    def new(
        cls,
        owner_id: int,
        filename: str,
        uri: str,
        mime_type: str,
        size_bytes: int,
    ) -> "FileRecord":
        """Build an unsaved record with identity and timestamps filled in."""
        now = datetime.now(timezone.utc)
        return cls(
            uuid=str(uuid.uuid4()),
            owner_id=owner_id,
            filename=filename,
            uri=uri,
            mime_type=mime_type,
            size_bytes=size_bytes,
            status=STATUS_PERMANENT,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_permanent(self) -> bool:
        return self.status == STATUS_PERMANENT

    def set_permanent(self) -> None:
        self.status = STATUS_PERMANENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "uuid": self.uuid,
            "owner_id": self.owner_id,
            "filename": self.filename,
            "uri": self.uri,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<FileRecord(id={self.id}, uri='{self.uri}', status={self.status})>"


class ResourceAction(str, Enum):
    """Whether the outcome created a record or reused the one at the path."""
    CREATED = "created"
    REUSED_EXISTING = "reused_existing"


@dataclass
class UploadRequest:
    """
    One commit request. The payload is owned by the request until the
    resolver moves it or the caller discards it.
    """

    destination_directory: Path
    desired_filename: str
    effective_mode: "UploadMode"
    payload: "StagedPayload"
    owner_id: int = 0
    validators: Optional["UploadValidators"] = None

    @property
    def desired_path(self) -> Path:
        return Path(self.destination_directory) / self.desired_filename


@dataclass
class ResolutionOutcome:
    final_path: Path
    resource_action: ResourceAction
    record: FileRecord
    mode: "UploadMode"

    def to_dict(self) -> Dict[str, Any]:
        data = self.record.to_dict()
        data["resource_action"] = self.resource_action.value
        data["mode"] = self.mode.name.lower()
        return data
