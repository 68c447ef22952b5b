"""
FileOpts Metadata Store — FileRecord persistence.

SqlMetadataStore is the production store (``file_managed`` table);
MemoryMetadataStore keeps records in a dict for tests and throwaway runs.
Both enforce one record per uri.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from fileopts.db.session import session_scope
from fileopts.engine.errors import FileOptsPersistError
from fileopts.files.filesystem import normalize_path
from fileopts.files.models import FileRecord

logger = logging.getLogger("fileopts.files.metadata")

PathLike = Union[str, Path]


class MetadataStore(Protocol):
    def find_by_path(self, path: PathLike) -> Optional[FileRecord]: ...

    def create(self, record: FileRecord) -> FileRecord: ...

    def save(self, record: FileRecord) -> FileRecord: ...

    def get(self, record_id: int) -> Optional[FileRecord]: ...


class SqlMetadataStore:
    """
    SQLAlchemy-backed store. Records are returned detached with their
    attributes loaded (the session factory must not expire on commit).
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def find_by_path(self, path: PathLike) -> Optional[FileRecord]:
        uri = str(normalize_path(path))
        with session_scope(self._session_factory) as session:
            return session.query(FileRecord).filter_by(uri=uri).first()

    def get(self, record_id: int) -> Optional[FileRecord]:
        with session_scope(self._session_factory) as session:
            return session.get(FileRecord, record_id)

    def create(self, record: FileRecord) -> FileRecord:
        try:
            with session_scope(self._session_factory) as session:
                session.add(record)
                session.flush()
        except SQLAlchemyError as e:
            raise FileOptsPersistError(f"Could not create file record: {e}", path=record.uri)
        logger.debug(f"Created {record!r}")
        return record

    def save(self, record: FileRecord) -> FileRecord:
        record.updated_at = datetime.now(timezone.utc)
        try:
            with session_scope(self._session_factory) as session:
                merged = session.merge(record)
                session.flush()
                record.id = merged.id
        except SQLAlchemyError as e:
            raise FileOptsPersistError(f"Could not save file record: {e}", path=record.uri)
        logger.debug(f"Saved {record!r}")
        return record

    def list_records(self, limit: int = 100) -> List[FileRecord]:
        with session_scope(self._session_factory) as session:
            return session.query(FileRecord).order_by(FileRecord.id).limit(limit).all()


class MemoryMetadataStore:
    """In-process store. Assigns sequential ids."""

    def __init__(self):
        self._records: Dict[int, FileRecord] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def find_by_path(self, path: PathLike) -> Optional[FileRecord]:
        uri = str(normalize_path(path))
        with self._lock:
            for record in self._records.values():
                if record.uri == uri:
                    return record
        return None

    def get(self, record_id: int) -> Optional[FileRecord]:
        with self._lock:
            return self._records.get(record_id)

    def create(self, record: FileRecord) -> FileRecord:
        with self._lock:
            if any(r.uri == record.uri for r in self._records.values()):
                raise FileOptsPersistError(f"A record for {record.uri} already exists", path=record.uri)
            record.id = self._next_id
            self._next_id += 1
            self._records[record.id] = record
        return record

    def save(self, record: FileRecord) -> FileRecord:
        if record.id is None:
            return self.create(record)
        record.updated_at = datetime.now(timezone.utc)
        with self._lock:
            self._records[record.id] = record
        return record

    def list_records(self, limit: int = 100) -> List[FileRecord]:
        with self._lock:
            return list(self._records.values())[:limit]

    def __len__(self) -> int:
        return len(self._records)
