"""
FileOpts Policy Backends — key/value persistence for upload options.

Keys are flat strings (``upload_option.node.article.field_image``,
``custom_fields.teaser_image``); values are integers. Every backend keeps
insertion order for ``keys()`` and makes each single write atomic. The
PolicyStore above them does no locking of its own.

Backends:
    MemoryConfigBackend — dict, process lifetime
    YamlConfigBackend   — flat YAML document, rewritten via temp file + rename
    SqlConfigBackend    — ``upload_options_config`` table, one row per key
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import yaml
from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.orm import sessionmaker

from fileopts.db.base import Base
from fileopts.db.session import session_scope
from fileopts.engine.errors import FileOptsConfigError

logger = logging.getLogger("fileopts.policies.backends")


class ConfigBackend(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> List[str]: ...


class MemoryConfigBackend:
    """Process-local backend. Used for tests and ``policy_store.backend: memory``."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [k for k in self._data if k.startswith(prefix)]


class YamlConfigBackend:
    """
    Flat ``key: value`` YAML file.

    The file is re-read when its mtime changes, so edits made by the CLI
    are picked up by a running server on the next lookup.
    """

    def __init__(self, path: str):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = {}
        self._mtime: Optional[float] = None
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            self._data = {}
            self._mtime = None
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise FileOptsConfigError(f"Invalid YAML in {self._path}: {e}", path=str(self._path))
        if not isinstance(raw, dict):
            raise FileOptsConfigError(f"Expected a mapping in {self._path}", path=str(self._path))
        self._data = {str(k): v for k, v in raw.items()}
        self._mtime = self._path.stat().st_mtime

    def _refresh(self) -> None:
        try:
            mtime = self._path.stat().st_mtime
        except FileNotFoundError:
            mtime = None
        if mtime != self._mtime:
            self._load()

    def _write(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self._path.parent), prefix=".upload_options.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(self._data, f, sort_keys=False, default_flow_style=False)
            os.replace(tmp, self._path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        self._mtime = self._path.stat().st_mtime

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            self._refresh()
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._refresh()
            self._data[key] = value
            self._write()

    def delete(self, key: str) -> bool:
        with self._lock:
            self._refresh()
            if key not in self._data:
                return False
            del self._data[key]
            self._write()
            return True

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            self._refresh()
            return [k for k in self._data if k.startswith(prefix)]

    @property
    def path(self) -> Path:
        return self._path


class UploadOptionEntry(Base):
    __tablename__ = "upload_options_config"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(255), unique=True, nullable=False, index=True)
    value = Column(JSON, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<UploadOptionEntry(key='{self.key}', value={self.value})>"


class SqlConfigBackend:
    """Backend over the ``upload_options_config`` table. One transaction per write."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[Any]:
        with session_scope(self._session_factory) as session:
            row = session.query(UploadOptionEntry).filter_by(key=key).first()
            return row.value if row is not None else None

    def set(self, key: str, value: Any) -> None:
        with session_scope(self._session_factory) as session:
            row = session.query(UploadOptionEntry).filter_by(key=key).first()
            if row is None:
                session.add(UploadOptionEntry(key=key, value=value))
            else:
                row.value = value

    def delete(self, key: str) -> bool:
        with session_scope(self._session_factory) as session:
            deleted = session.query(UploadOptionEntry).filter_by(key=key).delete()
            return deleted > 0

    def keys(self, prefix: str = "") -> List[str]:
        with session_scope(self._session_factory) as session:
            query = session.query(UploadOptionEntry.key).order_by(UploadOptionEntry.id)
            if prefix:
                query = query.filter(UploadOptionEntry.key.startswith(prefix, autoescape=True))
            return [row[0] for row in query.all()]
