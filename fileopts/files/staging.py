"""
FileOpts Staging — temporary storage for received upload bytes.

Payload bytes are written to a temp file before any policy decision is
made. The StagedPayload owns that file until the resolver moves it; used
as a context manager, it deletes the file if nobody committed it.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional

logger = logging.getLogger("fileopts.files.staging")

CHUNK_SIZE = 8192


class StagedPayload:
    """Handle on a staged temp file."""

    def __init__(self, path: Path, size: int, sha256: Optional[str] = None):
        self.path = Path(path)
        self.size = size
        self.sha256 = sha256
        self._committed = False

    @property
    def committed(self) -> bool:
        return self._committed

    def mark_committed(self) -> None:
        """Called once the bytes have been moved to their final location."""
        self._committed = True

    def discard(self) -> None:
        """Delete the temp file. No-op after commit or if already gone."""
        if self._committed:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not discard staged payload {self.path}: {e}")

    def __enter__(self) -> "StagedPayload":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.discard()

    def __repr__(self) -> str:
        return f"<StagedPayload path='{self.path}' size={self.size} committed={self._committed}>"


class StagingWriter:
    """
    Incremental writer for streamed request bodies.

    Usage:
        writer = StagingWriter(temp_dir)
        async for chunk in request.stream():
            writer.write(chunk)
        payload = writer.close()
    """

    def __init__(self, temp_dir: Optional[str] = None):
        if temp_dir:
            Path(temp_dir).mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="fileopts_", suffix=".upload", dir=temp_dir)
        self._path = Path(name)
        self._file = os.fdopen(fd, "wb")
        self._hash = hashlib.sha256()
        self._size = 0

    def write(self, chunk: bytes) -> None:
        if not chunk:
            return
        self._file.write(chunk)
        self._hash.update(chunk)
        self._size += len(chunk)

    def close(self) -> StagedPayload:
        self._file.close()
        logger.debug(
            f"Staged {self._size} bytes at {self._path} "
            f"(sha256={self._hash.hexdigest()[:12]})"
        )
        return StagedPayload(self._path, self._size, self._hash.hexdigest())

    def abort(self) -> None:
        """Close and delete the partial temp file."""
        self._file.close()
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass


def stage_stream(file_data: BinaryIO, temp_dir: Optional[str] = None) -> StagedPayload:
    """Copy a readable binary stream into a staged temp file."""
    writer = StagingWriter(temp_dir)
    try:
        while True:
            chunk = file_data.read(CHUNK_SIZE)
            if not chunk:
                break
            writer.write(chunk)
    except Exception:
        writer.abort()
        raise
    return writer.close()


def stage_bytes(data: bytes, temp_dir: Optional[str] = None) -> StagedPayload:
    writer = StagingWriter(temp_dir)
    writer.write(data)
    return writer.close()
