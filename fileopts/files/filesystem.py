"""
FileOpts Filesystem Service — directory preparation, collision checks, moves.

``destination_for(path, mode)`` is the single collision primitive. The
Reject check, the Rename search and the move-time re-check all call it on
the same normalized absolute path, so they can never disagree about
whether a destination is taken.

Rename naming: ``report.pdf`` → ``report_0.pdf``, ``report_1.pdf``, …
(suffix goes before the last extension).
"""

from __future__ import annotations

import errno
import logging
import mimetypes
import os
import shutil
import tempfile
from pathlib import Path
from typing import Protocol, Union

from fileopts.engine.errors import (
    FileOptsConfigError,
    FileOptsConflictError,
    FileOptsExhaustionError,
    FileOptsMoveError,
)
from fileopts.policies.models import UploadMode

logger = logging.getLogger("fileopts.files.filesystem")

PathLike = Union[str, Path]


class FileSystemService(Protocol):
    def prepare_directory(self, path: PathLike) -> bool: ...

    def exists(self, path: PathLike) -> bool: ...

    def destination_for(self, path: PathLike, mode: UploadMode) -> Path: ...

    def resolve_collision_free_name(self, path: PathLike, mode: UploadMode) -> Path: ...

    def move(self, src: PathLike, dst: PathLike, mode: UploadMode) -> Path: ...


def normalize_path(path: PathLike) -> Path:
    """Absolute, normalized path. Used for lookups, lock ids and record uris."""
    return Path(os.path.normpath(os.path.abspath(str(path))))


def split_extension(filename: str):
    """Split on the last dot; leading-dot names have no extension."""
    index = filename.rfind(".")
    if index <= 0:
        return filename, ""
    return filename[:index], filename[index:]


class LocalFileSystem:
    """Filesystem service over the local disk."""

    def __init__(self, max_rename_attempts: int = 1000):
        self._max_rename_attempts = max_rename_attempts

    def prepare_directory(self, path: PathLike) -> bool:
        """Create the directory (with parents) and check it is writable."""
        directory = Path(path)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Could not create directory {directory}: {e}")
            return False
        return directory.is_dir() and os.access(directory, os.W_OK | os.X_OK)

    def exists(self, path: PathLike) -> bool:
        return os.path.lexists(str(path))

    def destination_for(self, path: PathLike, mode: UploadMode) -> Path:
        """
        Final path for writing to *path* under *mode*.

        REPLACE returns the path as is. REJECT raises FileOptsConflictError
        when the path is taken. RENAME tries suffixed names and raises
        FileOptsExhaustionError after max_rename_attempts.
        """
        target = normalize_path(path)
        if mode is UploadMode.REPLACE:
            return target
        if mode is UploadMode.INHERIT:
            raise FileOptsConfigError("INHERIT must be resolved before writing", path=str(target))
        if not self.exists(target):
            return target
        if mode is UploadMode.REJECT:
            raise FileOptsConflictError(
                f"File '{target.name}' already exists",
                path=str(target),
            )

        base, ext = split_extension(target.name)
        for counter in range(self._max_rename_attempts):
            candidate = target.with_name(f"{base}_{counter}{ext}")
            if not self.exists(candidate):
                return candidate
        raise FileOptsExhaustionError(
            f"No free name for '{target.name}' after {self._max_rename_attempts} attempts",
            path=str(target),
            attempts=self._max_rename_attempts,
        )

    def resolve_collision_free_name(self, path: PathLike, mode: UploadMode) -> Path:
        return self.destination_for(path, mode)

    def move(self, src: PathLike, dst: PathLike, mode: UploadMode) -> Path:
        """
        Move *src* to *dst*. Only REPLACE may overwrite; for other modes an
        occupied *dst* is a conflict (hard link + unlink keeps that check
        atomic where the filesystem allows it).
        """
        source = Path(src)
        target = normalize_path(dst)

        if mode is UploadMode.REPLACE:
            try:
                os.replace(source, target)
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise FileOptsMoveError(f"Could not move {source} to {target}: {e}", path=str(target))
                self._copy_into_place(source, target)
            return target

        if self.destination_for(target, UploadMode.REJECT) != target:
            raise FileOptsMoveError(f"Unexpected destination for {target}", path=str(target))
        try:
            os.link(source, target)
        except FileExistsError:
            raise FileOptsConflictError(f"File '{target.name}' already exists", path=str(target))
        except OSError as e:
            # Cross-device or no hard link support
            logger.debug(f"Hard link to {target} failed ({e}); copying instead")
            self._copy_exclusive(source, target)
            return target

        try:
            source.unlink()
        except OSError as e:
            logger.warning(f"Moved payload but could not remove staged file {source}: {e}")
        return target

    @staticmethod
    def _copy_into_place(source: Path, target: Path) -> None:
        """Copy via a temp file in the target directory, then rename over."""
        fd, tmp = tempfile.mkstemp(dir=str(target.parent), prefix=".fileopts_")
        os.close(fd)
        try:
            shutil.copyfile(source, tmp)
            os.replace(tmp, target)
            source.unlink()
        except OSError as e:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise FileOptsMoveError(f"Could not move {source} to {target}: {e}", path=str(target))

    @staticmethod
    def _copy_exclusive(source: Path, target: Path) -> None:
        """Copy into a newly created *target*; an existing target is a conflict."""
        try:
            fd = os.open(str(target), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o666)
        except FileExistsError:
            raise FileOptsConflictError(f"File '{target.name}' already exists", path=str(target))
        except OSError as e:
            raise FileOptsMoveError(f"Could not move {source} to {target}: {e}", path=str(target))

        try:
            with os.fdopen(fd, "wb") as out, open(source, "rb") as src:
                shutil.copyfileobj(src, out)
        except OSError as e:
            os.unlink(target)
            raise FileOptsMoveError(f"Could not move {source} to {target}: {e}", path=str(target))

        try:
            source.unlink()
        except OSError as e:
            logger.warning(f"Moved payload but could not remove staged file {source}: {e}")


FILENAME_MAX_LENGTH = 240


def safe_filename(filename: str, max_length: int = FILENAME_MAX_LENGTH) -> str:
    """
    Sanitize a client-supplied filename for filesystem storage.

    Removes path components, control characters and leading dots.
    Preserves the extension when truncating.
    """
    name = os.path.basename(filename.replace("\\", "/"))
    name = "".join(c for c in name if c.isprintable() and c not in '<>:"/\\|?*')
    name = name.strip().lstrip(".")
    if not name:
        name = "unnamed_file"
    if len(name) > max_length:
        base, ext = split_extension(name)
        name = base[:max_length - len(ext)] + ext
    return name


def detect_mime_type(filename: str) -> str:
    """Guess the MIME type from the filename."""
    mime, _ = mimetypes.guess_type(filename)
    return mime or "application/octet-stream"
