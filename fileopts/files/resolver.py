"""
FileOpts Upload Resolver — commits a staged payload under a collision mode.

Commit sequence:
    1. Prepare the destination directory
    2. Reject: fail fast with a conflict if the desired path is taken
    3. Compute the final path (Rename tries suffixed names)
    4. Acquire the per-path lock ("file:upload:" + sha256 of the final path)
    5. Under the lock: re-check, validate, move, then update the
       existing record (Replace) or create a new one
    6. Release the lock and return the outcome

The lock is released on every exit path after acquisition. Nothing is
moved before validation passes, and no record is changed before the
move succeeds.
"""

from __future__ import annotations

import hashlib
import logging
import time
from pathlib import Path
from typing import Optional

from fileopts.engine.context import get_upload_context
from fileopts.engine.errors import (
    FileOptsConfigError,
    FileOptsConflictError,
    FileOptsDestinationError,
    FileOptsError,
    FileOptsLockedError,
    FileOptsPersistError,
)
from fileopts.engine.locks import LockService
from fileopts.engine.logging import log, log_lock_wait, log_upload_failed, log_upload_resolved
from fileopts.files.filesystem import FileSystemService, detect_mime_type, normalize_path
from fileopts.files.metadata import MetadataStore
from fileopts.files.models import FileRecord, ResolutionOutcome, ResourceAction, UploadRequest
from fileopts.files.validation import UploadValidator
from fileopts.policies.models import UploadMode

logger = logging.getLogger("fileopts.files.resolver")

LOCK_PREFIX = "file:upload:"


def lock_id_for(path) -> str:
    """Lock token for a destination; equal for every spelling of the same path."""
    digest = hashlib.sha256(str(normalize_path(path)).encode("utf-8")).hexdigest()
    return LOCK_PREFIX + digest


class UploadResolver:
    """
    Turns an UploadRequest into a file on disk plus a FileRecord.

    Usage:
        resolver = UploadResolver(LocalFileSystem(), SqlMetadataStore(factory), MemoryLockService())
        outcome = resolver.commit(request)
    """

    def __init__(
        self,
        filesystem: FileSystemService,
        metadata: MetadataStore,
        locks: LockService,
        validator: Optional[UploadValidator] = None,
        lock_timeout: float = 0.0,
        retry_after: int = 1,
    ):
        self._filesystem = filesystem
        self._metadata = metadata
        self._locks = locks
        self._validator = validator or UploadValidator()
        self._lock_timeout = lock_timeout
        self._retry_after = retry_after

    def commit(self, request: UploadRequest) -> ResolutionOutcome:
        """
        Commit request.payload to its destination.

        Raises:
            FileOptsDestinationError: directory missing and not creatable/writable
            FileOptsConflictError:    Reject and the desired path exists
            FileOptsExhaustionError:  Rename found no free name
            FileOptsLockedError:      destination lock busy (retryable)
            FileOptsValidationError:  record failed validation
            FileOptsMoveError:        bytes could not be moved
            FileOptsPersistError:     bytes moved but the record was not saved
        """
        ctx = get_upload_context()
        mode = request.effective_mode
        desired_path = normalize_path(request.desired_path)
        started = time.monotonic()

        try:
            outcome = self._commit(request, mode, desired_path)
        except FileOptsError as e:
            if e.execution_id is None:
                e.execution_id = ctx.execution_id
            log(log_upload_failed(
                str(desired_path), mode.name.lower(), e.error_type, e.message,
                execution_id=ctx.execution_id, user_id=request.owner_id,
            ))
            logger.warning(f"Upload to {desired_path} failed ({e.error_type}): {e.message}")
            raise

        duration_ms = (time.monotonic() - started) * 1000
        log(log_upload_resolved(
            str(outcome.final_path),
            mode.name.lower(),
            outcome.resource_action.value,
            execution_id=ctx.execution_id,
            user_id=request.owner_id,
            record_id=outcome.record.id,
            size_bytes=outcome.record.size_bytes,
            duration_ms=duration_ms,
        ))
        logger.info(
            f"Upload committed: {outcome.final_path} "
            f"({mode.name}, {outcome.resource_action.value}, {duration_ms:.1f} ms)"
        )
        return outcome

    def _commit(self, request: UploadRequest, mode: UploadMode, desired_path: Path) -> ResolutionOutcome:
        if not mode.is_concrete:
            raise FileOptsConfigError(
                f"Upload mode must be concrete, got {mode.name}",
                path=str(desired_path),
                value=int(mode),
            )

        if not self._filesystem.prepare_directory(request.destination_directory):
            raise FileOptsDestinationError(
                "Destination file path is not writable",
                path=str(request.destination_directory),
            )

        # Reject raises a conflict here, before any lock is taken
        final_path = self._filesystem.resolve_collision_free_name(desired_path, mode)

        lock_id = lock_id_for(final_path)
        waited = time.monotonic()
        acquired = self._locks.acquire(lock_id, timeout=self._lock_timeout)
        log(log_lock_wait(lock_id, acquired, (time.monotonic() - waited) * 1000))
        if not acquired:
            raise FileOptsLockedError(
                f"File '{final_path}' is already locked for writing",
                path=str(final_path),
                lock_id=lock_id,
                retry_after=self._retry_after,
            )

        try:
            return self._commit_locked(request, mode, final_path)
        finally:
            self._locks.release(lock_id)

    def _commit_locked(self, request: UploadRequest, mode: UploadMode, final_path: Path) -> ResolutionOutcome:
        if mode is not UploadMode.REPLACE:
            self._recheck_free(mode, final_path)

        candidate = self._new_record(request, final_path)
        existing = self._metadata.find_by_path(final_path) if mode is UploadMode.REPLACE else None
        self._validator.validate(candidate, request.payload, request.validators)

        self._filesystem.move(request.payload.path, final_path, mode)
        request.payload.mark_committed()

        # The found record is only touched once the new bytes are in place
        try:
            if existing is not None:
                action = ResourceAction.REUSED_EXISTING
                existing.set_permanent()
                existing.size_bytes = candidate.size_bytes
                existing.mime_type = candidate.mime_type
                record = self._metadata.save(existing)
            else:
                action = ResourceAction.CREATED
                record = self._metadata.create(candidate)
        except FileOptsPersistError:
            logger.error(f"File written to {final_path} but its record was not saved")
            raise
        except Exception as e:
            logger.error(f"File written to {final_path} but its record was not saved: {e}")
            raise FileOptsPersistError(
                f"File was written but its record could not be saved: {e}",
                path=str(final_path),
            ) from e

        return ResolutionOutcome(final_path=final_path, resource_action=action, record=record, mode=mode)

    def _recheck_free(self, mode: UploadMode, final_path: Path) -> None:
        """Another writer may have taken the name between the lookup and the lock."""
        try:
            self._filesystem.destination_for(final_path, UploadMode.REJECT)
        except FileOptsConflictError:
            if mode is UploadMode.REJECT:
                raise
            raise FileOptsLockedError(
                f"File '{final_path.name}' was taken by a concurrent upload",
                path=str(final_path),
                retry_after=self._retry_after,
            )

    @staticmethod
    def _new_record(request: UploadRequest, final_path: Path) -> FileRecord:
        return FileRecord.new(
            owner_id=request.owner_id,
            filename=final_path.name,
            uri=str(final_path),
            mime_type=detect_mime_type(final_path.name),
            size_bytes=request.payload.size,
        )
