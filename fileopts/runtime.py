"""
FileOpts Runtime — wires fileopts.yaml into concrete services.

Ties together:
- PolicyStore over the configured backend (memory / yaml / sql)
- StaticSchemaIntrospector from the ``fields`` section
- LockService (memory / redis)
- UploadResolver with LocalFileSystem + SqlMetadataStore
- AsyncLogQueue (JSONL audit log)

Lifecycle:
    runtime = UploadRuntime(config)
    runtime.startup()
    outcome = runtime.upload("node.article.field_attachment", "report.pdf", payload)
    runtime.shutdown()
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fileopts.db.session import init_db
from fileopts.engine.config import PlatformConfig, get_platform_config
from fileopts.engine.context import get_upload_context
from fileopts.engine.errors import FileOptsError, FileOptsFieldNotFoundError
from fileopts.engine.locks import LockService, create_lock_service
from fileopts.engine.logging import AsyncLogQueue, init_logging, log, log_system_event, shutdown_logging
from fileopts.fields import FieldDefinition, FieldKey, SchemaIntrospector, StaticSchemaIntrospector
from fileopts.files.filesystem import LocalFileSystem
from fileopts.files.metadata import SqlMetadataStore
from fileopts.files.models import ResolutionOutcome, UploadRequest
from fileopts.files.resolver import UploadResolver
from fileopts.files.staging import StagedPayload
from fileopts.files.validation import UploadValidator, UploadValidators, prepare_filename
from fileopts.policies.backends import (
    ConfigBackend,
    MemoryConfigBackend,
    SqlConfigBackend,
    YamlConfigBackend,
)
from fileopts.policies.models import UploadMode
from fileopts.policies.store import PolicyStore

logger = logging.getLogger("fileopts.runtime")


class UploadRuntime:
    """Single entry point for the transport and the CLI."""

    def __init__(self, config: Optional[PlatformConfig] = None):
        self.config = config or get_platform_config()

        # Subsystems (initialized in startup())
        self.session_factory = None
        self.policy_store: Optional[PolicyStore] = None
        self.introspector: Optional[SchemaIntrospector] = None
        self.locks: Optional[LockService] = None
        self.filesystem: Optional[LocalFileSystem] = None
        self.metadata: Optional[SqlMetadataStore] = None
        self.resolver: Optional[UploadResolver] = None
        self.log_queue: Optional[AsyncLogQueue] = None

        self._started = False

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    @property
    def is_started(self) -> bool:
        return self._started

    def startup(self) -> None:
        """Initialize all subsystems."""
        if self._started:
            logger.warning("Runtime already started")
            return

        config = self.config
        logger.info(f"Starting {config.name} runtime ({config.environment})...")

        # 1. Audit logging
        if config.logging.audit:
            queue_cfg = config.logging.async_queue
            self.log_queue = init_logging(
                log_dir=str(config.resolve_path(config.logging.directory)),
                flush_interval_ms=queue_cfg.flush_interval_ms,
                flush_batch_size=queue_cfg.flush_batch_size,
                max_queue_size=queue_cfg.max_queue_size,
            )

        # 2. Database
        self.session_factory = init_db(self._database_url(), echo=config.database.echo)

        # 3. Policy store and field definitions
        self.policy_store = PolicyStore(
            self._build_policy_backend(),
            default_mode=UploadMode.parse(config.uploads.default_mode),
        )
        self.introspector = StaticSchemaIntrospector.from_config(config.fields)

        # 4. Locks
        self.locks = create_lock_service(
            config.locks.backend,
            redis_url=config.redis.url,
            ttl_seconds=config.locks.ttl_seconds,
            db=config.redis.db,
        )

        # 5. Resolver
        self.filesystem = LocalFileSystem(max_rename_attempts=config.uploads.max_rename_attempts)
        self.metadata = SqlMetadataStore(self.session_factory)
        self.resolver = UploadResolver(
            self.filesystem,
            self.metadata,
            self.locks,
            validator=UploadValidator(),
            lock_timeout=config.locks.timeout_seconds,
            retry_after=config.locks.retry_after,
        )

        self._started = True
        log(log_system_event("runtime_started", details=self.status()))
        logger.info(f"{config.name} runtime started")

    def shutdown(self) -> None:
        """Flush the audit log and close the lock backend."""
        if not self._started:
            return
        logger.info("Shutting down runtime...")
        close = getattr(self.locks, "close", None)
        if close is not None:
            close()
        log(log_system_event("runtime_shutdown"))
        shutdown_logging()
        self._started = False

    def __enter__(self) -> "UploadRuntime":
        self.startup()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def _database_url(self) -> str:
        url = self.config.database.url
        prefix = "sqlite:///"
        # Relative sqlite files live next to fileopts.yaml
        if url.startswith(prefix) and url != prefix + ":memory:" and not url.startswith(prefix + "/"):
            return prefix + str(self.config.resolve_path(url[len(prefix):]))
        return url

    def _build_policy_backend(self) -> ConfigBackend:
        store_cfg = self.config.policy_store
        if store_cfg.backend == "yaml":
            return YamlConfigBackend(self.config.resolve_path(store_cfg.path))
        if store_cfg.backend == "sql":
            return SqlConfigBackend(self.session_factory)
        return MemoryConfigBackend()

    # -----------------------------------------------------------------------
    # Fields
    # -----------------------------------------------------------------------

    def get_field(self, field_key: Any) -> FieldDefinition:
        """Field definition for a schema field key; 404-style error when unknown."""
        key = field_key if isinstance(field_key, FieldKey) else FieldKey.parse(field_key)
        definition = self.introspector.get_field(key) if not key.is_custom else None
        if definition is None:
            raise FileOptsFieldNotFoundError(
                f"Field '{key}' is not an upload-capable field",
                field_key=str(key),
            )
        return definition

    def validators_for(self, definition: FieldDefinition) -> UploadValidators:
        platform_max = self.config.uploads.max_upload_size_mb * 1024 * 1024
        return UploadValidators.from_field(definition, platform_max_bytes=platform_max)

    @property
    def files_root(self) -> Path:
        return self.config.resolve_path(self.config.uploads.files_root)

    @property
    def temp_directory(self) -> Optional[str]:
        temp = self.config.uploads.temp_directory
        return str(self.config.resolve_path(temp)) if temp else None

    # -----------------------------------------------------------------------
    # Upload
    # -----------------------------------------------------------------------

    def upload(
        self,
        field_key: Any,
        filename: str,
        payload: StagedPayload,
        owner_id: Optional[int] = None,
        override: Optional[Any] = None,
    ) -> ResolutionOutcome:
        """
        Commit a staged payload for a schema field.

        The mode comes from the policy store (override first, INHERIT
        resolved to the system default). The payload is discarded if the
        commit fails.
        """
        with payload:
            definition = self.get_field(field_key)
            validators = self.validators_for(definition)
            mode = self.policy_store.resolve_mode(definition.key, override)
            if owner_id is None:
                owner_id = get_upload_context().user_id

            request = UploadRequest(
                destination_directory=definition.upload_directory(self.files_root),
                desired_filename=prepare_filename(filename, validators),
                effective_mode=mode,
                payload=payload,
                owner_id=owner_id,
                validators=validators,
            )
            try:
                return self.resolver.commit(request)
            except FileOptsError as e:
                if e.field_key is None:
                    e.field_key = definition.key.canonical
                raise

    # -----------------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        lock_available = bool(getattr(self.locks, "is_available", False))
        return {
            "started": self._started,
            "environment": self.config.environment,
            "policy_store": self.config.policy_store.backend,
            "lock_backend": self.config.locks.backend,
            "lock_available": lock_available,
            "fields": len(self.introspector.definitions()) if self.introspector else 0,
            "audit_pending": self.log_queue.pending_count if self.log_queue else 0,
        }
