"""
FileOpts Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest


# ---------------------------------------------------------------------------
# Environment setup: no real Redis, no on-disk databases
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset global singletons between tests."""
    import fileopts.engine.config as cfg_mod
    from fileopts.engine.context import clear_upload_context
    from fileopts.engine.logging import shutdown_logging

    cfg_mod._platform_config = None
    clear_upload_context()
    yield
    shutdown_logging()
    clear_upload_context()
    cfg_mod._platform_config = None


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a clean temp directory."""
    return tmp_path


@pytest.fixture
def project_root(tmp_path):
    """
    Create a minimal project tree with fileopts.yaml declaring two fields.
    Returns the root Path.
    """
    root = tmp_path / "project"
    root.mkdir()
    (root / "fileopts.yaml").write_text(
        "platform:\n"
        "  name: TestFileOpts\n"
        "  environment: dev\n"
        "database:\n"
        "  url: 'sqlite://'\n"
        "locks:\n"
        "  backend: memory\n"
        "uploads:\n"
        "  files_root: files\n"
        "  default_mode: rename\n"
        "policy_store:\n"
        "  backend: yaml\n"
        "  path: upload_options.yaml\n"
        "logging:\n"
        "  level: WARNING\n"
        "  audit: false\n"
        "fields:\n"
        "  - key: node.article.field_attachment\n"
        "    entity_type_label: Content\n"
        "    bundle_label: Article\n"
        "    field_label: Attachment\n"
        "    upload_location: attachments\n"
        "    file_extensions: txt pdf\n"
        "  - key: user.user.user_picture\n"
        "    entity_type_label: User\n"
        "    bundle_label: User\n"
        "    field_label: Picture\n"
        "    upload_location: pictures\n"
        "    file_extensions: png jpg\n",
        encoding="utf-8",
    )
    return root


@pytest.fixture
def platform_config(tmp_path):
    """In-memory configuration rooted at tmp_path."""
    from fileopts.engine.config import FieldConfig, LoggingConfig, PlatformConfig, PolicyStoreConfig

    return PlatformConfig(
        name="TestFileOpts",
        database={"url": "sqlite://"},
        policy_store=PolicyStoreConfig(backend="memory"),
        uploads={"files_root": "files", "temp_directory": "tmp"},
        logging=LoggingConfig(level="WARNING", audit=False),
        fields=[
            FieldConfig(
                key="node.article.field_attachment",
                entity_type_label="Content",
                bundle_label="Article",
                field_label="Attachment",
                upload_location="attachments",
                file_extensions="txt pdf zip",
            ),
            FieldConfig(
                key="user.user.user_picture",
                entity_type_label="User",
                bundle_label="User",
                field_label="Picture",
                upload_location="pictures",
                file_extensions="png jpg",
                max_filesize_mb=1,
            ),
        ],
        base_dir=str(tmp_path),
    )


@pytest.fixture
def runtime(platform_config):
    """Started UploadRuntime over platform_config."""
    from fileopts.runtime import UploadRuntime

    rt = UploadRuntime(platform_config)
    rt.startup()
    yield rt
    rt.shutdown()


@pytest.fixture
def files_dir(tmp_path):
    d = tmp_path / "files"
    d.mkdir()
    return d


@pytest.fixture
def staging_dir(tmp_path):
    d = tmp_path / "staging"
    d.mkdir()
    return d


@pytest.fixture
def make_payload(staging_dir):
    """Factory: stage bytes and return the StagedPayload."""
    from fileopts.files.staging import stage_bytes

    def _make(data: bytes = b"payload"):
        return stage_bytes(data, str(staging_dir))

    return _make


@pytest.fixture
def metadata_store():
    from fileopts.files.metadata import MemoryMetadataStore

    return MemoryMetadataStore()


@pytest.fixture
def lock_service():
    from fileopts.engine.locks import MemoryLockService

    return MemoryLockService()


@pytest.fixture
def resolver(metadata_store, lock_service):
    from fileopts.files.filesystem import LocalFileSystem
    from fileopts.files.resolver import UploadResolver

    return UploadResolver(LocalFileSystem(max_rename_attempts=20), metadata_store, lock_service)


@pytest.fixture
def session_factory():
    """SQLite in-memory session factory with all tables created."""
    from fileopts.db.session import init_db

    return init_db("sqlite://")


@pytest.fixture
def mock_redis():
    """Return a mock Redis client."""
    client = MagicMock()
    client.ping.return_value = True
    client.get.return_value = None
    client.set.return_value = True
    client.delete.return_value = 1
    client.eval.return_value = 1
    client.exists.return_value = 0
    return client


@pytest.fixture
def upload_context():
    """Set a standard UploadContext for the test."""
    from fileopts.engine.context import UploadContext, set_upload_context

    ctx = UploadContext(user_id=7, username="editor")
    set_upload_context(ctx)
    return ctx
