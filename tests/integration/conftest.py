"""
Integration test fixtures — a full project on disk (SQLite file database,
YAML policy store, JSONL audit log). The Redis tests additionally need a
reachable Redis server and skip otherwise.
Mark with @pytest.mark.integration to skip in unit-only runs.

Run: pytest tests/integration/ -v -m integration
"""

from __future__ import annotations

import os

import pytest


# Custom marker for integration tests
def pytest_configure(config):
    config.addinivalue_line("markers", "integration: end-to-end workflows over a project on disk")


@pytest.fixture
def integration_project(tmp_path):
    """
    Create a full FileOpts project tree for integration testing.
    Returns the root Path.
    """
    root = tmp_path / "project"
    root.mkdir()

    (root / "fileopts.yaml").write_text(
        "platform:\n"
        "  name: IntegrationTestFileOpts\n"
        "  environment: dev\n"
        "database:\n"
        "  url: sqlite:///fileopts.db\n"
        "locks:\n"
        "  backend: memory\n"
        "  timeout_seconds: 2\n"
        "uploads:\n"
        "  files_root: files\n"
        "  temp_directory: .fileopts/tmp\n"
        "  default_mode: rename\n"
        "policy_store:\n"
        "  backend: yaml\n"
        "  path: upload_options.yaml\n"
        "logging:\n"
        "  level: WARNING\n"
        "  directory: .fileopts/logs\n"
        "  audit: true\n"
        "  async_queue:\n"
        "    flush_interval_ms: 10\n"
        "fields:\n"
        "  - key: node.article.field_attachment\n"
        "    entity_type_label: Content\n"
        "    bundle_label: Article\n"
        "    field_label: Attachment\n"
        "    upload_location: 'attachments/{Y}-{m}'\n"
        "    file_extensions: txt pdf zip\n"
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
def redis_url():
    return os.environ.get("FILEOPTS_TEST_REDIS_URL", "redis://localhost:6379/0")
