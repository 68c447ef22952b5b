"""API tests for the upload endpoint, upload options and health check."""

import pytest
from fastapi.testclient import TestClient

from fileopts.api import create_app
from fileopts.api.upload import parse_content_disposition
from fileopts.files.resolver import lock_id_for
from fileopts.policies.models import UploadMode


UPLOAD_URL = "/file/upload/node/article/field_attachment"
ATTACHMENT = "node.article.field_attachment"


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime))


def _headers(filename="report.pdf", **extra):
    headers = {
        "Content-Type": "application/octet-stream",
        "Content-Disposition": f'file; filename="{filename}"',
    }
    headers.update(extra)
    return headers


class TestContentDisposition:

    @pytest.mark.parametrize("header,expected", [
        ('file; filename="report.pdf"', "report.pdf"),
        ("file; filename=report.pdf", "report.pdf"),
        ("file; filename*=UTF-8''r%C3%A9sum%C3%A9.txt", "résumé.txt"),
        ('file; filename="fallback.txt"; filename*=UTF-8\'\'real.txt', "real.txt"),
    ])
    def test_parse(self, header, expected):
        assert parse_content_disposition(header) == expected


class TestUpload:

    def test_created(self, client, tmp_path):
        response = client.post(UPLOAD_URL, content=b"%PDF-1.7", headers=_headers(**{"X-User-Id": "7"}))
        assert response.status_code == 201
        body = response.json()
        assert body["resource_action"] == "created"
        assert body["mode"] == "rename"
        assert body["filename"] == "report.pdf"
        assert body["owner_id"] == 7
        assert body["size_bytes"] == 8
        assert (tmp_path / "files" / "attachments" / "report.pdf").read_bytes() == b"%PDF-1.7"

    def test_rename_on_collision(self, client):
        client.post(UPLOAD_URL, content=b"one", headers=_headers())
        response = client.post(UPLOAD_URL, content=b"two", headers=_headers())
        assert response.status_code == 201
        assert response.json()["filename"] == "report_0.pdf"

    def test_replace_reuses_record(self, client, runtime):
        runtime.policy_store.set_mode(ATTACHMENT, UploadMode.REPLACE)
        first = client.post(UPLOAD_URL, content=b"one", headers=_headers()).json()
        second = client.post(UPLOAD_URL, content=b"two", headers=_headers()).json()
        assert second["resource_action"] == "reused_existing"
        assert second["id"] == first["id"]

    def test_reject_conflict(self, client, runtime, tmp_path):
        runtime.policy_store.set_mode(ATTACHMENT, UploadMode.REJECT)
        client.post(UPLOAD_URL, content=b"one", headers=_headers("archive.zip"))
        response = client.post(UPLOAD_URL, content=b"two", headers=_headers("archive.zip"))
        assert response.status_code == 409
        assert response.json()["error_type"] == "FileOptsConflictError"
        assert (tmp_path / "files" / "attachments" / "archive.zip").read_bytes() == b"one"

    def test_collision_override(self, client, runtime):
        runtime.policy_store.set_mode(ATTACHMENT, UploadMode.REJECT)
        client.post(UPLOAD_URL, content=b"one", headers=_headers())
        response = client.post(UPLOAD_URL + "?collision=rename", content=b"two", headers=_headers())
        assert response.status_code == 201
        assert response.json()["filename"] == "report_0.pdf"

    def test_locked(self, client, runtime, tmp_path):
        runtime.locks.acquire(lock_id_for(tmp_path / "files" / "attachments" / "report.pdf"))
        response = client.post(UPLOAD_URL, content=b"x", headers=_headers())
        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert response.json()["error_type"] == "FileOptsLockedError"

    def test_extension_not_allowed(self, client):
        response = client.post(UPLOAD_URL, content=b"MZ", headers=_headers("tool.exe"))
        assert response.status_code == 422
        assert response.json()["validation_errors"][0]["field"] == "file_extensions"

    def test_too_large(self, client):
        response = client.post(
            "/file/upload/user/user/user_picture",
            content=b"x" * (1024 * 1024 + 1),
            headers=_headers("me.png"),
        )
        assert response.status_code == 422
        assert response.json()["validation_errors"][0]["field"] == "size"

    def test_staging_cleaned_after_failure(self, client, runtime):
        client.post(UPLOAD_URL, content=b"MZ", headers=_headers("tool.exe"))
        assert list((runtime.files_root.parent / "tmp").iterdir()) == []


class TestBadRequests:

    def test_wrong_content_type(self, client):
        response = client.post(UPLOAD_URL, content=b"x", headers=_headers(**{"Content-Type": "text/plain"}))
        assert response.status_code == 415

    def test_missing_disposition(self, client):
        response = client.post(UPLOAD_URL, content=b"x", headers={"Content-Type": "application/octet-stream"})
        assert response.status_code == 400

    def test_disposition_without_filename(self, client):
        response = client.post(UPLOAD_URL, content=b"x", headers=_headers(**{"Content-Disposition": "file"}))
        assert response.status_code == 400

    def test_path_in_filename(self, client):
        response = client.post(UPLOAD_URL, content=b"x", headers=_headers("../etc/passwd"))
        assert response.status_code == 400

    def test_unknown_collision_mode(self, client):
        response = client.post(UPLOAD_URL + "?collision=overwrite", content=b"x", headers=_headers())
        assert response.status_code == 400

    def test_bad_user_id(self, client):
        response = client.post(UPLOAD_URL, content=b"x", headers=_headers(**{"X-User-Id": "abc"}))
        assert response.status_code == 400

    def test_unknown_field(self, client):
        response = client.post("/file/upload/node/article/field_missing", content=b"x", headers=_headers())
        assert response.status_code == 404
        assert response.json()["error_type"] == "FileOptsFieldNotFoundError"


class TestUploadOptions:

    def test_defaults(self, client):
        response = client.get("/file/upload-options/node/article/field_attachment")
        assert response.status_code == 200
        body = response.json()
        assert body["field"] == ATTACHMENT
        assert body["label"] == "Attachment"
        assert body["mode"] == "rename"
        assert body["mode_value"] == 0
        assert body["effective_mode"] == "rename"
        assert body["file_extensions"] == "txt pdf zip"

    def test_inherit_shows_effective_mode(self, client, runtime):
        runtime.policy_store.set_mode(ATTACHMENT, UploadMode.INHERIT)
        body = client.get("/file/upload-options/node/article/field_attachment").json()
        assert body["mode"] == "inherit"
        assert body["mode_value"] == -1
        assert body["effective_mode"] == "rename"

    def test_unknown_field(self, client):
        assert client.get("/file/upload-options/node/article/field_missing").status_code == 404


class TestHealth:

    def test_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["components"]["locks"] == "ready"
        assert body["fields"] == 2
