"""
FileOpts upload endpoint.

    POST /file/upload/{entity_type}/{bundle}/{field_name}
        Content-Type: application/octet-stream
        Content-Disposition: file; filename="report.pdf"
        X-User-Id: 7                     (optional, anonymous when absent)
        ?collision=rename|replace|reject (optional per-request override)

    GET /file/upload-options/{entity_type}/{bundle}/{field_name}
"""

from __future__ import annotations

import logging
import re
from typing import Optional
from urllib.parse import unquote

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from fileopts.engine.context import (
    ANONYMOUS_USER_ID,
    UploadContext,
    clear_upload_context,
    set_upload_context,
)
from fileopts.engine.errors import FileOptsConfigError
from fileopts.fields import FieldKey
from fileopts.files.staging import StagedPayload, StagingWriter
from fileopts.policies.models import UploadMode
from fileopts.runtime import UploadRuntime

logger = logging.getLogger("fileopts.api.upload")

router = APIRouter()

_FILENAME_RE = re.compile(r'\bfilename(?P<star>\*?)=(?:"(?P<quoted>[^"]*)"|(?P<bare>[^;\s]+))')


def parse_content_disposition(header: Optional[str]) -> str:
    """
    Filename from ``file; filename="x"`` or ``filename*=UTF-8''x``.

    Raises HTTPException(400) when the header is missing, has no filename
    or the filename carries path components.
    """
    if not header:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='"Content-Disposition" header is required. A file name in the format "filename=FILENAME" must be provided',
        )
    matches = list(_FILENAME_RE.finditer(header))
    if not matches:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='No filename found in "Content-Disposition" header. A file name in the format "filename=FILENAME" must be provided',
        )

    # filename* takes precedence over filename
    match = next((m for m in matches if m.group("star")), matches[0])
    filename = match.group("quoted") if match.group("quoted") is not None else match.group("bare")
    if match.group("star"):
        _, _, encoded = filename.partition("''")
        filename = unquote(encoded or filename)

    if not filename or "/" in filename or "\\" in filename or filename in (".", ".."):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The filename in the Content-Disposition header is invalid",
        )
    return filename


def parse_owner(header: Optional[str]) -> int:
    if header is None or header == "":
        return ANONYMOUS_USER_ID
    try:
        owner_id = int(header)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-User-Id must be an integer")
    if owner_id < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-User-Id must not be negative")
    return owner_id


def parse_collision(value: Optional[str]) -> Optional[UploadMode]:
    if value is None:
        return None
    try:
        return UploadMode.parse(value)
    except FileOptsConfigError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown collision mode '{value}'. Use rename, replace, reject or inherit",
        )


def _field_key(entity_type: str, bundle: str, field_name: str) -> FieldKey:
    try:
        return FieldKey.schema(entity_type, bundle, field_name)
    except FileOptsConfigError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown upload field")


def _commit(
    runtime: UploadRuntime,
    ctx: UploadContext,
    key: FieldKey,
    filename: str,
    payload: StagedPayload,
    override: Optional[UploadMode],
):
    # Runs in a worker thread; the lock wait and the move block.
    set_upload_context(ctx)
    try:
        return runtime.upload(key, filename, payload, owner_id=ctx.user_id, override=override)
    finally:
        clear_upload_context()


@router.post("/file/upload/{entity_type}/{bundle}/{field_name}", status_code=status.HTTP_201_CREATED)
async def upload_file(
    request: Request,
    entity_type: str,
    bundle: str,
    field_name: str,
    collision: Optional[str] = Query(default=None, description="Per-request collision mode override"),
):
    """Stream the request body to a staged file and commit it under the field's mode."""
    runtime: UploadRuntime = request.app.state.runtime

    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type != "application/octet-stream":
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Uploads must be sent as application/octet-stream",
        )

    filename = parse_content_disposition(request.headers.get("content-disposition"))
    owner_id = parse_owner(request.headers.get("x-user-id"))
    override = parse_collision(collision)
    key = _field_key(entity_type, bundle, field_name)
    runtime.get_field(key)

    writer = StagingWriter(runtime.temp_directory)
    try:
        async for chunk in request.stream():
            writer.write(chunk)
    except Exception:
        writer.abort()
        raise
    payload = writer.close()

    ctx = UploadContext(user_id=owner_id, username="anonymous" if owner_id == ANONYMOUS_USER_ID else f"user_{owner_id}")
    outcome = await run_in_threadpool(_commit, runtime, ctx, key, filename, payload, override)
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=outcome.to_dict())


@router.get("/file/upload-options/{entity_type}/{bundle}/{field_name}")
async def get_upload_options(request: Request, entity_type: str, bundle: str, field_name: str):
    """Stored and effective collision mode of a field."""
    runtime: UploadRuntime = request.app.state.runtime
    key = _field_key(entity_type, bundle, field_name)
    definition = runtime.get_field(key)
    stored = runtime.policy_store.get_mode(key)
    effective = runtime.policy_store.resolve_mode(key)
    return {
        "field": key.canonical,
        "label": definition.field_label or key.field_name,
        "mode": stored.name.lower(),
        "mode_value": int(stored),
        "mode_label": stored.label,
        "effective_mode": effective.name.lower(),
        "file_extensions": definition.file_extensions,
    }
