"""
FileOpts Upload Context — per-request acting user, carried in contextvars.

Set by the transport layer once the request has been authenticated;
read by the resolver to stamp ownership on new file records.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

current_upload_context: ContextVar[Optional["UploadContext"]] = ContextVar(
    "upload_context", default=None
)

ANONYMOUS_USER_ID = 0


@dataclass
class UploadContext:
    """Acting user and tracing id for one upload request."""

    user_id: int = ANONYMOUS_USER_ID
    username: str = "anonymous"
    execution_id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")

    @property
    def is_anonymous(self) -> bool:
        return self.user_id == ANONYMOUS_USER_ID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "execution_id": self.execution_id,
        }


def set_upload_context(ctx: UploadContext) -> None:
    current_upload_context.set(ctx)


def get_upload_context() -> UploadContext:
    """Current context, or a fresh anonymous one when none was set."""
    ctx = current_upload_context.get()
    if ctx is None:
        ctx = UploadContext()
        current_upload_context.set(ctx)
    return ctx


def clear_upload_context() -> None:
    current_upload_context.set(None)
