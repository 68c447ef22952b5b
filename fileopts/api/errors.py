"""
FileOpts API error mapping — FileOptsError subclasses to HTTP responses.

Body shape: {"error": <message>, "error_type": <class name>} plus
``validation_errors`` for 422 responses. Locked responses carry a
``Retry-After`` header.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple, Type

from fastapi import Request
from fastapi.responses import JSONResponse

from fileopts.engine.errors import (
    FileOptsConfigError,
    FileOptsConflictError,
    FileOptsDestinationError,
    FileOptsError,
    FileOptsExhaustionError,
    FileOptsFieldNotFoundError,
    FileOptsLockedError,
    FileOptsMoveError,
    FileOptsPersistError,
    FileOptsValidationError,
)

logger = logging.getLogger("fileopts.api.errors")

# status code, public message (None keeps the error's own message)
ERROR_RESPONSES: Dict[Type[FileOptsError], Tuple[int, Optional[str]]] = {
    FileOptsConflictError: (409, None),
    FileOptsLockedError: (503, None),
    FileOptsValidationError: (422, None),
    FileOptsFieldNotFoundError: (404, None),
    FileOptsDestinationError: (500, "Destination file path is not writable"),
    FileOptsMoveError: (500, "Temporary file could not be moved to file location"),
    FileOptsPersistError: (500, "File was stored but its record could not be saved"),
    FileOptsExhaustionError: (500, None),
    FileOptsConfigError: (500, None),
}


def status_for(exc: FileOptsError) -> Tuple[int, str]:
    for cls in type(exc).__mro__:
        if cls in ERROR_RESPONSES:
            code, message = ERROR_RESPONSES[cls]
            return code, message or exc.message
    return 500, exc.message


async def handle_fileopts_error(request: Request, exc: FileOptsError) -> JSONResponse:
    code, message = status_for(exc)
    body = {"error": message, "error_type": exc.error_type}
    headers = {}

    if isinstance(exc, FileOptsValidationError):
        body["validation_errors"] = exc.validation_errors
    if isinstance(exc, FileOptsLockedError):
        headers["Retry-After"] = str(exc.retry_after)

    if code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {code}: {exc!r}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {code}: {exc.error_type}")
    return JSONResponse(status_code=code, content=body, headers=headers)
