"""
FileOpts API application factory.

    app = create_app(runtime)        # runtime already built (tests, embedding)
    app = create_app()               # runtime from fileopts.yaml

The runtime lives on ``app.state.runtime``; routers read it from there.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.routing import APIRoute

import fileopts
from fileopts.api.errors import handle_fileopts_error
from fileopts.api.health import router as health_router
from fileopts.api.upload import router as upload_router
from fileopts.engine.errors import FileOptsError
from fileopts.runtime import UploadRuntime

logger = logging.getLogger("fileopts.api.app")


def create_app(runtime: Optional[UploadRuntime] = None) -> FastAPI:
    """Create a FastAPI application."""
    owns_runtime = runtime is None
    runtime = runtime or UploadRuntime()
    if not runtime.is_started:
        runtime.startup()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_runtime:
            runtime.shutdown()

    app = FastAPI(
        title="FileOpts",
        summary="File uploads with per-field collision policies",
        version=fileopts.__version__,
        generate_unique_id_function=custom_generate_unique_id,
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.include_router(upload_router, tags=["files"])
    app.include_router(health_router, tags=["health"])

    app.add_exception_handler(FileOptsError, handle_fileopts_error)
    logger.info(f"API ready ({runtime.config.environment})")
    return app


def custom_generate_unique_id(route: APIRoute):
    """
    Generate prettier `operationId`s in the OpenAPI schema.

    These become the function names in generated client SDKs.
    """
    return f"{route.tags[0]}-{route.name}"
