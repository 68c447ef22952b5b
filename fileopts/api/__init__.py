"""FileOpts HTTP API — FastAPI application and upload routes."""

from fileopts.api.app import create_app

__all__ = ["create_app"]
