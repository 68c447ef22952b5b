"""FileOpts Database — SQLAlchemy base, mixins and session helpers."""

from fileopts.db.base import Base, TimestampMixin  # noqa: F401
from fileopts.db.session import init_db, session_scope  # noqa: F401

__all__ = ["Base", "TimestampMixin", "init_db", "session_scope"]
