"""
FileOpts Database Session Management.

Single entry point for engine creation plus a commit/rollback context
manager. Both the metadata store and the SQL policy backend go through
``init_db()``.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fileopts.db.base import Base


def init_db(db_url: str, create_tables: bool = True, echo: bool = False) -> sessionmaker:
    """
    Create an engine for *db_url* and return a session factory bound to it.

    In-memory SQLite URLs share one connection across threads so every
    session sees the same database.

    Args:
        db_url:        SQLAlchemy URL (sqlite:///fileopts.db, postgresql://...).
        create_tables: Run Base.metadata.create_all() on the new engine.
        echo:          SQLAlchemy statement echo.
    """
    # Import models so their tables are registered on Base.metadata
    import fileopts.files.models  # noqa: F401
    import fileopts.policies.backends  # noqa: F401

    kwargs = {"echo": echo}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(db_url, **kwargs)
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for DB sessions with auto-commit/rollback.

    Usage:
        with session_scope(factory) as session:
            record = session.query(FileRecord).filter_by(uri=uri).first()
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
