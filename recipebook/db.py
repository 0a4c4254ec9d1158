"""Database engine and session factory.

The engine is created lazily from `settings.database_url` so tests and
scripts can point it elsewhere with `init_engine(url)` first.
"""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from .settings import settings


class Base(DeclarativeBase):
    pass


_engine = None
_SessionLocal = None


def init_engine(database_url: str | None = None):
    global _engine, _SessionLocal
    url = database_url or settings.database_url
    connect_args = {}
    if url.startswith("sqlite"):
        # Sessions cross into the threadpool for sync handlers
        connect_args["check_same_thread"] = False
    _engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def session_factory():
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def get_db():
    """Request-scoped session; every MetadataStore call commits its own work."""
    db = session_factory()()
    try:
        yield db
    finally:
        db.close()
