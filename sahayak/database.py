"""
Sahayak v1.0 — Database Engine
SQLAlchemy setup. Works with SQLite (dev) and PostgreSQL (prod).
"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from sahayak.config import DATABASE_URL

logger = logging.getLogger(__name__)


# ─── Engine Setup ────────────────────────────────────────────────────────────

def make_engine(url: str = DATABASE_URL):
    """Build an engine with the right pool for the backend."""
    if url.startswith("sqlite"):
        # SQLite needs special handling for concurrent access
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            if ":memory:" not in url:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    # PostgreSQL: standard pooled connection
    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=False,
    )


engine = make_engine()


# ─── Session Factory ─────────────────────────────────────────────────────────

def make_session_factory(bind):
    # Rows outlive their session: the pipeline hands them between threadpool calls
    return sessionmaker(
        bind=bind,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


SessionLocal = make_session_factory(engine)


# ─── Base Class ──────────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def init_db(bind=None):
    """Create all tables. Called once at startup."""
    # Import models so they register on Base.metadata
    from sahayak import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables ready")
