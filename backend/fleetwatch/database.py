"""Database handle: engine, session factory and the FastAPI session dependency."""
from __future__ import annotations

from collections.abc import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import Settings, settings as default_settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class Database:
    """Store handle constructed once at startup and passed to every component."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )

    def session(self) -> Session:
        return self.SessionLocal()

    def create_all(self) -> None:
        # Register every mapped class on Base.metadata before creating tables.
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def build_database(url: str | None = None, *, config: Settings | None = None) -> Database:
    """Create the store handle for the configured database URL."""
    cfg = config or default_settings
    database_url = url or cfg.DATABASE_URL

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    else:
        engine = create_engine(
            database_url,
            pool_size=cfg.DATABASE_POOL_SIZE,
            max_overflow=cfg.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return Database(engine)


def get_db(request: Request) -> Iterator[Session]:
    """Yield a request-scoped session from the application's store handle."""
    database: Database = request.app.state.database
    db = database.session()
    try:
        yield db
    finally:
        db.close()
