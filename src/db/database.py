from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings
from src.db.models.base import Base

settings = get_settings()


def create_scheduler_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the record store.

    In-memory SQLite gets a single shared connection so every session sees
    the same database.
    """
    if url.startswith("sqlite") and (":memory:" in url or url == "sqlite://"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=echo, pool_pre_ping=True)


def make_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, expire_on_commit=False)


# Sync engine/session
engine = create_scheduler_engine(settings.database_url, echo=settings.log_level == "DEBUG")
SessionLocal = make_session_factory(engine)


def get_engine() -> Engine:
    """Get the database engine."""
    return engine


def init_db(bind: Engine | None = None) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables initialized")


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()
