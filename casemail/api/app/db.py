from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import QueuePool, StaticPool
from .config import settings
import logging
from typing import Any, Iterator

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def build_engine(url: str) -> Any:
    """Create an engine with pooling suited to the backing database."""
    if url.startswith("sqlite"):
        # SQLite (local dev/tests): single shared connection, no pool sizing
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,  # Base number of connections to keep open
        max_overflow=20,  # Extra connections during reclassification bursts
        pool_timeout=30,  # Wait up to 30s for a connection
        pool_recycle=1800,  # Recycle connections every 30 min to avoid stale connections
        echo=False,
    )


try:
    engine = build_engine(settings.DATABASE_URL)
except Exception as e:
    logger.error(f"Failed to create database engine: {e}")
    # Re-raise the exception as this is critical
    raise
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Any]:
    """Database dependency for FastAPI"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
