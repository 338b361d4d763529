"""Database engine and session management.

Workers run on Celery's thread pool, so the collector uses SQLAlchemy's
synchronous engine with a shared connection pool. Sessions are created per
unit of work and never shared between threads.
"""

import os

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from specvital_collector.logging_config import get_logger

logger = get_logger(__name__)


def normalize_database_url(url: str) -> str:
    """Select the psycopg 3 driver for plain ``postgresql://`` URLs."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def create_db_engine(database_url: str) -> Engine:
    """Create the synchronous engine with pool settings from the environment."""
    url = normalize_database_url(database_url)
    kwargs: dict = {
        "echo": os.getenv("DATABASE_ECHO", "false").lower() == "true",
        "pool_pre_ping": True,  # Enable connection health checks
    }
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = int(os.getenv("DATABASE_POOL_SIZE", "5"))
        kwargs["max_overflow"] = int(os.getenv("DATABASE_MAX_OVERFLOW", "10"))
    return create_engine(url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        engine,
        expire_on_commit=False,
        autoflush=False,
    )


def check_connection(engine: Engine) -> None:
    """Verify database connectivity, raising on failure."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("database_connected")
    except Exception as e:
        logger.error("database_connection_failed", error=str(e))
        raise
