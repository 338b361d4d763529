"""Global pytest configuration and fixtures.

Store tests run against an in-memory SQLite database that shares a single
connection (StaticPool), so every session sees the same data.
"""

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from specvital_collector.db.models import Base
from specvital_collector.db.repositories import PostgresAnalysisStore
from specvital_collector.db.session import create_session_factory


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (may require external services)"
    )
    config.addinivalue_line(
        "markers", "slow: Slow tests (>30 seconds)"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite engine with the full schema and foreign keys enforced."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return PostgresAnalysisStore(session_factory)
