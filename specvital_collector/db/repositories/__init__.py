"""Transactional stores backed by SQLAlchemy sessions."""

from .analysis import (
    PostgresAnalysisStore,
    map_test_status,
    truncate_error_message,
    truncate_name,
)
from .user import OAuthTokenRepository

__all__ = [
    "OAuthTokenRepository",
    "PostgresAnalysisStore",
    "map_test_status",
    "truncate_error_message",
    "truncate_name",
]
