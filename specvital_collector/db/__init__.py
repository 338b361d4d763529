"""Database package: ORM models, session management and repositories.

Subpackages:
    models: SQLAlchemy ORM models
    repositories: Transactional stores used by the worker and scheduler
"""

from .models import (
    Analysis,
    AnalysisStatus,
    Base,
    Codebase,
    OAuthAccount,
    TestCaseRecord,
    TestCaseStatus,
    TestSuiteRecord,
)

__all__ = [
    "Base",
    "Analysis",
    "AnalysisStatus",
    "Codebase",
    "OAuthAccount",
    "TestCaseRecord",
    "TestCaseStatus",
    "TestSuiteRecord",
]
