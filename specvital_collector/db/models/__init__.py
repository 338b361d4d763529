"""SQLAlchemy models for the collector.

- Codebase: canonical repository identity, shared across analyses
- Analysis: one pipeline run at a commit, with its status state machine
- TestSuiteRecord / TestCaseRecord: the persisted test inventory
- OAuthAccount: provider tokens (read-only here)

Usage:
    from specvital_collector.db.models import Analysis, AnalysisStatus
"""

from .analysis import Analysis, AnalysisStatus
from .base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin
from .codebase import Codebase
from .oauth import OAuthAccount
from .test_inventory import TestCaseRecord, TestCaseStatus, TestSuiteRecord

__all__ = [
    # Base classes
    "Base",
    "JSONType",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Models
    "Analysis",
    "Codebase",
    "OAuthAccount",
    "TestCaseRecord",
    "TestSuiteRecord",
    # Enums
    "AnalysisStatus",
    "TestCaseStatus",
]
