"""Analysis model for tracking test inventory extraction runs.

An analysis is created in ``running`` and transitions exactly once to
``completed`` or ``failed``; terminal rows are never updated again.
"""

import enum
from datetime import datetime
from typing import TYPE_CHECKING, List
from uuid import UUID

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDPrimaryKeyMixin, generate_repr

if TYPE_CHECKING:
    from .codebase import Codebase
    from .test_inventory import TestSuiteRecord


class AnalysisStatus(str, enum.Enum):
    """Status of an analysis."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Analysis(Base, UUIDPrimaryKeyMixin):
    """Analysis model representing one pipeline run at a specific commit.

    Attributes:
        id: UUID primary key
        codebase_id: Foreign key to the analyzed codebase
        commit_sha: Git commit SHA that was analyzed
        branch_name: Branch HEAD pointed at when cloned
        status: running, completed or failed
        started_at: When the record was created
        completed_at: When the analysis reached a terminal state
        error_message: Truncated failure message (failed only)
        total_suites: Number of suites saved (completed only)
        total_tests: Number of test cases saved (completed only)
        codebase: The analyzed codebase
        suites: Suite forest owned by this analysis
    """

    __tablename__ = "analyses"

    codebase_id: Mapped[UUID] = mapped_column(
        ForeignKey("codebases.id", ondelete="CASCADE"),
        nullable=False,
    )
    commit_sha: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    branch_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    status: Mapped[AnalysisStatus] = mapped_column(
        Enum(
            AnalysisStatus,
            name="analysis_status",
            values_callable=lambda e: [member.value for member in e],
        ),
        default=AnalysisStatus.RUNNING,
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    total_suites: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    total_tests: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    # Relationships
    codebase: Mapped["Codebase"] = relationship(
        "Codebase",
        back_populates="analyses",
    )
    suites: Mapped[List["TestSuiteRecord"]] = relationship(
        "TestSuiteRecord",
        back_populates="analysis",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_analyses_codebase_id", "codebase_id"),
        Index("ix_analyses_commit_sha", "commit_sha"),
        Index("ix_analyses_status", "status"),
    )

    def __repr__(self) -> str:
        return generate_repr(self, "id", "commit_sha", "status")
