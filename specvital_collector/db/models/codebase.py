"""Codebase model: the canonical identity of a source repository."""

from datetime import datetime
from typing import TYPE_CHECKING, List
from uuid import UUID

from sqlalchemy import DateTime, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, generate_repr

if TYPE_CHECKING:
    from .analysis import Analysis


class Codebase(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A repository identified by ``(host, owner, name)``, shared across analyses.

    Attributes:
        id: UUID primary key
        host: VCS host, e.g. ``github.com``
        owner: Repository owner (user or organization)
        name: Repository name
        default_branch: Branch HEAD pointed at during the latest analysis
        refresh_user_id: User whose OAuth token is used for scheduled refreshes
        last_refresh_checked_at: When the scheduler last found the remote HEAD
            unchanged; a recent check keeps the codebase out of refresh batches
        analyses: Analyses run against this codebase
    """

    __tablename__ = "codebases"

    host: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    owner: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    default_branch: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    refresh_user_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        nullable=True,
    )
    last_refresh_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    analyses: Mapped[List["Analysis"]] = relationship(
        "Analysis",
        back_populates="codebase",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("host", "owner", "name", name="uq_codebases_host_owner_name"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __repr__(self) -> str:
        return generate_repr(self, "id", "host", "owner", "name")
