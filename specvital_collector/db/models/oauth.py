"""OAuth account model.

Rows are written by the user-management service; the collector only reads
them to obtain provider access tokens for private repositories.
"""

from uuid import UUID

from sqlalchemy import Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, generate_repr


class OAuthAccount(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A user's linked OAuth provider account.

    Attributes:
        id: UUID primary key
        user_id: Owning user
        provider: Provider name, e.g. ``github``
        access_token: Fernet-encrypted access token (may be empty)
    """

    __tablename__ = "oauth_accounts"

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    access_token: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_oauth_accounts_user_id_provider"),
        Index("ix_oauth_accounts_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return generate_repr(self, "id", "user_id", "provider")
