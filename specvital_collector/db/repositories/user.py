"""OAuth token lookup over the ``oauth_accounts`` table."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from specvital_collector.deadline import Deadline, ensure_deadline
from specvital_collector.domain.errors import StoreError, TokenNotFoundError
from specvital_collector.db.models import OAuthAccount
from specvital_collector.logging_config import get_logger
from specvital_collector.utils.encryption import TokenEncryptor, mask_token

logger = get_logger(__name__)


class OAuthTokenRepository:
    """Reads and decrypts provider access tokens for a user."""

    def __init__(self, session_factory: sessionmaker[Session], encryptor: TokenEncryptor):
        self._session_factory = session_factory
        self._encryptor = encryptor

    def get_oauth_token(
        self,
        user_id: str,
        provider: str,
        *,
        deadline: Deadline | None = None,
    ) -> str:
        """Return the decrypted access token for ``(user_id, provider)``.

        Raises:
            ValueError: user_id is empty or not a UUID, or provider is empty
            TokenNotFoundError: no account row, or the stored token is empty
            StoreError: the query failed
            TokenDecryptionError: the stored token cannot be decrypted
        """
        if not user_id:
            raise ValueError("user ID is required")
        if not provider:
            raise ValueError("provider is required")
        try:
            user_uuid = UUID(user_id)
        except ValueError:
            raise ValueError(f"invalid user ID format: {user_id!r}") from None

        ensure_deadline(deadline).check()
        try:
            with self._session_factory() as session:
                encrypted = session.execute(
                    select(OAuthAccount.access_token)
                    .where(OAuthAccount.user_id == user_uuid)
                    .where(OAuthAccount.provider == provider)
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"get oauth account: {e}") from e

        if not encrypted:
            raise TokenNotFoundError()

        token = self._encryptor.decrypt(encrypted)
        if not token:
            raise TokenNotFoundError()
        logger.debug(
            "oauth_token_loaded", user_id=user_id, provider=provider, token=mask_token(token)
        )
        return token
