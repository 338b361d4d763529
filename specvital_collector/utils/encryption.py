"""Decryption of OAuth tokens stored at rest.

Tokens are written by the account service as Fernet ciphertext. The shared
``ENCRYPTION_KEY`` is either a Fernet key (url-safe base64 of 32 bytes) or a
passphrase from which the key is derived with PBKDF2.
"""

from __future__ import annotations

import base64
import binascii

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from specvital_collector.logging_config import get_logger

logger = get_logger(__name__)

# Salt for key derivation (constant, not secret)
_SALT = b"specvital_oauth_token_encryption_v1"
_KDF_ITERATIONS = 480000


class TokenDecryptionError(Exception):
    """A stored token could not be decrypted with the configured key."""


def _is_fernet_key(key: str) -> bool:
    try:
        return len(base64.urlsafe_b64decode(key.encode())) == 32
    except (binascii.Error, ValueError):
        return False


def derive_fernet_key(passphrase: str) -> bytes:
    """Derive a Fernet key from an arbitrary passphrase."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_SALT,
        iterations=_KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))


class TokenEncryptor:
    """Symmetric encryption of OAuth tokens.

    Args:
        key: Fernet key or passphrase from ENCRYPTION_KEY
    """

    def __init__(self, key: str):
        if not key:
            raise ValueError("encryption key is required")
        if _is_fernet_key(key):
            self._fernet = Fernet(key.encode())
        else:
            logger.debug("encryption_key_derived")
            self._fernet = Fernet(derive_fernet_key(key))

    def encrypt(self, token: str) -> str:
        """Encrypt a token for storage."""
        return self._fernet.encrypt(token.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored token.

        Raises:
            TokenDecryptionError: The ciphertext is malformed or was encrypted
                with a different key
        """
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise TokenDecryptionError("failed to decrypt token") from e


def mask_token(token: str) -> str:
    """Mask a token for display (first 4 and last 4 chars)."""
    if len(token) <= 12:
        return "*" * len(token)
    return f"{token[:4]}...{token[-4:]}"
