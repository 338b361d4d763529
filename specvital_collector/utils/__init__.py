"""Utility modules for specvital-collector."""

from specvital_collector.utils.encryption import (
    TokenDecryptionError,
    TokenEncryptor,
    mask_token,
)

__all__ = ["TokenDecryptionError", "TokenEncryptor", "mask_token"]
