"""Encryption helpers for OAuth tokens and stored site passwords."""

import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings


@lru_cache(maxsize=1)
def _get_fernet() -> Fernet:
    """Get Fernet instance from the encryption key setting.

    Derives a valid 32-byte Fernet key from the config encryption_key
    using SHA-256, then base64-encodes it.

    Note: Changing encryption_key will make previously stored OAuth tokens
    and site credentials undecryptable.
    """
    key_bytes = hashlib.sha256(settings.encryption_key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(key_bytes))


def encrypt_token(token: str) -> str:
    """Encrypt a secret string."""
    return _get_fernet().encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    """Decrypt a secret string produced by encrypt_token."""
    return _get_fernet().decrypt(encrypted.encode()).decode()


def try_decrypt_token(encrypted: str | None) -> str | None:
    """Decrypt, returning None for empty or undecryptable values."""
    if not encrypted:
        return None
    try:
        return decrypt_token(encrypted)
    except InvalidToken:
        return None
