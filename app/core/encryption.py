"""At-rest encryption for the stored OraclePay API key."""

import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import get_settings
from app.core.exceptions import AppError

FERNET_KEY_LENGTH = 44


@lru_cache(maxsize=4)
def _fernet_for(key: str) -> Fernet:
    try:
        return Fernet(key.encode())
    except ValueError as e:
        raise AppError("Invalid TOKEN_ENCRYPTION_KEY", code="CONFIG_ERROR", details={"error": str(e)}) from e


def _get_fernet() -> Fernet:
    settings = get_settings()
    key = settings.token_encryption_key
    if len(key or "") != FERNET_KEY_LENGTH:
        # no usable key configured: derive one from SECRET_KEY (dev and tests)
        key = base64.urlsafe_b64encode(hashlib.sha256(settings.secret_key.encode()).digest()).decode()
    return _fernet_for(key)


def encrypt_secret(plain: str | None) -> str:
    return _get_fernet().encrypt(plain.encode()).decode() if plain else ""


def decrypt_secret(encrypted: str | None) -> str:
    """Plaintext, or "" when empty or sealed under a different key."""
    if not encrypted:
        return ""
    try:
        return _get_fernet().decrypt(encrypted.encode()).decode()
    except InvalidToken:
        return ""


def mask_secret(value: str | None, visible: int = 4) -> str:
    """`****abcd` form for logs and audit entries."""
    if not value:
        return ""
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]
