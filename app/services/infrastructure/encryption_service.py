"""
Encryption service for stored Gmail refresh tokens.
Fernet tokens are URL-safe base64 text, so they live in plain text columns.
"""

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class EncryptionError(Exception):
    """Custom exception for encryption/decryption errors."""

    recoverable = False


def _get_fernet() -> Fernet:
    """
    Get Fernet instance with encryption key from environment.

    Raises:
        EncryptionError: If encryption key is missing or malformed
    """
    if not settings.ENCRYPTION_KEY:
        raise EncryptionError("ENCRYPTION_KEY not configured in environment")

    try:
        return Fernet(settings.ENCRYPTION_KEY.encode("utf-8"))
    except (ValueError, TypeError) as e:
        logger.error("Failed to initialize Fernet cipher", error=str(e))
        raise EncryptionError(f"Invalid encryption key: {e}") from e


def encrypt_token(token: str) -> str:
    """
    Encrypt a token for database storage.

    Raises:
        EncryptionError: If the token is empty or the key is unusable
    """
    if not token or not isinstance(token, str):
        raise EncryptionError("Token must be a non-empty string")

    encrypted = _get_fernet().encrypt(token.encode("utf-8")).decode("ascii")
    logger.debug("Token encrypted", token_length=len(token))
    return encrypted


def decrypt_token(encrypted_token: str | bytes) -> str:
    """
    Decrypt a token read from the database.

    Accepts text (text column) or bytes (bytea column).

    Raises:
        EncryptionError: If decryption fails or the token was tampered with
    """
    if not encrypted_token:
        raise EncryptionError("Encrypted token must be non-empty")

    raw = encrypted_token.encode("ascii") if isinstance(encrypted_token, str) else bytes(encrypted_token)

    try:
        return _get_fernet().decrypt(raw).decode("utf-8")
    except InvalidToken as e:
        logger.error("Token decryption failed - invalid token")
        raise EncryptionError("Invalid or corrupted token") from e


def validate_encryption_config() -> bool:
    """True when ENCRYPTION_KEY is present and round-trips a probe value."""
    try:
        probe = "encryption-probe"
        return decrypt_token(encrypt_token(probe)) == probe
    except EncryptionError as e:
        logger.error("Encryption configuration validation failed", error=str(e))
        return False


def generate_new_key() -> str:
    """New Fernet key for ENCRYPTION_KEY (initial setup or rotation)."""
    return Fernet.generate_key().decode("utf-8")
