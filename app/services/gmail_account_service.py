"""
Access tokens for connected Gmail accounts.

Refresh tokens are decrypted from gmail_accounts and exchanged with Google;
the resulting access token is cached in Redis until shortly before expiry.
"""

from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.repositories.gmail_repository import GmailAccountRepository
from app.services import redis_store
from app.services.google_oauth_service import GoogleOAuthError, refresh_google_token
from app.services.infrastructure.encryption_service import EncryptionError, decrypt_token

logger = get_logger(__name__)

ACCESS_TOKEN_CACHE_PREFIX = "gmail_access_token:"
EXPIRY_SAFETY_MARGIN_S = 120
DEFAULT_EXPIRES_IN_S = 3600


class GmailAccountError(Exception):
    """A connected Gmail account cannot be used right now."""

    def __init__(self, message: str, account_id: str | None = None, recoverable: bool = False):
        super().__init__(message)
        self.account_id = account_id
        self.recoverable = recoverable


async def list_accounts() -> list[dict[str, Any]]:
    return await GmailAccountRepository.list_active()


async def get_access_token(account: dict[str, Any]) -> str:
    """
    Valid access token for `account` (a gmail_accounts row).

    Raises:
        GmailAccountError: When the stored token cannot be decrypted or Google
            refuses to refresh it
    """
    account_id = str(account["id"])
    cache_key = f"{ACCESS_TOKEN_CACHE_PREFIX}{account_id}"

    cached = await redis_store.get(cache_key)
    if cached:
        return cached

    try:
        refresh_token = decrypt_token(account["encrypted_refresh_token"])
    except EncryptionError as e:
        raise GmailAccountError(
            f"Stored refresh token for {account.get('email')} is unreadable", account_id=account_id
        ) from e

    try:
        token = await refresh_google_token(refresh_token)
    except GoogleOAuthError as e:
        raise GmailAccountError(
            f"Token refresh failed for {account.get('email')}: {e}",
            account_id=account_id,
            recoverable=e.recoverable,
        ) from e

    ttl = max(int(token.expires_in or DEFAULT_EXPIRES_IN_S) - EXPIRY_SAFETY_MARGIN_S, 60)
    await redis_store.set_with_ttl(cache_key, token.access_token, ttl)

    logger.info("Gmail access token refreshed", account_id=account_id, cache_ttl=ttl)
    return token.access_token
