"""
Google OAuth token refresh for connected Gmail accounts.
Refresh tokens are stored encrypted; access tokens are minted here on demand.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2  # 2, 4 seconds between attempts
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class GoogleOAuthError(Exception):
    """Custom exception for Google OAuth-related errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        response_data: dict | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}
        self.recoverable = recoverable


class TokenResponse:
    """Structured representation of OAuth token response."""

    def __init__(self, data: dict):
        self.access_token = data.get("access_token")
        self.refresh_token = data.get("refresh_token")
        self.token_type = data.get("token_type", "Bearer")
        self.expires_in = data.get("expires_in")
        self.scope = data.get("scope", "")

        if self.expires_in:
            self.expires_at = datetime.now(UTC) + timedelta(seconds=int(self.expires_in))
        else:
            self.expires_at = None

    def is_valid(self) -> bool:
        return bool(self.access_token and self.token_type)


class GoogleOAuthService:
    """Refreshes Google access tokens with retry/backoff on transient failures."""

    def __init__(self):
        self.client_id = settings.GOOGLE_CLIENT_ID
        self.client_secret = settings.GOOGLE_CLIENT_SECRET
        self._validate_config()

    def _validate_config(self) -> None:
        if not self.client_id:
            raise GoogleOAuthError("GOOGLE_CLIENT_ID not configured")
        if not self.client_secret:
            raise GoogleOAuthError("GOOGLE_CLIENT_SECRET not configured")

    async def _post_with_retry(self, url: str, data: dict, operation: str) -> httpx.Response:
        """POST form data, retrying transient statuses and transport errors."""
        headers = {"Content-Type": "application/x-www-form-urlencoded"}

        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.post(url, data=data, headers=headers)
                except httpx.RequestError as exc:
                    if attempt == MAX_RETRIES:
                        raise
                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "Google OAuth request error, retrying",
                        operation=operation,
                        attempt=attempt,
                        wait_time=wait_time,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "Google OAuth transient status",
                        operation=operation,
                        status_code=response.status_code,
                        attempt=attempt,
                        wait_time=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                return response

        raise GoogleOAuthError(f"{operation} failed: retries exhausted", recoverable=True)

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Exchange a refresh token for a fresh access token.

        Raises:
            GoogleOAuthError: On network failure or a rejected refresh token
        """
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._post_with_retry(GOOGLE_TOKEN_URL, data, operation="token_refresh")
        except httpx.RequestError as e:
            logger.error("Network error during token refresh", error=str(e), error_type=type(e).__name__)
            raise GoogleOAuthError(f"Network error during token refresh: {e}", recoverable=True) from e

        token_response = self._handle_token_response(response)

        # Google usually omits the refresh token on refresh; keep the stored one
        if not token_response.refresh_token:
            token_response.refresh_token = refresh_token

        return token_response

    def _handle_token_response(self, response: httpx.Response) -> TokenResponse:
        if not response.is_success:
            try:
                error_data = response.json()
            except ValueError:
                logger.error(
                    "Google token refresh failed with non-JSON response",
                    status_code=response.status_code,
                    response_text=response.text[:200],
                )
                raise GoogleOAuthError(
                    f"Google OAuth service error (HTTP {response.status_code})",
                    recoverable=response.status_code >= 500,
                ) from None

            error_code = error_data.get("error", "unknown_error")
            logger.error(
                "Google token refresh failed",
                status_code=response.status_code,
                error_code=error_code,
                error_description=error_data.get("error_description"),
            )
            message = (
                "Gmail authorization revoked or expired; reconnect the account"
                if error_code == "invalid_grant"
                else f"Google token refresh failed ({error_code})"
            )
            raise GoogleOAuthError(message, error_code=error_code, response_data=error_data)

        try:
            token_response = TokenResponse(response.json())
        except ValueError as e:
            raise GoogleOAuthError(f"Failed to parse Google response: {e}") from e

        if not token_response.is_valid():
            raise GoogleOAuthError("Invalid token response from Google")

        logger.info("Google token refresh successful", expires_in=token_response.expires_in)
        return token_response


_oauth_service: GoogleOAuthService | None = None


def get_google_oauth_service() -> GoogleOAuthService:
    global _oauth_service
    if _oauth_service is None:
        _oauth_service = GoogleOAuthService()
    return _oauth_service


async def refresh_google_token(refresh_token: str) -> TokenResponse:
    """Convenience wrapper over the shared service."""
    return await get_google_oauth_service().refresh_access_token(refresh_token)
