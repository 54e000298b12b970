"""
OpenPhone API client: conversations, messages and outbound SMS.
"""

import asyncio
from typing import Any

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

OPENPHONE_API_BASE_URL = "https://api.openphone.com/v1"

REQUEST_TIMEOUT = 20  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
MESSAGE_PAGE_SIZE = 100


class OpenPhoneAPIError(Exception):
    """Custom exception for OpenPhone API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.recoverable = recoverable


class OpenPhoneService:
    """
    Thin async client over the OpenPhone REST API.

    OpenPhone takes the raw API key in the Authorization header (no
    "Bearer" prefix).
    """

    def __init__(self, api_key: str | None = None, client: httpx.AsyncClient | None = None):
        self._api_key = api_key
        self._client = client

    def _headers(self) -> dict[str, str]:
        api_key = self._api_key or settings.OPENPHONE_API_KEY
        if not api_key:
            raise OpenPhoneAPIError("Missing OPENPHONE_API_KEY")
        return {"Authorization": api_key, "Content-Type": "application/json"}

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        params: list[tuple[str, Any]] | None = None,
        json_body: dict | None = None,
    ) -> dict:
        headers = self._headers()
        url = f"{OPENPHONE_API_BASE_URL}{path}"

        client = self._client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        try:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.request(
                        method, url, headers=headers, params=params, json=json_body
                    )
                except httpx.RequestError as exc:
                    if attempt == MAX_RETRIES:
                        raise OpenPhoneAPIError(
                            f"OpenPhone {operation} network error: {exc}", recoverable=True
                        ) from exc
                    await asyncio.sleep(BACKOFF_FACTOR**attempt)
                    continue

                # POST /messages is not idempotent; never replay a send
                retryable = method == "GET" and response.status_code in RETRY_STATUS_CODES
                if retryable and attempt < MAX_RETRIES:
                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "OpenPhone transient status, retrying",
                        operation=operation,
                        status_code=response.status_code,
                        attempt=attempt,
                        wait_time=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                return self._handle_response(response, operation)
        finally:
            if self._client is None:
                await client.aclose()

        raise OpenPhoneAPIError(f"OpenPhone {operation} failed: retries exhausted", recoverable=True)

    def _handle_response(self, response: httpx.Response, operation: str) -> dict:
        if response.is_success:
            try:
                return response.json() if response.content else {}
            except ValueError as e:
                raise OpenPhoneAPIError(f"OpenPhone {operation} returned invalid JSON: {e}") from e

        logger.error(
            "OpenPhone API call failed",
            operation=operation,
            status_code=response.status_code,
            response_text=response.text[:200],
        )
        error_code = None
        try:
            error_code = response.json().get("code")
        except (ValueError, AttributeError):
            pass
        raise OpenPhoneAPIError(
            response.text[:500] or f"OpenPhone API error (HTTP {response.status_code})",
            status_code=response.status_code,
            error_code=error_code,
            recoverable=response.status_code in RETRY_STATUS_CODES,
        )

    async def list_conversations(
        self,
        updated_after: str,
        updated_before: str,
        max_results: int = 100,
        page_token: str | None = None,
    ) -> dict:
        """One page of conversations: {"data": [...], "nextPageToken": str | None}."""
        params: list[tuple[str, Any]] = [
            ("updatedAfter", updated_after),
            ("updatedBefore", updated_before),
            ("maxResults", max_results),
        ]
        if page_token:
            params.append(("pageToken", page_token))
        return await self._request("GET", "/conversations", "list_conversations", params=params)

    async def list_messages(
        self,
        phone_number_id: str,
        participants: list[str],
        created_after: str,
        created_before: str,
        page_token: str | None = None,
    ) -> dict:
        params: list[tuple[str, Any]] = [("phoneNumberId", phone_number_id)]
        params.extend(("participants", p) for p in participants)
        params.extend(
            [
                ("createdAfter", created_after),
                ("createdBefore", created_before),
                ("maxResults", MESSAGE_PAGE_SIZE),
            ]
        )
        if page_token:
            params.append(("pageToken", page_token))
        return await self._request("GET", "/messages", "list_messages", params=params)

    async def list_all_messages(
        self,
        phone_number_id: str,
        participants: list[str],
        created_after: str,
        created_before: str,
        max_messages: int,
    ) -> list[dict]:
        """Follow message pages until exhausted or more than `max_messages` are held."""
        messages: list[dict] = []
        page_token: str | None = None

        while True:
            page = await self.list_messages(
                phone_number_id, participants, created_after, created_before, page_token
            )
            messages.extend(page.get("data") or [])
            page_token = page.get("nextPageToken")
            if not page_token or len(messages) > max_messages:
                break

        return messages

    async def send_text_message(
        self,
        content: str,
        from_number: str,
        to: str,
        user_id: str | None = None,
        set_inbox_status: str | None = None,
    ) -> dict:
        body: dict[str, Any] = {"content": content, "from": from_number, "to": [to]}
        if user_id:
            body["userId"] = user_id
        if set_inbox_status:
            body["setInboxStatus"] = set_inbox_status

        data = await self._request("POST", "/messages", "send_message", json_body=body)
        logger.info("OpenPhone message sent", to_suffix=to[-4:])
        return data


openphone_service = OpenPhoneService()
