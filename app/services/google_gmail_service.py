"""
Google Gmail API client used by the triage pipeline.
Raw REST calls over httpx; response parsing lives in models/domain/gmail_domain.py.
"""

import asyncio
import base64
import html
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import httpx

from app.infrastructure.observability.logging import get_logger
from app.models.domain.gmail_domain import GmailLabel, GmailMessage

logger = get_logger(__name__)

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

LIST_PAGE_SIZE = 100


class GoogleGmailError(Exception):
    """Custom exception for Google Gmail API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}
        self.recoverable = status_code is None or status_code in RETRY_STATUS_CODES


class GoogleGmailService:
    """
    Service for Google Gmail API operations.

    Every call takes an access token so one instance serves all connected
    accounts. Transient statuses and transport errors are retried with
    exponential backoff; everything else surfaces as GoogleGmailError.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        operation: str,
        params: dict | None = None,
        json_body: dict | None = None,
        idempotent: bool | None = None,
    ) -> dict:
        """
        Send one Gmail API request.

        Only idempotent requests are replayed on transient failures; by
        default that means GET. A replayed draft POST would leave a second draft.
        """
        retryable = method == "GET" if idempotent is None else idempotent
        url = f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}{path}"
        headers = self._get_auth_headers(access_token)

        client = self._client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        try:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.request(
                        method, url, headers=headers, params=params, json=json_body
                    )
                except httpx.RequestError as exc:
                    if not retryable or attempt == MAX_RETRIES:
                        raise GoogleGmailError(f"Gmail {operation} network error: {exc}") from exc
                    await self._backoff(operation, attempt, error=str(exc))
                    continue

                if retryable and response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    await self._backoff(operation, attempt, status_code=response.status_code)
                    continue

                return self._handle_api_response(response, operation)
        finally:
            if self._client is None:
                await client.aclose()

        raise GoogleGmailError(f"Gmail {operation} failed: retries exhausted")

    async def _backoff(self, operation: str, attempt: int, **context) -> None:
        wait_time = BACKOFF_FACTOR**attempt
        logger.warning(
            "Gmail API transient failure, retrying",
            operation=operation,
            attempt=attempt,
            wait_time=wait_time,
            **context,
        )
        await asyncio.sleep(wait_time)

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        if response.is_success:
            try:
                return response.json() if response.content else {}
            except ValueError as e:
                raise GoogleGmailError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json()
        except ValueError:
            logger.error(
                f"Gmail API {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise GoogleGmailError(
                f"Gmail API error (HTTP {response.status_code})", status_code=response.status_code
            ) from None

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_code = str(error_info.get("code", response.status_code))
        error_message = error_info.get("message", "Unknown Gmail API error")

        logger.error(
            f"Gmail API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )
        raise GoogleGmailError(
            self._map_gmail_error(error_code, error_message),
            error_code=error_code,
            status_code=response.status_code,
            response_data=error_data,
        )

    def _map_gmail_error(self, error_code: str, error_message: str) -> str:
        error_mappings = {
            "401": "Gmail authorization expired. Please reconnect.",
            "403": "Gmail access denied. Please check permissions.",
            "404": "Email message not found.",
            "429": "Too many Gmail requests. Please try again later.",
        }
        return error_mappings.get(error_code, f"Gmail error: {error_message}")

    async def list_recent_inbox_message_ids(self, access_token: str, lookback_days: int) -> list[str]:
        """
        Ids of INBOX messages newer than `lookback_days`, newest first.

        Follows nextPageToken until Gmail stops returning one; the window
        is bounded only by `lookback_days`.
        """
        ids: list[str] = []
        page_token: str | None = None

        while True:
            params: dict[str, Any] = {
                "labelIds": "INBOX",
                "q": f"newer_than:{lookback_days}d",
                "maxResults": LIST_PAGE_SIZE,
            }
            if page_token:
                params["pageToken"] = page_token

            data = await self._request("GET", "/messages", access_token, "list_messages", params=params)
            ids.extend(m["id"] for m in data.get("messages", []) if m.get("id"))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.info("Listed recent inbox messages", count=len(ids), lookback_days=lookback_days)
        return ids

    async def get_message(self, access_token: str, message_id: str) -> GmailMessage:
        data = await self._request(
            "GET", f"/messages/{message_id}", access_token, "get_message", params={"format": "full"}
        )
        return GmailMessage(data)

    async def get_labels(self, access_token: str) -> list[GmailLabel]:
        data = await self._request("GET", "/labels", access_token, "get_labels")
        return [GmailLabel(label) for label in data.get("labels", [])]

    async def create_label(self, access_token: str, name: str) -> GmailLabel:
        body = {"name": name, "labelListVisibility": "labelShow", "messageListVisibility": "show"}
        data = await self._request("POST", "/labels", access_token, "create_label", json_body=body)
        logger.info("Gmail label created", label_name=name)
        return GmailLabel(data)

    async def ensure_labels(self, access_token: str, names: list[str]) -> dict[str, str]:
        """Map label name -> id, creating any that do not exist yet."""
        wanted = [n for n in dict.fromkeys(names) if n and n.strip()]
        existing = {label.name.lower(): label for label in await self.get_labels(access_token) if label.name}

        name_to_id: dict[str, str] = {}
        for name in wanted:
            label = existing.get(name.lower())
            if label is None:
                try:
                    label = await self.create_label(access_token, name)
                except GoogleGmailError as e:
                    # 409: created concurrently; anything else leaves the label out
                    if e.status_code != 409:
                        raise
                    refreshed = {
                        lbl.name.lower(): lbl for lbl in await self.get_labels(access_token) if lbl.name
                    }
                    label = refreshed.get(name.lower())
                    if label is None:
                        continue
                existing[name.lower()] = label
            name_to_id[name] = label.id
        return name_to_id

    async def modify_message(
        self,
        access_token: str,
        message_id: str,
        add_labels: list[str] | None = None,
        remove_labels: list[str] | None = None,
    ) -> dict:
        body = {"addLabelIds": add_labels or [], "removeLabelIds": remove_labels or []}
        return await self._request(
            "POST",
            f"/messages/{message_id}/modify",
            access_token,
            "modify_message",
            json_body=body,
            idempotent=True,
        )

    async def get_signature(self, access_token: str) -> str:
        """HTML signature of the primary send-as address; empty when unset."""
        data = await self._request("GET", "/settings/sendAs", access_token, "get_signature")
        for alias in data.get("sendAs", []):
            if alias.get("isPrimary"):
                return alias.get("signature") or ""
        return ""

    async def create_draft_reply(
        self, access_token: str, original: GmailMessage, reply_text: str, signature_html: str = ""
    ) -> dict:
        """
        Create a threaded draft reply to `original`.

        The draft carries plain and HTML alternatives; the signature is
        appended to the HTML part only.
        """
        msg = MIMEMultipart("alternative")
        msg["To"] = original.get_header("reply-to") or original.from_header
        msg["Subject"] = original.reply_subject()
        if original.message_id_header:
            msg["In-Reply-To"] = original.message_id_header
        references = original.reply_references()
        if references:
            msg["References"] = references

        html_body = html.escape(reply_text).replace("\n", "<br>")
        if signature_html:
            html_body = f"{html_body}<br><br>{signature_html}"

        msg.attach(MIMEText(reply_text, "plain", "utf-8"))
        msg.attach(MIMEText(f"<div>{html_body}</div>", "html", "utf-8"))

        raw_message = base64.urlsafe_b64encode(msg.as_bytes()).decode("utf-8")
        body = {"message": {"raw": raw_message, "threadId": original.thread_id}}

        data = await self._request("POST", "/drafts", access_token, "create_draft", json_body=body)
        logger.info("Draft reply created", draft_id=data.get("id"), thread_id=original.thread_id)
        return data


google_gmail_service = GoogleGmailService()
