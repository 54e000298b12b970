import base64
import json
import re
from email import message_from_bytes

import pytest

from app.models.domain.gmail_domain import GmailMessage
from app.services import google_gmail_service as gmail_module
from app.services import google_oauth_service as oauth_module
from app.services.google_gmail_service import GoogleGmailError, GoogleGmailService
from app.services.google_oauth_service import GoogleOAuthError, GoogleOAuthService

BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
LABELS_URL = f"{BASE}/labels"


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(gmail_module, "BACKOFF_FACTOR", 0)
    monkeypatch.setattr(oauth_module, "BACKOFF_FACTOR", 0)


@pytest.mark.asyncio
async def test_list_recent_inbox_ids_pages(httpx_mock):
    list_url = re.compile(re.escape(f"{BASE}/messages") + r"\?.*")
    httpx_mock.add_response(
        method="GET", url=list_url, json={"messages": [{"id": "a"}, {"id": "b"}], "nextPageToken": "t2"}
    )
    httpx_mock.add_response(method="GET", url=list_url, json={"messages": [{"id": "c"}]})

    ids = await GoogleGmailService().list_recent_inbox_message_ids("token", lookback_days=3)

    assert ids == ["a", "b", "c"]
    first = httpx_mock.get_requests()[0]
    assert first.headers["Authorization"] == "Bearer token"
    assert first.url.params["q"] == "newer_than:3d"
    assert first.url.params["labelIds"] == "INBOX"


@pytest.mark.asyncio
async def test_ensure_labels_reuses_existing_and_survives_conflict(httpx_mock):
    httpx_mock.add_response(
        method="GET", url=LABELS_URL, json={"labels": [{"id": "Label_1", "name": "AI/Triaged"}]}
    )
    httpx_mock.add_response(
        method="POST",
        url=LABELS_URL,
        status_code=409,
        json={"error": {"code": 409, "message": "Label name exists or conflicts"}},
    )
    httpx_mock.add_response(
        method="GET",
        url=LABELS_URL,
        json={"labels": [{"id": "Label_1", "name": "AI/Triaged"}, {"id": "Label_2", "name": "ai/no_draft"}]},
    )

    mapping = await GoogleGmailService().ensure_labels("token", ["ai/triaged", "ai/no_draft", "ai/triaged"])

    assert mapping == {"ai/triaged": "Label_1", "ai/no_draft": "Label_2"}


@pytest.mark.asyncio
async def test_create_draft_reply_is_threaded(httpx_mock):
    httpx_mock.add_response(method="POST", url=f"{BASE}/drafts", json={"id": "draft-1"})
    original = GmailMessage(
        {
            "id": "m1",
            "threadId": "thread-1",
            "payload": {
                "headers": [
                    {"name": "From", "value": "Jane <jane@example.com>"},
                    {"name": "Subject", "value": "Invoice"},
                    {"name": "Message-ID", "value": "<abc@mail.example.com>"},
                ]
            },
        }
    )

    result = await GoogleGmailService().create_draft_reply("token", original, "Attached.", "<b>Office</b>")

    assert result == {"id": "draft-1"}
    body = json.loads(httpx_mock.get_request().content)
    assert body["message"]["threadId"] == "thread-1"
    mime = message_from_bytes(base64.urlsafe_b64decode(body["message"]["raw"]))
    assert mime["Subject"] == "Re: Invoice"
    assert mime["In-Reply-To"] == "<abc@mail.example.com>"
    assert "<abc@mail.example.com>" in mime["References"]
    assert mime["To"] == "Jane <jane@example.com>"


@pytest.mark.asyncio
async def test_permission_error_is_mapped(httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=f"{BASE}/messages/m1/modify",
        status_code=403,
        json={"error": {"code": 403, "message": "Insufficient Permission"}},
    )

    with pytest.raises(GoogleGmailError) as exc_info:
        await GoogleGmailService().modify_message("token", "m1", add_labels=["Label_1"])

    assert exc_info.value.status_code == 403
    assert exc_info.value.recoverable is False
    assert str(exc_info.value) == "Gmail access denied. Please check permissions."


@pytest.fixture
def oauth_service(monkeypatch):
    monkeypatch.setattr(oauth_module.settings, "GOOGLE_CLIENT_ID", "client-id")
    monkeypatch.setattr(oauth_module.settings, "GOOGLE_CLIENT_SECRET", "client-secret")
    return GoogleOAuthService()


@pytest.mark.asyncio
async def test_refresh_keeps_stored_refresh_token(httpx_mock, oauth_service):
    httpx_mock.add_response(method="POST", url=oauth_module.GOOGLE_TOKEN_URL, status_code=503)
    httpx_mock.add_response(
        method="POST",
        url=oauth_module.GOOGLE_TOKEN_URL,
        json={"access_token": "ya29.fresh", "expires_in": 3599, "token_type": "Bearer"},
    )

    token = await oauth_service.refresh_access_token("1//stored")

    assert token.access_token == "ya29.fresh"
    assert token.refresh_token == "1//stored"
    assert token.expires_at is not None
    assert b"grant_type=refresh_token" in httpx_mock.get_requests()[-1].content


@pytest.mark.asyncio
async def test_refresh_invalid_grant(httpx_mock, oauth_service):
    httpx_mock.add_response(
        method="POST",
        url=oauth_module.GOOGLE_TOKEN_URL,
        status_code=400,
        json={"error": "invalid_grant", "error_description": "Token has been expired or revoked."},
    )

    with pytest.raises(GoogleOAuthError) as exc_info:
        await oauth_service.refresh_access_token("1//revoked")

    assert exc_info.value.error_code == "invalid_grant"
    assert exc_info.value.recoverable is False


@pytest.mark.asyncio
async def test_inbox_listing_follows_every_page(httpx_mock):
    list_url = re.compile(re.escape(f"{BASE}/messages") + r"\?.*")
    for page in range(7):
        httpx_mock.add_response(
            method="GET",
            url=list_url,
            json={
                "messages": [{"id": f"p{page}-{i}"} for i in range(100)],
                "nextPageToken": f"t{page + 1}" if page < 6 else None,
            },
        )

    ids = await GoogleGmailService().list_recent_inbox_message_ids("token", lookback_days=14)

    assert len(ids) == 700
    assert ids[-1] == "p6-99"
    assert httpx_mock.get_requests()[-1].url.params["pageToken"] == "t6"


@pytest.mark.asyncio
async def test_draft_creation_is_not_replayed(httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=f"{BASE}/drafts",
        status_code=503,
        json={"error": {"code": 503, "message": "Backend Error"}},
    )
    original = GmailMessage({"id": "m1", "threadId": "thread-1", "payload": {"headers": []}})

    with pytest.raises(GoogleGmailError) as exc_info:
        await GoogleGmailService().create_draft_reply("token", original, "Attached.")

    assert exc_info.value.status_code == 503
    assert len(httpx_mock.get_requests()) == 1


@pytest.mark.asyncio
async def test_label_modification_is_retried(httpx_mock):
    modify_url = f"{BASE}/messages/m1/modify"
    httpx_mock.add_response(method="POST", url=modify_url, status_code=503)
    httpx_mock.add_response(method="POST", url=modify_url, json={"id": "m1"})

    result = await GoogleGmailService().modify_message("token", "m1", add_labels=["Label_1"])

    assert result == {"id": "m1"}
    assert len(httpx_mock.get_requests()) == 2
