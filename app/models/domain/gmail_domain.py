# app/models/domain/gmail_domain.py
"""
Gmail Domain Models
Parsed Gmail API payloads used by the triage pipeline.
"""

import base64
import html
import re

from bs4 import BeautifulSoup

# Our own digest emails land in the same inbox and must never be triaged
SUMMARY_SUBJECT_MARKERS = ("AI Email Summary", "Inbox Summary", "AI Gmail Agent Summary")

_ANGLE_ADDRESS = re.compile(r"<([^>]+)>")
_WHITESPACE = re.compile(r"\s+")


def html_to_text(markup: str) -> str:
    """Visible text of an HTML body; script, style and head content is dropped."""
    soup = BeautifulSoup(markup, "lxml")
    for el in soup(["script", "style", "head", "meta", "link"]):
        el.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    text = html.unescape(soup.get_text(separator=" "))
    return _WHITESPACE.sub(" ", text).strip()


def extract_address(header_value: str) -> str:
    """`"Jane" <Jane@Example.com>` -> `jane@example.com`."""
    if not header_value:
        return ""
    match = _ANGLE_ADDRESS.search(header_value)
    address = match.group(1) if match else header_value
    return address.strip().lower()


class GmailMessage:
    """Domain model for a full-format Gmail message."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.thread_id = data.get("threadId")
        self.label_ids = data.get("labelIds", [])
        self.snippet = data.get("snippet", "")
        self.payload = data.get("payload", {}) or {}

        self._parse_headers()
        self._parse_body()

    def _parse_headers(self):
        headers = self.payload.get("headers", [])
        self.headers = {
            h["name"].lower(): h.get("value") or ""
            for h in headers
            if isinstance(h, dict) and h.get("name")
        }

        self.subject = self.headers.get("subject", "(no subject)")
        self.from_header = self.headers.get("from", "")
        self.message_id_header = self.headers.get("message-id", "")
        self.references = self.headers.get("references", "")

    def get_header(self, name: str) -> str:
        return self.headers.get(name.lower(), "")

    def _parse_body(self):
        self.body_text = ""
        self.body_html = ""

        if self.payload.get("body", {}).get("data"):
            decoded = self._decode_base64_data(self.payload["body"]["data"])
            if self.payload.get("mimeType") == "text/html":
                self.body_html = decoded
            else:
                self.body_text = decoded
        elif self.payload.get("parts"):
            self._parse_multipart_body(self.payload["parts"])

    def _parse_multipart_body(self, parts: list):
        for part in parts:
            mime_type = part.get("mimeType", "")
            body_data = part.get("body", {}).get("data")

            if mime_type == "text/plain" and body_data and not self.body_text:
                self.body_text = self._decode_base64_data(body_data)
            elif mime_type == "text/html" and body_data and not self.body_html:
                self.body_html = self._decode_base64_data(body_data)
            elif mime_type.startswith("multipart/"):
                self._parse_multipart_body(part.get("parts", []))

    def _decode_base64_data(self, data: str) -> str:
        """Decode base64 URL-safe encoded data."""
        try:
            decoded_bytes = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
            return decoded_bytes.decode("utf-8", errors="ignore")
        except (ValueError, TypeError):
            return ""

    @property
    def sender_email(self) -> str:
        return extract_address(self.from_header)

    def is_summary_email(self) -> bool:
        subject = self.subject.lower()
        return any(marker.lower() in subject for marker in SUMMARY_SUBJECT_MARKERS)

    def get_plain_body(self) -> str:
        """Plain text body, falling back to the text of the HTML body, then the snippet."""
        if self.body_text.strip():
            return self.body_text
        if self.body_html.strip():
            return html_to_text(self.body_html)
        return self.snippet

    def reply_subject(self) -> str:
        subject = self.subject or ""
        if subject.lower().startswith("re:"):
            return subject
        return f"Re: {subject}".strip()

    def reply_references(self) -> str:
        """References header for a reply: prior chain plus this message's Message-ID."""
        parts = [p for p in (self.references, self.message_id_header) if p]
        return " ".join(parts)


class GmailLabel:
    """Domain model for Gmail labels."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.name = data.get("name")
        self.type = data.get("type")
