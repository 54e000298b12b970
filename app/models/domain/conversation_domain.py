"""
OpenPhone Conversation Domain Models
Parsed conversation/message shapes plus the transcript rules the cleanup
pipeline applies before summarization.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

INCOMING = "incoming"
OUTGOING = "outgoing"

NO_MESSAGES_PLACEHOLDER = "(no messages in window)"
UNKNOWN_CONTACT = "Unknown Contact"

_WHITESPACE = re.compile(r"\s+")

_NAME_PATTERNS = [
    re.compile(r"(?:my name is|i'm|i am|this is)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)", re.IGNORECASE),
    re.compile(r"(?:^|\n)\s*([A-Z][a-z]+)\s+here", re.IGNORECASE),
    re.compile(
        r"(?:regards|thanks|sincerely),?\s*\n?\s*([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)", re.IGNORECASE
    ),
]
_NAME_FALSE_POSITIVES = {"Thank", "Thanks", "Hi", "Hello", "Hey", "Dear", "Please"}


@dataclass(slots=True)
class OpenPhoneMessage:
    id: str | None
    direction: str
    text: str
    created_at: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "OpenPhoneMessage":
        return cls(
            id=data.get("id"),
            direction=data.get("direction") or "",
            text=data.get("text") or "",
            created_at=data.get("createdAt") or "",
        )

    @property
    def timestamp(self) -> datetime | None:
        if not self.created_at:
            return None
        try:
            return datetime.fromisoformat(self.created_at.replace("Z", "+00:00"))
        except ValueError:
            return None

    def normalized_text(self) -> str:
        return _WHITESPACE.sub(" ", self.text).strip()

    def is_incoming(self) -> bool:
        return self.direction == INCOMING


@dataclass(slots=True)
class OpenPhoneConversation:
    id: str
    phone_number_id: str | None
    participants: list[str] = field(default_factory=list)
    name: str | None = None
    deleted_at: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "OpenPhoneConversation":
        return cls(
            id=data["id"],
            phone_number_id=data.get("phoneNumberId"),
            participants=list(data.get("participants") or []),
            name=data.get("name"),
            deleted_at=data.get("deletedAt"),
        )

    @property
    def participant(self) -> str | None:
        return self.participants[0] if self.participants else None

    def has_unknown_name(self) -> bool:
        return not self.name or "unknown" in self.name.lower()


def _sort_key(message: OpenPhoneMessage):
    ts = message.timestamp
    return (ts is None, ts.timestamp() if ts else 0.0)


def filter_ignored(messages: list[OpenPhoneMessage], ignored_texts: list[str]) -> list[OpenPhoneMessage]:
    """Drop canned auto-replies; comparison is on whitespace-collapsed text."""
    ignored = {_WHITESPACE.sub(" ", text).strip() for text in ignored_texts}
    return [m for m in messages if m.normalized_text() not in ignored]


def build_transcript(messages: list[OpenPhoneMessage]) -> str:
    """Chronological `[createdAt] IN|OUT: text` lines; empty string when no messages."""
    ordered = sorted(messages, key=_sort_key)
    return "\n".join(
        f"[{m.created_at}] {'IN' if m.is_incoming() else 'OUT'}: {m.text}" for m in ordered
    )


def pick_last(messages: list[OpenPhoneMessage], direction: str) -> OpenPhoneMessage | None:
    """Latest message in `direction` with non-blank text."""
    candidates = [m for m in messages if m.direction == direction and m.text.strip()]
    if not candidates:
        return None
    return sorted(candidates, key=_sort_key)[-1]


def last_message_at(messages: list[OpenPhoneMessage]) -> str | None:
    stamps = [m.created_at for m in messages if m.created_at]
    return max(stamps) if stamps else None


def extract_name_with_reason(transcript: str) -> tuple[str, str] | None:
    """
    Find a self-introduced name in a transcript.

    Patterns are tried in order: "my name is X" style introductions,
    "X here" at the start of a line, then sign-offs ("Thanks, X").
    Greetings captured by the looser patterns are discarded.

    Returns:
        (name, rationale) or None
    """
    for pattern in _NAME_PATTERNS:
        match = pattern.search(transcript)
        if not match or not match.group(1):
            continue
        name = match.group(1).strip()
        if name in _NAME_FALSE_POSITIVES:
            continue
        return name, f'Name extracted from pattern: "{match.group(0).strip()}"'
    return None
