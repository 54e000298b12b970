"""
Draft reply domain model and its review state machine.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class DraftStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"


# pending -> approved -> sent, pending -> rejected; sent and rejected are terminal
DRAFT_TRANSITIONS: dict[DraftStatus, set[DraftStatus]] = {
    DraftStatus.PENDING: {DraftStatus.APPROVED, DraftStatus.REJECTED},
    DraftStatus.APPROVED: {DraftStatus.SENT},
    DraftStatus.REJECTED: set(),
    DraftStatus.SENT: set(),
}

FALLBACK_WITH_INBOUND = (
    "Thanks for reaching out, I got your message. Can you share a bit more detail "
    "(or confirm your preferred time) so I can help?"
)
FALLBACK_WITHOUT_INBOUND = "Thanks for reaching out, I can help. What's the best next step on your end?"


def fallback_draft(has_inbound: bool) -> str:
    return FALLBACK_WITH_INBOUND if has_inbound else FALLBACK_WITHOUT_INBOUND


def can_transition(current: DraftStatus, target: DraftStatus) -> bool:
    return target in DRAFT_TRANSITIONS[current]


@dataclass(slots=True)
class DraftReply:
    """Represents a draft_replies row."""

    id: str
    run_id: str
    conversation_id: str
    phone: str
    from_phone_number_id: str | None
    user_id: str | None
    draft_text: str
    status: DraftStatus
    suppressed: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "DraftReply":
        return cls(
            id=str(row["id"]),
            run_id=str(row["run_id"]),
            conversation_id=row["conversation_id"],
            phone=row["phone"],
            from_phone_number_id=row.get("from_phone_number_id"),
            user_id=row.get("user_id"),
            draft_text=row["draft_text"],
            status=DraftStatus(row["status"]),
            suppressed=bool(row.get("suppressed")),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "conversation_id": self.conversation_id,
            "phone": self.phone,
            "from_phone_number_id": self.from_phone_number_id,
            "user_id": self.user_id,
            "draft_text": self.draft_text,
            "status": self.status.value,
            "suppressed": self.suppressed,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
