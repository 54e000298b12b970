"""
Run Domain Models
Shared run/checkpoint shapes for the OpenPhone cleanup and Gmail triage pipelines.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any


class RunStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class RunSource(str, Enum):
    OPENPHONE = "openphone"
    GMAIL = "gmail"


# running -> {completed | paused | failed}; paused/failed runs re-enter running on resume
ALLOWED_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.RUNNING: {RunStatus.COMPLETED, RunStatus.PAUSED, RunStatus.FAILED},
    RunStatus.PAUSED: {RunStatus.RUNNING},
    RunStatus.FAILED: {RunStatus.RUNNING},
    RunStatus.COMPLETED: set(),
}


def can_transition(current: RunStatus, target: RunStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


@dataclass(slots=True)
class RunError:
    """One failure recorded in a run checkpoint."""

    step: str
    message: str
    item_id: str | None = None

    def to_json(self, item_key: str = "conversationId") -> dict[str, Any]:
        data: dict[str, Any] = {"step": self.step, "message": self.message}
        if self.item_id:
            data[item_key] = self.item_id
        return data


@dataclass(slots=True)
class Checkpoint:
    """
    Resumption state stored as jsonb on the run row.

    Invariant enforced by RunTracker: a paused run always carries a page
    token and a completed run never does.
    """

    page_token: str | None = None
    processed: int = 0
    total_processed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    last_processed_at: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> "Checkpoint":
        if not data:
            return cls()
        return cls(
            page_token=data.get("pageToken"),
            processed=int(data.get("processed") or 0),
            total_processed=int(data.get("totalProcessed") or data.get("processed") or 0),
            errors=list(data.get("errors") or []),
            last_processed_at=data.get("lastProcessedAt"),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "pageToken": self.page_token,
            "processed": self.processed,
            "totalProcessed": self.total_processed,
            "errors": self.errors,
            "lastProcessedAt": self.last_processed_at,
        }


@dataclass(slots=True)
class Run:
    """Represents a runs row."""

    id: str
    source: RunSource
    start_date: date
    end_date: date
    status: RunStatus
    checkpoint: Checkpoint
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Run":
        return cls(
            id=str(row["id"]),
            source=RunSource(row.get("source") or RunSource.OPENPHONE.value),
            start_date=row["start_date"],
            end_date=row["end_date"],
            status=RunStatus(row["status"]),
            checkpoint=Checkpoint.from_json(row.get("checkpoint")),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def is_resumable(self) -> bool:
        return self.status in (RunStatus.PAUSED, RunStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.value,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status.value,
            "checkpoint": self.checkpoint.to_json(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")
