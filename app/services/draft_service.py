"""
Review workflow for OpenPhone draft replies.

pending -> approved (optionally with edited text) -> sent, or
pending -> rejected. Each state change is a single conditional UPDATE so
two reviewers racing on the same draft cannot both win.
"""

from dataclasses import dataclass, field
from typing import Any

from app.infrastructure.audit import audit_logger
from app.infrastructure.observability.logging import get_logger
from app.models.domain.draft_domain import DraftReply, DraftStatus, can_transition
from app.repositories.openphone_repository import DraftRepository
from app.services.openphone_service import OpenPhoneService, openphone_service

logger = get_logger(__name__)

RESOURCE_TYPE = "draft_reply"


class DraftNotFoundError(Exception):
    recoverable = False

    def __init__(self, draft_id: str):
        super().__init__(f"Draft {draft_id} not found")
        self.draft_id = draft_id


class DraftStateError(Exception):
    """The draft is not in a state that allows the requested action."""

    recoverable = False


@dataclass(slots=True)
class SendResult:
    sent: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        return {"ok": True, "sent": self.sent, "errors": self.errors}


class DraftService:
    def __init__(self, openphone: OpenPhoneService | None = None):
        self.openphone = openphone or openphone_service

    async def list_drafts(self, status: DraftStatus | None = None) -> list[DraftReply]:
        return await DraftRepository.list_by_status(status)

    async def approve(
        self, draft_id: str, edit: str | None = None, actor: str | None = None, **client
    ) -> DraftReply:
        edited_text = edit.strip() if edit and edit.strip() else None
        draft = await self._transition(draft_id, DraftStatus.APPROVED, draft_text=edited_text)
        await audit_logger.log(
            actor=actor,
            action="draft_approved",
            resource_type=RESOURCE_TYPE,
            resource_id=draft_id,
            metadata={"edited": edited_text is not None},
            **client,
        )
        return draft

    async def reject(self, draft_id: str, actor: str | None = None, **client) -> DraftReply:
        draft = await self._transition(draft_id, DraftStatus.REJECTED)
        await audit_logger.log(
            actor=actor,
            action="draft_rejected",
            resource_type=RESOURCE_TYPE,
            resource_id=draft_id,
            **client,
        )
        return draft

    async def send_approved(self, actor: str | None = None, **client) -> SendResult:
        """
        Send every approved draft through OpenPhone and mark it sent.

        One draft failing never stops the others; failures come back in
        `errors` as {id, error}.
        """
        result = SendResult()
        drafts = await DraftRepository.list_by_status(DraftStatus.APPROVED)
        if not drafts:
            logger.info("No approved drafts to send")
            return result

        for draft in drafts:
            try:
                await self._send(draft)
            except Exception as e:
                logger.warning("Draft send failed", draft_id=draft.id, error=str(e))
                result.errors.append({"id": draft.id, "error": str(e) or "Failed to send"})
                continue

            result.sent += 1
            await audit_logger.log(
                actor=actor,
                action="draft_sent",
                resource_type=RESOURCE_TYPE,
                resource_id=draft.id,
                metadata={"conversation_id": draft.conversation_id},
                **client,
            )

        logger.info("Approved drafts sent", sent=result.sent, failed=len(result.errors))
        return result

    async def _send(self, draft: DraftReply) -> None:
        if not draft.from_phone_number_id:
            raise DraftStateError(f"Draft {draft.id} has no sending phone number")

        await self.openphone.send_text_message(
            content=draft.draft_text,
            from_number=draft.from_phone_number_id,
            to=draft.phone,
            user_id=draft.user_id,
            set_inbox_status="done",
        )
        updated = await DraftRepository.transition(draft.id, DraftStatus.APPROVED, DraftStatus.SENT)
        if updated is None:
            raise DraftStateError(f"Draft {draft.id} was sent but could not be marked sent")

    async def _transition(
        self, draft_id: str, target: DraftStatus, draft_text: str | None = None
    ) -> DraftReply:
        current = await DraftRepository.get(draft_id)
        if current is None:
            raise DraftNotFoundError(draft_id)
        if not can_transition(current.status, target):
            raise DraftStateError(f"Draft {draft_id} cannot move {current.status.value} -> {target.value}")

        updated = await DraftRepository.transition(draft_id, current.status, target, draft_text=draft_text)
        if updated is None:
            raise DraftStateError(f"Draft {draft_id} changed state during review")

        logger.info("Draft transitioned", draft_id=draft_id, status=target.value)
        return updated


draft_service = DraftService()
