"""
OpenPhone cleanup pipeline.

One invocation processes up to MAX_CONVERSATIONS_PER_RUN conversations
from one page of the OpenPhone conversation list: fetch messages, build
the transcript, run the suppression chain, summarize, write a summary row
and, when a response is warranted and not suppressed, a pending draft.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.conversation_domain import (
    INCOMING,
    NO_MESSAGES_PLACEHOLDER,
    OUTGOING,
    UNKNOWN_CONTACT,
    OpenPhoneConversation,
    OpenPhoneMessage,
    build_transcript,
    extract_name_with_reason,
    filter_ignored,
    last_message_at,
    pick_last,
)
from app.models.domain.draft_domain import fallback_draft
from app.models.domain.run_domain import RunSource
from app.repositories.openphone_repository import (
    ContactRepository,
    DraftRepository,
    SummaryRepository,
)
from app.services.ai_service import AIService, ConversationAnalysis, get_ai_service
from app.services.openphone_service import OpenPhoneService, openphone_service
from app.services.run_tracker import RunSession, RunTracker, run_tracker
from app.services.suppression_service import (
    SuppressionCandidate,
    SuppressionChain,
    SuppressionDecision,
    build_openphone_chain,
)

logger = get_logger(__name__)

CONVERSATION_PAGE_CAP = 100
AI_NAME_RATIONALE = "Name inferred from explicit mention in message"


def iso_start(day: date) -> str:
    return f"{day.isoformat()}T00:00:00.000Z"


def iso_end(day: date) -> str:
    return f"{day.isoformat()}T23:59:59.999Z"


@dataclass(slots=True)
class OpenPhoneRunResult:
    run_id: str
    processed: int
    next_page_token: str | None
    errors_count: int
    drafts_created: int = 0
    suppressed: int = 0

    def to_response(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "processed": self.processed,
            "nextPageToken": self.next_page_token,
            "errorsCount": self.errors_count,
            "draftsCreated": self.drafts_created,
        }


class OpenPhoneCleanupJob:
    def __init__(
        self,
        openphone: OpenPhoneService | None = None,
        ai: AIService | None = None,
        tracker: RunTracker | None = None,
        max_per_run: int | None = None,
    ):
        self.openphone = openphone or openphone_service
        self._ai = ai
        self.tracker = tracker or run_tracker
        self.max_per_run = max_per_run or settings.MAX_CONVERSATIONS_PER_RUN

    @property
    def ai(self) -> AIService:
        if self._ai is None:
            self._ai = get_ai_service()
        return self._ai

    async def run(
        self, start_date: date, end_date: date, resume_run_id: str | None = None
    ) -> OpenPhoneRunResult:
        """
        Process one batch of conversations updated inside [start_date, end_date].

        Raises:
            RunNotFoundError / RunStateError / RunInProgressError: from the tracker
            Any unhandled exception after the run is marked failed
        """
        session = await self.tracker.start(RunSource.OPENPHONE, start_date, end_date, resume_run_id)
        window = (iso_start(start_date), iso_end(end_date))
        chain = build_openphone_chain()
        drafts_created = 0
        suppressed = 0

        try:
            page = await self.openphone.list_conversations(
                updated_after=window[0],
                updated_before=window[1],
                max_results=min(CONVERSATION_PAGE_CAP, self.max_per_run),
                page_token=session.resume_page_token,
            )

            for raw in page.get("data") or []:
                if session.processed >= self.max_per_run:
                    break

                conversation_id = raw.get("id") if isinstance(raw, dict) else None
                try:
                    conversation = OpenPhoneConversation.from_api(raw)
                    if conversation.deleted_at or not conversation.participant:
                        continue

                    decision, drafted = await self._process_conversation(
                        session, conversation, chain, start_date, end_date, window
                    )
                except Exception as e:
                    logger.warning(
                        "Conversation processing failed",
                        conversation_id=conversation_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    session.record_error("conversation", str(e) or type(e).__name__, item_id=conversation_id)
                    continue

                session.processed += 1
                drafts_created += int(drafted)
                suppressed += int(decision.suppressed)

            next_page_token = page.get("nextPageToken") or None

        except Exception as e:
            await self.tracker.fail(session, e)
            raise

        await self.tracker.finish(session, next_page_token)

        return OpenPhoneRunResult(
            run_id=session.run_id,
            processed=session.processed,
            next_page_token=next_page_token,
            errors_count=len(session.errors),
            drafts_created=drafts_created,
            suppressed=suppressed,
        )

    async def _process_conversation(
        self,
        session: RunSession,
        conversation: OpenPhoneConversation,
        chain: SuppressionChain,
        start_date: date,
        end_date: date,
        window: tuple[str, str],
    ) -> tuple[SuppressionDecision, bool]:
        participant = conversation.participant

        raw_messages = await self.openphone.list_all_messages(
            conversation.phone_number_id,
            [participant],
            window[0],
            window[1],
            settings.MAX_MESSAGES_PER_CONVERSATION,
        )
        messages = filter_ignored(
            [OpenPhoneMessage.from_api(m) for m in raw_messages],
            settings.OPENPHONE_IGNORED_AUTO_REPLIES,
        )
        transcript = build_transcript(messages)

        decision = await chain.evaluate(
            SuppressionCandidate(phone=participant, conversation_id=conversation.id, transcript=transcript)
        )

        last_in = pick_last(messages, INCOMING)
        last_out = pick_last(messages, OUTGOING)

        result = await self.ai.summarize_conversation(transcript or NO_MESSAGES_PLACEHOLDER)
        analysis = result.value
        if not result.ok:
            logger.warning(
                "Using default conversation analysis",
                conversation_id=conversation.id,
                reason=result.fallback_reason,
            )

        await self._suggest_contact_name(conversation, transcript, analysis, last_in)

        needs_response = analysis.needs_response and not decision.suppressed
        if decision.suppressed:
            reason = f"Suppressed: {decision.reason}"
        elif needs_response:
            reason = "Inbound message appears to require a response"
        else:
            reason = "No response needed"

        await SummaryRepository.insert(
            {
                "run_id": session.run_id,
                "conversation_id": conversation.id,
                "contact_name": conversation.name or UNKNOWN_CONTACT,
                "phone": participant,
                "date_range": analysis.date_range or f"{start_date.isoformat()} → {end_date.isoformat()}",
                "summary": analysis.summary,
                "topics": analysis.topics,
                "needs_response": needs_response,
                "suppress_response": decision.suppressed,
                "last_inbound": last_in.text if last_in else None,
                "last_outbound": last_out.text if last_out else None,
                "last_message_at": last_message_at(messages),
                "needs_response_reason": reason,
            }
        )

        if not needs_response:
            return decision, False

        await DraftRepository.insert(
            run_id=session.run_id,
            conversation_id=conversation.id,
            phone=participant,
            from_phone_number_id=conversation.phone_number_id,
            draft_text=analysis.draft_reply or fallback_draft(has_inbound=last_in is not None),
        )
        return decision, True

    async def _suggest_contact_name(
        self,
        conversation: OpenPhoneConversation,
        transcript: str,
        analysis: ConversationAnalysis,
        last_in: OpenPhoneMessage | None,
    ) -> None:
        if not conversation.has_unknown_name():
            return

        if analysis.explicit_name:
            name, rationale = analysis.explicit_name, AI_NAME_RATIONALE
        else:
            match = extract_name_with_reason(transcript)
            if not match:
                return
            name, rationale = match

        if await ContactRepository.has_mapped_contact(conversation.participant):
            return

        await ContactRepository.suggest_name(
            phone=conversation.participant,
            inferred_name=name,
            source_message_id=last_in.id if last_in else None,
            rationale=rationale,
        )
        logger.info("Contact name suggested", conversation_id=conversation.id)


async def run_openphone_cleanup(
    start_date: date, end_date: date, resume_run_id: str | None = None
) -> OpenPhoneRunResult:
    return await OpenPhoneCleanupJob().run(start_date, end_date, resume_run_id)
