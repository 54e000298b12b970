"""
Gmail triage pipeline.

For every active connected account: list recent INBOX message ids, skip
ones already in email_logs, apply agent skip rules, classify the rest,
create a threaded draft when the AI proposes one, log the outcome and
label the message in Gmail.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.gmail_domain import GmailMessage
from app.models.domain.run_domain import RunSource
from app.repositories.gmail_repository import AgentRuleRepository, EmailLogRepository
from app.services import gmail_account_service
from app.services.ai_service import AIService, get_ai_service
from app.services.gmail_account_service import GmailAccountError
from app.services.google_gmail_service import (
    GoogleGmailError,
    GoogleGmailService,
    google_gmail_service,
)
from app.services.run_tracker import RunSession, RunTracker, run_tracker
from app.services.suppression_service import (
    SuppressionCandidate,
    SuppressionChain,
    build_gmail_chain,
)

logger = get_logger(__name__)

LABEL_TRIAGED = "ai/triaged"
LABEL_DRAFT_CREATED = "ai/draft_created"
LABEL_NO_DRAFT = "ai/no_draft"
STATUS_LABELS = [LABEL_TRIAGED, LABEL_DRAFT_CREATED, LABEL_NO_DRAFT]

SUMMARY_EMAIL_SKIP_TEXT = "Skipped: summary email (excluded from triage)."


@dataclass(slots=True)
class GmailTriageResult:
    run_id: str
    lookback_days: int
    accounts: int = 0
    processed: int = 0
    drafts_created: int = 0
    skipped_by_rule: int = 0
    skipped_duplicate: int = 0
    label_errors: int = 0
    errors_count: int = 0

    def to_response(self) -> dict[str, Any]:
        return {
            "ok": True,
            "runId": self.run_id,
            "lookbackDays": self.lookback_days,
            "accounts": self.accounts,
            "processed": self.processed,
            "draftsCreated": self.drafts_created,
            "skippedByRule": self.skipped_by_rule,
            "skippedDuplicate": self.skipped_duplicate,
            "labelErrors": self.label_errors,
            "errorsCount": self.errors_count,
        }


@dataclass(slots=True)
class _AccountContext:
    account_id: str
    email: str
    access_token: str
    chain: SuppressionChain
    signature: str
    status_labels: dict[str, str]


class GmailTriageJob:
    def __init__(
        self,
        gmail: GoogleGmailService | None = None,
        ai: AIService | None = None,
        tracker: RunTracker | None = None,
    ):
        self.gmail = gmail or google_gmail_service
        self._ai = ai
        self.tracker = tracker or run_tracker

    @property
    def ai(self) -> AIService:
        if self._ai is None:
            self._ai = get_ai_service()
        return self._ai

    async def run(self, lookback_days: int | None = None) -> GmailTriageResult:
        lookback = lookback_days or settings.GMAIL_DEFAULT_LOOKBACK_DAYS
        today = datetime.now(UTC).date()

        session = await self.tracker.start(RunSource.GMAIL, today - timedelta(days=lookback), today)
        result = GmailTriageResult(run_id=session.run_id, lookback_days=lookback)

        try:
            accounts = await gmail_account_service.list_accounts()
            result.accounts = len(accounts)

            for account in accounts:
                account_id = str(account["id"])
                try:
                    await self._triage_account(session, result, account, lookback)
                except (GmailAccountError, GoogleGmailError) as e:
                    logger.warning("Gmail account triage failed", account_id=account_id, error=str(e))
                    session.record_error("account", str(e), item_id=account_id, item_key="accountId")

        except Exception as e:
            await self.tracker.fail(session, e)
            raise

        await self.tracker.finish(session, None)

        result.errors_count = len(session.errors)
        logger.info("Gmail triage complete", **result.to_response())
        return result

    async def _triage_account(
        self, session: RunSession, result: GmailTriageResult, account: dict[str, Any], lookback: int
    ) -> None:
        account_id = str(account["id"])
        access_token = await gmail_account_service.get_access_token(account)
        rules = await AgentRuleRepository.list_enabled(account_id)

        message_ids = await self.gmail.list_recent_inbox_message_ids(access_token, lookback)
        logger.info("Gmail messages listed", account_id=account_id, count=len(message_ids))
        if not message_ids:
            return

        ctx = _AccountContext(
            account_id=account_id,
            email=account.get("email") or "",
            access_token=access_token,
            chain=build_gmail_chain(rules),
            signature=await self._signature(access_token, account_id),
            status_labels=await self.gmail.ensure_labels(access_token, STATUS_LABELS),
        )

        for message_id in message_ids:
            try:
                await self._triage_message(session, result, ctx, message_id)
            except Exception as e:
                logger.warning(
                    "Gmail message triage failed",
                    account_id=account_id,
                    gmail_message_id=message_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                session.record_error("message", str(e), item_id=message_id, item_key="messageId")

    async def _signature(self, access_token: str, account_id: str) -> str:
        try:
            return await self.gmail.get_signature(access_token)
        except GoogleGmailError as e:
            logger.warning(
                "Signature lookup failed, drafting without one", account_id=account_id, error=str(e)
            )
            return ""

    async def _triage_message(
        self, session: RunSession, result: GmailTriageResult, ctx: _AccountContext, message_id: str
    ) -> None:
        if await EmailLogRepository.exists(ctx.account_id, message_id):
            result.skipped_duplicate += 1
            return

        message = await self.gmail.get_message(ctx.access_token, message_id)
        log = {
            "gmail_account_id": ctx.account_id,
            "gmail_message_id": message_id,
            "gmail_thread_id": message.thread_id,
            "subject": message.subject,
            "from_address": message.from_header,
        }

        if message.is_summary_email():
            await EmailLogRepository.insert(
                {
                    **log,
                    "summary": SUMMARY_EMAIL_SKIP_TEXT,
                    "needs_response": False,
                    "priority": "low",
                    "draft_created": False,
                }
            )
            return

        decision = await ctx.chain.evaluate(
            SuppressionCandidate(sender=message.sender_email, subject=message.subject)
        )
        if decision.suppressed:
            await EmailLogRepository.insert(
                {
                    **log,
                    "summary": decision.reason,
                    "needs_response": False,
                    "priority": "low",
                    "draft_created": False,
                }
            )
            await self._apply_labels(
                session,
                result,
                ctx,
                message_id,
                [ctx.status_labels.get(LABEL_TRIAGED), ctx.status_labels.get(LABEL_NO_DRAFT)],
            )
            result.skipped_by_rule += 1
            result.processed += 1
            return

        classification = await self.ai.analyze_email(
            message.from_header, ctx.email, message.subject, message.get_plain_body()
        )
        analysis = classification.value
        if not classification.ok:
            logger.warning(
                "Using default email analysis",
                gmail_message_id=message_id,
                reason=classification.fallback_reason,
            )

        draft_created = False
        if analysis.needs_response and analysis.draft_reply:
            draft_created = await self._create_draft(ctx, message, analysis.draft_reply)
            result.drafts_created += int(draft_created)

        await EmailLogRepository.insert(
            {
                **log,
                "summary": analysis.summary,
                "needs_response": analysis.needs_response,
                "priority": analysis.priority,
                "draft_created": draft_created,
            }
        )

        label_ids = [
            ctx.status_labels.get(LABEL_TRIAGED),
            ctx.status_labels.get(LABEL_DRAFT_CREATED if draft_created else LABEL_NO_DRAFT),
        ]
        label_ids.extend(
            await self._proposed_label_ids(session, result, ctx, message_id, analysis.proposed_labels)
        )
        await self._apply_labels(session, result, ctx, message_id, label_ids)
        result.processed += 1

    async def _create_draft(self, ctx: _AccountContext, message: GmailMessage, reply_text: str) -> bool:
        try:
            await self.gmail.create_draft_reply(ctx.access_token, message, reply_text, ctx.signature)
        except GoogleGmailError as e:
            logger.warning(
                "Draft creation failed", account_id=ctx.account_id, gmail_message_id=message.id, error=str(e)
            )
            return False
        return True

    async def _proposed_label_ids(
        self,
        session: RunSession,
        result: GmailTriageResult,
        ctx: _AccountContext,
        message_id: str,
        names: list[str],
    ) -> list[str]:
        if not names:
            return []
        try:
            return list((await self.gmail.ensure_labels(ctx.access_token, names)).values())
        except GoogleGmailError as e:
            self._label_error(session, result, message_id, e)
            return []

    async def _apply_labels(
        self,
        session: RunSession,
        result: GmailTriageResult,
        ctx: _AccountContext,
        message_id: str,
        label_ids: list[str | None],
    ) -> None:
        add = [label_id for label_id in dict.fromkeys(label_ids) if label_id]
        if not add:
            return
        try:
            await self.gmail.modify_message(ctx.access_token, message_id, add_labels=add)
        except GoogleGmailError as e:
            self._label_error(session, result, message_id, e)

    def _label_error(
        self, session: RunSession, result: GmailTriageResult, message_id: str, error: GoogleGmailError
    ) -> None:
        result.label_errors += 1
        logger.warning("Gmail labeling failed", gmail_message_id=message_id, error=str(error))
        session.record_error("labels", str(error), item_id=message_id, item_key="messageId")


async def run_gmail_triage(lookback_days: int | None = None) -> GmailTriageResult:
    return await GmailTriageJob().run(lookback_days)
