"""
Persistence for the OpenPhone pipeline: summaries, draft replies,
suppressions and contact name suggestions.
"""

from typing import Any

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, fetch_val
from app.infrastructure.observability.logging import get_logger
from app.models.domain.draft_domain import DraftReply, DraftStatus

logger = get_logger(__name__)


class SummaryRepository:
    @classmethod
    async def insert(cls, summary: dict[str, Any]) -> None:
        """Append one summary row; summaries are never upserted."""
        query = """
            INSERT INTO summaries (
                run_id, conversation_id, contact_name, phone, date_range, summary, topics,
                needs_response, suppress_response, last_inbound, last_outbound,
                last_message_at, needs_response_reason
            )
            VALUES (
                %(run_id)s, %(conversation_id)s, %(contact_name)s, %(phone)s, %(date_range)s,
                %(summary)s, %(topics)s, %(needs_response)s, %(suppress_response)s,
                %(last_inbound)s, %(last_outbound)s, %(last_message_at)s, %(needs_response_reason)s
            )
        """
        await execute_query(query, summary)

    @classmethod
    async def list_recent(cls, run_id: str | None = None, limit: int = 500) -> list[dict[str, Any]]:
        if run_id:
            query = """
                SELECT * FROM summaries WHERE run_id = %s
                ORDER BY created_at DESC LIMIT %s
            """
            return await fetch_all(query, (run_id, limit))
        return await fetch_all(
            "SELECT * FROM summaries ORDER BY created_at DESC LIMIT %s", (limit,)
        )


class DraftRepository:
    @classmethod
    async def insert(
        cls,
        run_id: str,
        conversation_id: str,
        phone: str,
        from_phone_number_id: str | None,
        draft_text: str,
    ) -> None:
        query = """
            INSERT INTO draft_replies (
                run_id, conversation_id, phone, from_phone_number_id, user_id,
                draft_text, status, suppressed
            )
            VALUES (%s, %s, %s, %s, NULL, %s, 'pending', false)
        """
        await execute_query(query, (run_id, conversation_id, phone, from_phone_number_id, draft_text))

    @classmethod
    async def get(cls, draft_id: str) -> DraftReply | None:
        row = await fetch_one("SELECT * FROM draft_replies WHERE id = %s", (draft_id,))
        return DraftReply.from_row(row) if row else None

    @classmethod
    async def list_by_status(cls, status: DraftStatus | None = None, limit: int = 500) -> list[DraftReply]:
        if status:
            rows = await fetch_all(
                "SELECT * FROM draft_replies WHERE status = %s ORDER BY created_at DESC LIMIT %s",
                (status.value, limit),
            )
        else:
            rows = await fetch_all(
                "SELECT * FROM draft_replies ORDER BY created_at DESC LIMIT %s", (limit,)
            )
        return [DraftReply.from_row(row) for row in rows]

    @classmethod
    async def transition(
        cls,
        draft_id: str,
        expected: DraftStatus,
        target: DraftStatus,
        draft_text: str | None = None,
    ) -> DraftReply | None:
        """
        Move a draft from `expected` to `target` in one statement.

        Returns the updated draft, or None when the row is missing or no
        longer in `expected` (a concurrent reviewer got there first).
        """
        query = """
            UPDATE draft_replies
            SET status = %s,
                draft_text = COALESCE(%s, draft_text),
                updated_at = NOW()
            WHERE id = %s AND status = %s
            RETURNING *
        """
        row = await fetch_one(query, (target.value, draft_text, draft_id, expected.value))
        return DraftReply.from_row(row) if row else None


class SuppressionRepository:
    @classmethod
    async def find_identity_matches(cls, phone: str, conversation_id: str) -> list[dict[str, Any]]:
        query = """
            SELECT kind, value, reason FROM suppressions
            WHERE kind IN ('phone', 'conversation')
              AND (lower(value) = lower(%s) OR lower(value) = lower(%s))
            ORDER BY created_at
            LIMIT 20
        """
        return await fetch_all(query, (phone, conversation_id))

    @classmethod
    async def list_phrases(cls, limit: int = 200) -> list[dict[str, Any]]:
        return await fetch_all(
            "SELECT value, reason FROM suppressions WHERE kind = 'phrase' ORDER BY created_at LIMIT %s",
            (limit,),
        )


class ContactRepository:
    @classmethod
    async def has_mapped_contact(cls, phone: str) -> bool:
        """True when the phone already maps to a contact; a failed lookup counts as mapped."""
        try:
            contact_id = await fetch_val("SELECT contact_id FROM contact_map WHERE phone = %s", (phone,))
        except DatabaseError as e:
            logger.warning("Contact map lookup failed", phone=phone, error=str(e))
            return True
        return bool(contact_id)

    @classmethod
    async def suggest_name(
        cls, phone: str, inferred_name: str, source_message_id: str | None, rationale: str
    ) -> None:
        query = """
            INSERT INTO contact_update_suggestions (
                phone, inferred_name, source_message_id, rationale, status
            )
            VALUES (%s, %s, %s, %s, 'pending')
            ON CONFLICT (phone, inferred_name, source_message_id)
            DO UPDATE SET rationale = EXCLUDED.rationale
        """
        try:
            await execute_query(query, (phone, inferred_name, source_message_id, rationale))
        except DatabaseError as e:
            # Suggestions are best-effort
            logger.warning("Failed to store contact name suggestion", phone=phone, error=str(e))
