"""
Persistence for the Gmail triage pipeline: connected accounts, agent rules
and email logs.
"""

from typing import Any

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class GmailAccountRepository:
    @classmethod
    async def list_active(cls) -> list[dict[str, Any]]:
        return await fetch_all(
            """
            SELECT id, email, encrypted_refresh_token
            FROM gmail_accounts
            WHERE is_active = true
            ORDER BY created_at
            """
        )


class AgentRuleRepository:
    @classmethod
    async def list_enabled(cls, account_id: str) -> list[dict[str, Any]]:
        """Enabled skip rules for an account; empty on read failure."""
        try:
            return await fetch_all(
                """
                SELECT rule_type, pattern FROM agent_rules
                WHERE gmail_account_id = %s AND is_enabled = true
                ORDER BY created_at
                """,
                (account_id,),
            )
        except DatabaseError as e:
            logger.warning("Failed to load agent rules", account_id=account_id, error=str(e))
            return []


class EmailLogRepository:
    @classmethod
    async def exists(cls, account_id: str, gmail_message_id: str) -> bool:
        """
        True when the message is already logged for the account.

        A failed lookup counts as logged so a flaky read never produces a
        second draft for the same message.
        """
        try:
            row = await fetch_one(
                """
                SELECT id FROM email_logs
                WHERE gmail_account_id = %s AND gmail_message_id = %s
                """,
                (account_id, gmail_message_id),
            )
        except DatabaseError as e:
            logger.warning(
                "Duplicate check failed, treating message as logged",
                account_id=account_id,
                gmail_message_id=gmail_message_id,
                error=str(e),
            )
            return True
        return row is not None

    @classmethod
    async def insert(cls, log: dict[str, Any]) -> None:
        query = """
            INSERT INTO email_logs (
                gmail_account_id, gmail_message_id, gmail_thread_id, subject, from_address,
                summary, needs_response, priority, draft_created
            )
            VALUES (
                %(gmail_account_id)s, %(gmail_message_id)s, %(gmail_thread_id)s, %(subject)s,
                %(from_address)s, %(summary)s, %(needs_response)s, %(priority)s, %(draft_created)s
            )
        """
        await execute_query(query, log)

    @classmethod
    async def list_activity(cls, limit: int = 200) -> list[dict[str, Any]]:
        return await fetch_all(
            """
            SELECT l.id, l.gmail_message_id, l.gmail_thread_id, l.subject, l.from_address,
                   l.summary, l.needs_response, l.priority, l.draft_created, l.created_at,
                   a.email AS inbox_email
            FROM email_logs l
            JOIN gmail_accounts a ON a.id = l.gmail_account_id
            ORDER BY l.created_at DESC
            LIMIT %s
            """,
            (limit,),
        )
