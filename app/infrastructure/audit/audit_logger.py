"""
AuditLogger - audit trail for draft review actions.

Every approve, reject and send is written to the audit_logs table and to
the structured log. A failed database write is logged and swallowed so
the reviewer's request still completes.

Usage:
    from app.infrastructure.audit import audit_logger

    await audit_logger.log(
        actor="reviewer@example.com",
        action="draft_approved",
        resource_type="draft_reply",
        resource_id=draft_id,
        metadata={"edited": True},
    )
"""

from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AuditLogger:
    """Writes audit events to audit_logs and the structured log."""

    @staticmethod
    async def log(
        actor: str | None,
        action: str,
        resource_type: str,
        resource_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> bool:
        """
        Record one audit event.

        Returns:
            True if the row was written, False if the database write failed (never raises)
        """
        logger.info(
            "Audit event",
            audit_action=action,
            actor=actor,
            resource_type=resource_type,
            resource_id=resource_id,
            ip_address=ip_address,
        )

        try:
            await execute_query(
                """
                INSERT INTO audit_logs (
                    actor, action, resource_type, resource_id, metadata, ip_address, user_agent
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (actor, action, resource_type, resource_id, Jsonb(metadata or {}), ip_address, user_agent),
            )
            return True

        except Exception as e:
            # Never fail the request on an audit write; log enough to recreate the row
            logger.error(
                "Failed to write audit log to database",
                error=str(e),
                error_type=type(e).__name__,
                fallback_data={
                    "actor": actor,
                    "action": action,
                    "resource_type": resource_type,
                    "resource_id": resource_id,
                    "metadata": metadata,
                },
            )
            return False


audit_logger = AuditLogger()
