"""
Notification rows written by scheduled pipeline runs.
"""

from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query


class NotificationRepository:
    @classmethod
    async def create(
        cls,
        title: str,
        message: str,
        priority: str = "normal",
        metadata: dict[str, Any] | None = None,
        type_: str = "system",
    ) -> None:
        await execute_query(
            """
            INSERT INTO notifications (type, title, message, priority, metadata)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (type_, title, message, priority, Jsonb(metadata or {})),
        )
