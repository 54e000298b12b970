"""
Persistence for pipeline runs (runs table).
"""

from datetime import date

from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.run_domain import Checkpoint, Run, RunSource, RunStatus

logger = get_logger(__name__)


class RunRepositoryError(DatabaseError):
    """Run row could not be written."""


class RunRepository:
    SELECT_COLUMNS = "id, source, start_date, end_date, status, checkpoint, created_at, updated_at"

    @classmethod
    @with_db_retry()
    async def create(
        cls, source: RunSource, start_date: date, end_date: date, status: RunStatus = RunStatus.RUNNING
    ) -> Run:
        query = f"""
            INSERT INTO runs (source, start_date, end_date, status, checkpoint)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {cls.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query, (source.value, start_date, end_date, status.value, Jsonb(Checkpoint().to_json()))
        )
        if not row:
            raise RunRepositoryError("Failed to create run", operation="create_run", recoverable=False)

        logger.info("Run created", run_id=str(row["id"]), source=source.value)
        return Run.from_row(row)

    @classmethod
    @with_db_retry()
    async def get(cls, run_id: str) -> Run | None:
        row = await fetch_one(f"SELECT {cls.SELECT_COLUMNS} FROM runs WHERE id = %s", (run_id,))
        return Run.from_row(row) if row else None

    @classmethod
    @with_db_retry()
    async def update_state(cls, run_id: str, status: RunStatus, checkpoint: Checkpoint) -> None:
        query = """
            UPDATE runs
            SET status = %s,
                checkpoint = %s,
                updated_at = NOW()
            WHERE id = %s
        """
        affected = await execute_query(query, (status.value, Jsonb(checkpoint.to_json()), run_id))
        if affected == 0:
            raise RunRepositoryError(
                f"Run {run_id} not found for update", operation="update_run", recoverable=False
            )

    @classmethod
    async def list_recent(cls, source: RunSource | None = None, limit: int = 100) -> list[Run]:
        if source:
            query = f"""
                SELECT {cls.SELECT_COLUMNS} FROM runs
                WHERE source = %s
                ORDER BY created_at DESC
                LIMIT %s
            """
            rows = await fetch_all(query, (source.value, limit))
        else:
            query = f"SELECT {cls.SELECT_COLUMNS} FROM runs ORDER BY created_at DESC LIMIT %s"
            rows = await fetch_all(query, (limit,))
        return [Run.from_row(row) for row in rows]
