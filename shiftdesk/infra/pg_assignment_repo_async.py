# shiftdesk/infra/pg_assignment_repo_async.py
"""
Async PostgreSQL assignment repository (asyncpg).

One row per (schedule_shift_id, employee_id); the table's unique constraint
together with ON CONFLICT DO NOTHING is what keeps concurrent assign
requests from double-inserting.
"""
from __future__ import annotations

from shiftdesk.core.ports import AsyncAssignmentStore
from shiftdesk.infra.db_async import db_conn
from shiftdesk.infra.db_resilience_async import retry_on_transient_error
from shiftdesk.infra.logging_config import get_logger

logger = get_logger(__name__)


def _row_count(status: str | None) -> int:
    # asyncpg returns a command tag like "DELETE 2"
    if not status:
        return 0
    try:
        return int(status.split()[-1])
    except ValueError:
        return 0


class AsyncPostgresAssignmentRepository(AsyncAssignmentStore):

    @retry_on_transient_error(max_retries=3)
    async def list_assignees(self, shift_id: str) -> set[str]:
        async with db_conn() as conn:
            rows = await conn.fetch(
                "SELECT employee_id FROM schedule_assignments WHERE schedule_shift_id = $1::uuid",
                shift_id,
            )
        return {str(r["employee_id"]) for r in rows}

    @retry_on_transient_error(max_retries=3)
    async def upsert_many(self, shift_id: str, worker_ids: set[str]) -> set[str]:
        """
        Insert-or-ignore every pair in one statement.

        Returns only the ids this statement inserted; a row created by a
        concurrent request is skipped by ON CONFLICT and not returned.
        Safe to retry: rows that already exist are left untouched.
        """
        if not worker_ids:
            return set()
        async with db_conn() as conn:
            rows = await conn.fetch(
                """
                INSERT INTO schedule_assignments (schedule_shift_id, employee_id)
                SELECT $1::uuid, worker_id::uuid
                FROM unnest($2::text[]) AS worker_id
                ON CONFLICT (schedule_shift_id, employee_id) DO NOTHING
                RETURNING employee_id
                """,
                shift_id,
                sorted(worker_ids),
            )
        inserted = {str(r["employee_id"]) for r in rows}
        logger.debug(
            f"Assignments upserted: shift={shift_id}, requested={len(worker_ids)}, "
            f"inserted={len(inserted)}",
            extra={"shift_id": shift_id},
        )
        return inserted

    async def delete_many(self, shift_id: str, worker_ids: set[str]) -> int:
        if not worker_ids:
            return 0
        async with db_conn() as conn:
            status = await conn.execute(
                """
                DELETE FROM schedule_assignments
                WHERE schedule_shift_id = $1::uuid
                  AND employee_id = ANY($2::uuid[])
                """,
                shift_id,
                sorted(worker_ids),
            )
        return _row_count(status)
