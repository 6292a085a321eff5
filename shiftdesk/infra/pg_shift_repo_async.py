# shiftdesk/infra/pg_shift_repo_async.py
"""
Async PostgreSQL shift repository (asyncpg).
Shifts are read-only from this service.
"""
from __future__ import annotations

from shiftdesk.core.domain import Shift
from shiftdesk.core.ports import AsyncShiftStore
from shiftdesk.infra.db_async import db_conn
from shiftdesk.infra.db_resilience_async import retry_on_transient_error
from shiftdesk.infra.logging_config import get_logger

logger = get_logger(__name__)


def _row_to_shift(row) -> Shift:
    return Shift(
        id=str(row["id"]),
        start_time=row["start_time"],
        end_time=row["end_time"],
        location_name=row["location_name"],
        address=row["address"],
        job_type=row["job_type"],
        notes=row["notes"],
        status=row["status"],
        created_by=str(row["created_by"]) if row["created_by"] else None,
    )


class AsyncPostgresShiftRepository(AsyncShiftStore):

    @retry_on_transient_error(max_retries=3)
    async def get(self, shift_id: str) -> Shift | None:
        async with db_conn() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, start_time, end_time, location_name, address,
                       job_type, notes, status, created_by
                FROM schedule_shifts
                WHERE id = $1::uuid
                """,
                shift_id,
            )
        if row is None:
            logger.debug("Shift not found", extra={"shift_id": shift_id})
            return None
        return _row_to_shift(row)
