# shiftdesk/infra/pg_profile_repo_async.py
"""
Async PostgreSQL worker profile repository (asyncpg).
Profiles are keyed by the identity provider's user id.
"""
from __future__ import annotations

from shiftdesk.core.domain import WorkerProfile
from shiftdesk.core.ports import AsyncProfileStore
from shiftdesk.infra.db_async import db_conn
from shiftdesk.infra.db_resilience_async import retry_on_transient_error
from shiftdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

_COLUMNS = "id, full_name, role, phone, venmo_url, pay_rate, is_active, sms_opt_in"


def _row_to_profile(row) -> WorkerProfile:
    return WorkerProfile(
        id=str(row["id"]),
        full_name=row["full_name"] or "",
        role=row["role"],
        phone=row["phone"],
        venmo_url=row["venmo_url"],
        pay_rate=row["pay_rate"],
        is_active=row["is_active"],
        sms_opt_in=row["sms_opt_in"],
    )


class AsyncPostgresProfileRepository(AsyncProfileStore):

    @retry_on_transient_error(max_retries=3)
    async def get_many(self, worker_ids: set[str]) -> list[WorkerProfile]:
        if not worker_ids:
            return []
        async with db_conn() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM profiles WHERE id = ANY($1::uuid[])",
                sorted(worker_ids),
            )
        return [_row_to_profile(r) for r in rows]

    @retry_on_transient_error(max_retries=3)
    async def upsert(self, profile: WorkerProfile) -> WorkerProfile:
        """Create or fully overwrite the profile row; reactivates it."""
        async with db_conn() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO profiles (id, full_name, role, phone, venmo_url, pay_rate, is_active, sms_opt_in)
                VALUES ($1::uuid, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (id) DO UPDATE SET
                    full_name = EXCLUDED.full_name,
                    role = EXCLUDED.role,
                    phone = EXCLUDED.phone,
                    venmo_url = EXCLUDED.venmo_url,
                    pay_rate = EXCLUDED.pay_rate,
                    is_active = EXCLUDED.is_active,
                    sms_opt_in = EXCLUDED.sms_opt_in,
                    updated_at = now()
                RETURNING {_COLUMNS}
                """,
                profile.id,
                profile.full_name,
                profile.role,
                profile.phone,
                profile.venmo_url,
                profile.pay_rate,
                profile.is_active,
                profile.sms_opt_in,
            )
        logger.debug("Profile upserted", extra={"worker_id": profile.id})
        return _row_to_profile(row)
