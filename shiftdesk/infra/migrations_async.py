# shiftdesk/infra/migrations_async.py
"""
Async database migrations runner (asyncpg).
"""
from __future__ import annotations
from pathlib import Path

from shiftdesk.infra.db_async import db_conn
from shiftdesk.infra.logging_config import get_logger

logger = get_logger(__name__)


def _sql_dir() -> Path:
    # shiftdesk/infra/sql
    return Path(__file__).resolve().parent / "sql"


def pending_files(applied: set[str], sql_dir: Path | None = None) -> list[Path]:
    """Migration files not yet recorded in schema_migrations, in filename order."""
    sql_dir = sql_dir or _sql_dir()
    return [
        p for p in sorted(sql_dir.glob("*.sql"))
        if p.is_file() and p.name not in applied
    ]


async def apply_migrations() -> dict:
    """
    Apply every pending ``sql/*.sql`` file inside one transaction.

    Returns:
        dict with ``ok``, ``applied`` (filenames applied in this run) and ``count``.
    """
    async with db_conn(autocommit=False) as conn:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations(
              version text PRIMARY KEY,
              applied_at timestamptz NOT NULL DEFAULT now()
            )
            """
        )

        rows = await conn.fetch("SELECT version FROM schema_migrations")
        applied = {row["version"] for row in rows}

        applied_now = []
        for p in pending_files(applied):
            logger.info(f"Applying migration: {p.name}")
            await conn.execute(p.read_text(encoding="utf-8"))
            await conn.execute("INSERT INTO schema_migrations(version) VALUES ($1)", p.name)
            applied_now.append(p.name)

    logger.info(f"Migrations complete: {len(applied_now)} applied")
    return {"ok": True, "applied": applied_now, "count": len(applied_now)}
