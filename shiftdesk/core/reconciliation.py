# shiftdesk/core/reconciliation.py
"""
Assignment reconciliation.

"Who is new on this shift" is answered twice: a pure set difference against
the assignees read before the write, intersected with the rows the insert
actually created. The first keeps replays quiet; the second settles races,
since two requests that read the same empty shift still produce only one
row, and only its inserter reports the worker as added.
"""
from __future__ import annotations

from typing import Iterable

from shiftdesk.core.domain import ReconcileResult
from shiftdesk.core.errors import InvalidRequest, StorageError
from shiftdesk.core.ports import AsyncAssignmentStore
from shiftdesk.infra.logging_config import get_logger
from shiftdesk.infra.metrics import AppMetrics

logger = get_logger(__name__)


def normalize_ids(worker_ids: Iterable[str] | None) -> set[str]:
    """Deduplicate ids and drop blanks."""
    return {w.strip() for w in (worker_ids or ()) if w and w.strip()}


def compute_added(requested: set[str], current: set[str]) -> set[str]:
    """Workers in the request that are not assigned yet."""
    return requested - current


class AssignmentReconciler:
    """Diffs requested vs. stored assignees and persists the request."""

    def __init__(self, assignments: AsyncAssignmentStore) -> None:
        self.assignments = assignments

    async def reconcile(self, shift_id: str, requested_worker_ids: Iterable[str]) -> ReconcileResult:
        requested = normalize_ids(requested_worker_ids)
        if not shift_id:
            raise InvalidRequest("shift_id is required")
        if not requested:
            raise InvalidRequest("employee_ids must contain at least one id")

        current = await self.current_assignees(shift_id)
        candidates = compute_added(requested, current)

        # One statement, no partial writes
        try:
            inserted = await self.assignments.upsert_many(shift_id, requested)
        except Exception as exc:
            logger.error(
                f"Assignment upsert failed: shift={shift_id}, rows={len(requested)}",
                extra={"shift_id": shift_id},
                exc_info=True,
            )
            AppMetrics.database_error("assignments_upsert")
            raise StorageError("Failed to save assignments") from exc

        added = candidates & set(inserted or ())
        if len(added) < len(candidates):
            logger.info(
                f"Concurrent assign already inserted {len(candidates) - len(added)} of the new workers",
                extra={"shift_id": shift_id},
            )

        AppMetrics.assignments_added(len(added))
        logger.info(
            f"Shift reconciled: shift={shift_id}, requested={len(requested)}, "
            f"already_assigned={len(requested & current)}, added={len(added)}",
            extra={"shift_id": shift_id},
        )
        return ReconcileResult(added_worker_ids=added)

    async def unassign(self, shift_id: str, worker_ids: Iterable[str]) -> int:
        """Remove assignments. Removal is never announced to workers."""
        ids = normalize_ids(worker_ids)
        if not shift_id:
            raise InvalidRequest("shift_id is required")
        if not ids:
            raise InvalidRequest("employee_ids must contain at least one id")

        try:
            removed = await self.assignments.delete_many(shift_id, ids)
        except Exception as exc:
            logger.error(
                f"Assignment delete failed: shift={shift_id}",
                extra={"shift_id": shift_id},
                exc_info=True,
            )
            AppMetrics.database_error("assignments_delete")
            raise StorageError("Failed to remove assignments") from exc

        logger.info(
            f"Workers unassigned: shift={shift_id}, requested={len(ids)}, removed={removed}",
            extra={"shift_id": shift_id},
        )
        return removed

    async def current_assignees(self, shift_id: str) -> set[str]:
        try:
            return set(await self.assignments.list_assignees(shift_id))
        except Exception as exc:
            logger.error(
                f"Failed to load assignees: shift={shift_id}",
                extra={"shift_id": shift_id},
                exc_info=True,
            )
            AppMetrics.database_error("assignments_list")
            raise StorageError("Failed to load assignments") from exc
