# shiftdesk/core/change_notifier.py
"""
Shift mutation flows and the notifications they trigger.

    assign          -> reconcile, then SMS only the newly added workers
    unassign        -> delete assignments, never notifies
    notify_assigned -> explicit re-send of the "scheduled" message
    notify_updated  -> tell every current assignee what changed

The assign flow treats a missing SMS transport as "nothing to send": the
assignments are saved and the result says notifications were unavailable.
The explicit notify endpoints exist only to send SMS, so there it is an error.
Likewise a storage failure after the rows are saved is reported on the
result (notifications_failed), never raised out of assign.
"""
from __future__ import annotations

from typing import Iterable, Mapping
from zoneinfo import ZoneInfo

from shiftdesk.core.dispatch import NotificationDispatcher
from shiftdesk.core.domain import (
    NOTIFIABLE_FIELDS,
    AssignResult,
    DispatchOutcome,
    FieldChange,
    Shift,
)
from shiftdesk.core.errors import (
    InvalidRequest,
    NotFound,
    ServiceUnavailable,
    ShiftdeskError,
    StorageError,
)
from shiftdesk.core.messages import render_assigned, render_changes
from shiftdesk.core.ports import (
    AsyncAssignmentStore,
    AsyncProfileStore,
    AsyncShiftStore,
    MessageTransport,
)
from shiftdesk.core.recipients import RecipientResolver
from shiftdesk.core.reconciliation import AssignmentReconciler, normalize_ids
from shiftdesk.infra.logging_config import get_logger
from shiftdesk.infra.metrics import AppMetrics

logger = get_logger(__name__)


class ChangeNotifier:

    def __init__(
        self,
        shifts: AsyncShiftStore,
        assignments: AsyncAssignmentStore,
        profiles: AsyncProfileStore,
        transport: MessageTransport,
        *,
        tz: ZoneInfo,
        schedule_url: str | None = None,
    ) -> None:
        self.shifts = shifts
        self.transport = transport
        self.tz = tz
        self.schedule_url = schedule_url
        self.reconciler = AssignmentReconciler(assignments)
        self.resolver = RecipientResolver(profiles)
        self.dispatcher = NotificationDispatcher(transport, kind="sms")

    async def assign(self, shift_id: str, worker_ids: Iterable[str]) -> AssignResult:
        reconciled = await self.reconciler.reconcile(shift_id, worker_ids)
        result = AssignResult(added_worker_ids=reconciled.added_worker_ids)
        if not result.added_worker_ids:
            return result

        # Rows are committed from here on; failures only cost the notices
        try:
            recipients = await self.resolver.resolve(result.added_worker_ids)
            if not recipients:
                return result

            if not self.transport.is_configured():
                logger.warning(
                    f"SMS transport not configured, {len(recipients)} assignment notices skipped",
                    extra={"shift_id": shift_id},
                )
                AppMetrics.sms_skipped_unconfigured("assigned")
                result.notifications_unavailable = True
                return result

            shift = await self._load_shift(shift_id)
        except ShiftdeskError as exc:
            logger.error(
                f"Assignments saved but notices not sent: shift={shift_id}, "
                f"added={len(result.added_worker_ids)}, error={type(exc).__name__}: {exc.detail}",
                extra={"shift_id": shift_id},
            )
            AppMetrics.sms_aborted("assigned", type(exc).__name__)
            result.notifications_failed = True
            return result

        result.outcomes = await self.dispatcher.dispatch(recipients, render_assigned(shift, self.tz))
        return result

    async def unassign(self, shift_id: str, worker_ids: Iterable[str]) -> int:
        return await self.reconciler.unassign(shift_id, worker_ids)

    async def notify_assigned(self, shift_id: str, worker_ids: Iterable[str]) -> list[DispatchOutcome]:
        self._require_transport("assigned")
        ids = normalize_ids(worker_ids)
        if not ids:
            raise InvalidRequest("employee_ids must contain at least one id")

        shift = await self._load_shift(shift_id)
        recipients = await self.resolver.resolve(ids)
        return await self.dispatcher.dispatch(recipients, render_assigned(shift, self.tz))

    async def notify_updated(
        self,
        shift_id: str,
        changes: Mapping[str, FieldChange],
    ) -> list[DispatchOutcome]:
        self._require_transport("updated")

        relevant = {k: v for k, v in (changes or {}).items() if k in NOTIFIABLE_FIELDS}
        if not relevant:
            raise InvalidRequest(f"changes must include one of: {', '.join(NOTIFIABLE_FIELDS)}")

        await self._load_shift(shift_id)
        assignees = await self.reconciler.current_assignees(shift_id)
        if not assignees:
            logger.info("Shift update has no assignees to notify", extra={"shift_id": shift_id})
            return []

        recipients = await self.resolver.resolve(assignees)
        return await self.dispatcher.dispatch(
            recipients, render_changes(relevant, self.tz, self.schedule_url)
        )

    def _require_transport(self, kind: str) -> None:
        if not self.transport.is_configured():
            AppMetrics.sms_skipped_unconfigured(kind)
            raise ServiceUnavailable("SMS service not configured")

    async def _load_shift(self, shift_id: str) -> Shift:
        if not shift_id:
            raise InvalidRequest("shift_id is required")
        try:
            shift = await self.shifts.get(shift_id)
        except Exception as exc:
            logger.error("Shift lookup failed", extra={"shift_id": shift_id}, exc_info=True)
            AppMetrics.database_error("shifts_get")
            raise StorageError("Failed to load shift") from exc
        if shift is None:
            raise NotFound("Shift not found")
        return shift
