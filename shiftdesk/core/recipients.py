# shiftdesk/core/recipients.py
from __future__ import annotations

from typing import Iterable

from shiftdesk.core.domain import Recipient, WorkerProfile
from shiftdesk.core.errors import StorageError
from shiftdesk.core.ports import AsyncProfileStore
from shiftdesk.infra.logging_config import get_logger
from shiftdesk.infra.metrics import AppMetrics

logger = get_logger(__name__)


def to_recipient(profile: WorkerProfile) -> Recipient | None:
    """Deliverable recipient for a profile, or None if SMS must not be sent."""
    phone = (profile.phone or "").strip()
    if not phone or not profile.sms_opt_in or not profile.is_active:
        return None
    return Recipient(
        id=profile.id,
        display_name=(profile.full_name or "").strip(),
        phone=phone,
        opted_in=True,
    )


class RecipientResolver:
    """Loads contact and opt-in state and keeps only deliverable workers."""

    def __init__(self, profiles: AsyncProfileStore) -> None:
        self.profiles = profiles

    async def resolve(self, worker_ids: Iterable[str]) -> list[Recipient]:
        ids = {w for w in worker_ids if w}
        if not ids:
            return []

        try:
            profiles = await self.profiles.get_many(ids)
        except Exception as exc:
            logger.error(f"Recipient lookup failed for {len(ids)} workers", exc_info=True)
            AppMetrics.database_error("profiles_get_many")
            raise StorageError("Failed to load workers") from exc

        recipients = []
        for profile in sorted(profiles, key=lambda p: p.id):
            recipient = to_recipient(profile)
            if recipient is None:
                logger.debug(
                    "Worker skipped for SMS (no phone, opted out or inactive)",
                    extra={"worker_id": profile.id},
                )
                continue
            recipients.append(recipient)

        missing = len(ids) - len(profiles)
        if missing > 0:
            logger.warning(f"{missing} requested workers have no profile")

        return recipients
