# shiftdesk/core/dispatch.py
"""
Best-effort SMS fan-out.

Every recipient gets an independent send task; all tasks are awaited
until they settle.  A failure for one recipient turns into a failed
``DispatchOutcome`` and never affects the others or the caller.

The dispatcher knows nothing about wording: the caller passes a
``render`` function that turns a recipient into a message body.
"""
from __future__ import annotations

import asyncio
from typing import Callable

from shiftdesk.core.domain import DispatchOutcome, Recipient
from shiftdesk.core.ports import MessageTransport
from shiftdesk.infra.logging_config import get_logger, mask_phone
from shiftdesk.infra.metrics import AppMetrics

logger = get_logger(__name__)

Renderer = Callable[[Recipient], str]


class NotificationDispatcher:

    def __init__(self, transport: MessageTransport, *, kind: str = "sms") -> None:
        self.transport = transport
        self.kind = kind

    async def dispatch(self, recipients: list[Recipient], render: Renderer) -> list[DispatchOutcome]:
        """
        Send one message per recipient concurrently.

        Returns one outcome per recipient, in recipient order.  Never raises
        for per-recipient problems (render errors included).
        """
        if not recipients:
            return []

        with AppMetrics.track_dispatch_time(self.kind):
            outcomes = await asyncio.gather(
                *(self._send_one(r, render) for r in recipients)
            )

        sent = sum(1 for o in outcomes if o.success)
        logger.info(
            f"SMS dispatch finished: kind={self.kind}, recipients={len(recipients)}, "
            f"sent={sent}, failed={len(recipients) - sent}"
        )
        return list(outcomes)

    async def _send_one(self, recipient: Recipient, render: Renderer) -> DispatchOutcome:
        try:
            body = render(recipient)
            message_id = await self.transport.send(recipient.phone, body)
        except Exception as exc:
            error = type(exc).__name__
            logger.warning(
                f"SMS send failed: to={mask_phone(recipient.phone)}, error={error}: {exc}",
                extra={"recipient_id": recipient.id},
            )
            AppMetrics.sms_failed(self.kind, error)
            return DispatchOutcome.failed(recipient.id, error)

        logger.debug(
            f"SMS sent: to={mask_phone(recipient.phone)}, sid={str(message_id)[:8]}***",
            extra={"recipient_id": recipient.id},
        )
        AppMetrics.sms_sent(self.kind)
        return DispatchOutcome.sent(recipient.id, message_id)
