# shiftdesk/infra/twilio_transport.py
"""
Outbound SMS over the Twilio REST API.

The Twilio helper library is synchronous, so every send runs in the
default executor and never blocks the event loop.  Errors propagate to
the caller (``TwilioRestException`` and friends); the dispatcher turns
them into failed outcomes.
"""
from __future__ import annotations

import asyncio
from typing import Callable

from twilio.rest import Client

from shiftdesk.core.ports import MessageTransport
from shiftdesk.infra.logging_config import get_logger, mask_phone

logger = get_logger(__name__)


class TransportNotConfigured(RuntimeError):
    """send() was called on a transport without credentials."""


class TwilioSmsTransport(MessageTransport):

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        *,
        client_factory: Callable[[str, str], Client] = Client,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self._client_factory = client_factory
        self._client: Client | None = None

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = self._client_factory(self.account_sid, self.auth_token)
        return self._client

    async def send(self, to: str, body: str, *, from_: str | None = None) -> str:
        if not self.is_configured():
            raise TransportNotConfigured("Twilio credentials not configured")

        sender = from_ or self.from_number
        loop = asyncio.get_running_loop()
        message = await loop.run_in_executor(None, self._create_message, to, sender, body)

        logger.info(f"Twilio SMS sent: sid={message.sid[:8]}***, to={mask_phone(to)}")
        return message.sid

    def _create_message(self, to: str, from_: str, body: str):
        """Blocking Twilio API call."""
        return self._get_client().messages.create(to=to, from_=from_, body=body)
