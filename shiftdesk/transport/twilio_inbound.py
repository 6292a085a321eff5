# shiftdesk/transport/twilio_inbound.py
"""
Inbound SMS webhook (replies to HELP).

STOP/START are handled by Twilio's own opt-out management before the
request reaches us, so everything except HELP gets an empty TwiML reply.

Signature validation uses twilio.request_validator (HMAC-SHA1) against the
public URL Twilio signed, which differs from request.url behind a proxy.
"""
from __future__ import annotations

from fastapi import HTTPException, Request
from fastapi.responses import Response
from twilio.request_validator import RequestValidator
from twilio.twiml.messaging_response import MessagingResponse

from shiftdesk.config import settings
from shiftdesk.infra.logging_config import get_logger, mask_phone
from shiftdesk.infra.metrics import AppMetrics, inc_counter

logger = get_logger(__name__)

HELP_KEYWORD = "HELP"
HELP_TEXT = (
    "Got A Guy: This number sends work schedule notifications. "
    "Contact your manager for help. Reply STOP to opt out."
)


def _public_url(request: Request) -> str:
    if settings.twilio_webhook_url:
        return settings.twilio_webhook_url
    proto = request.headers.get("X-Forwarded-Proto", "https")
    host = request.headers.get("X-Forwarded-Host") or request.headers.get("Host", "")
    return f"{proto}://{host}{request.url.path}"


async def validate_twilio_request(request: Request) -> dict[str, str]:
    """Return the form payload, rejecting requests Twilio did not sign."""
    form = dict(await request.form())

    if not settings.require_webhook_validation:
        return form

    if not settings.twilio_auth_token:
        logger.error("TWILIO_AUTH_TOKEN not configured")
        AppMetrics.webhook_validation_failed("twilio")
        raise HTTPException(status_code=500, detail="Webhook validation not configured")

    signature = request.headers.get("X-Twilio-Signature", "")
    if not signature:
        logger.warning("Missing X-Twilio-Signature header")
        AppMetrics.webhook_validation_failed("twilio")
        raise HTTPException(status_code=403, detail="Missing signature")

    url = _public_url(request)
    if not RequestValidator(settings.twilio_auth_token).validate(url, form, signature):
        logger.error("Invalid Twilio signature", extra={"url": url})
        AppMetrics.webhook_validation_failed("twilio")
        raise HTTPException(status_code=403, detail="Invalid signature")

    return form


def build_reply(body: str | None) -> str:
    """TwiML reply for an inbound message body."""
    reply = MessagingResponse()
    if (body or "").strip().upper() == HELP_KEYWORD:
        reply.message(HELP_TEXT)
    return str(reply)


async def twilio_inbound_handler(request: Request) -> Response:
    form = await validate_twilio_request(request)
    body = form.get("Body", "")
    sender = form.get("From", "")

    keyword = body.strip().upper()[:16]
    logger.info(f"Inbound SMS: from={mask_phone(sender)}, keyword={keyword or '<empty>'}")
    inc_counter("sms_inbound", keyword=keyword if keyword == HELP_KEYWORD else "other")

    return Response(content=build_reply(body), media_type="text/xml")
