# shiftdesk/transport/middleware.py
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from shiftdesk.infra.logging_config import get_logger, LogContext
from shiftdesk.transport.twilio_inbound import build_reply

logger = get_logger(__name__)

TWILIO_WEBHOOK_PATH = "/webhooks/twilio"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request id (incoming X-Request-ID or a fresh uuid4)"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log request start/finish with duration"""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or request.url.path == "/health":
            return await call_next(request)

        request_id = getattr(request.state, "request_id", "unknown")
        log_ctx = LogContext(logger, request_id=request_id)
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.time() - start_time) * 1000
            log_ctx.error(
                f"Request failed: {request.method} {request.url.path} "
                f"error={exc.__class__.__name__} duration={duration_ms:.2f}ms",
                extra={"method": request.method, "path": request.url.path, "duration_ms": duration_ms},
                exc_info=True,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        log_ctx.info(
            f"{request.method} {request.url.path} status={response.status_code} duration={duration_ms:.2f}ms",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last-resort handler for exceptions nothing else caught"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", "unknown")
            logger.error(
                f"Unhandled exception: {exc.__class__.__name__}: {exc}",
                extra={"request_id": request_id},
                exc_info=True,
            )

            # Twilio retries on non-2xx; answer with an empty TwiML reply instead
            if request.url.path == TWILIO_WEBHOOK_PATH:
                return Response(content=build_reply(None), status_code=200, media_type="text/xml")

            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "request_id": request_id},
            )
