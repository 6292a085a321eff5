# shiftdesk/transport/http_app.py
"""
HTTP application.

Routes are thin: validate the body with pydantic, call one core service
taken from app.state, map ShiftdeskError subtypes to HTTPException.
Services are wired in the lifespan so tests can put fakes on app.state.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from uuid import UUID
from zoneinfo import ZoneInfo

from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from shiftdesk.config import settings
from shiftdesk.core.change_notifier import ChangeNotifier
from shiftdesk.core.domain import count_sent
from shiftdesk.core.errors import ShiftdeskError
from shiftdesk.core.provisioning import ProvisioningCoordinator
from shiftdesk.infra.db_async import close_pool, init_pool
from shiftdesk.infra.http_client import close_all_sessions
from shiftdesk.infra.identity_client import SupabaseIdentityClient
from shiftdesk.infra.logging_config import setup_logging, get_logger
from shiftdesk.infra.metrics import get_metrics_collector
from shiftdesk.infra.pg_assignment_repo_async import AsyncPostgresAssignmentRepository
from shiftdesk.infra.pg_profile_repo_async import AsyncPostgresProfileRepository
from shiftdesk.infra.pg_shift_repo_async import AsyncPostgresShiftRepository
from shiftdesk.infra.twilio_transport import TwilioSmsTransport
from shiftdesk.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from shiftdesk.transport.models import (
    AssignRequest,
    CreateWorkerRequest,
    ShiftAssignedNotifyRequest,
    ShiftUpdatedNotifyRequest,
)
from shiftdesk.transport.security import require_metrics_auth
from shiftdesk.transport.twilio_inbound import twilio_inbound_handler

setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# WIRING
# ============================================================================

def build_services(state) -> None:
    """Create repositories and core services and attach them to ``state``."""
    shifts = AsyncPostgresShiftRepository()
    assignments = AsyncPostgresAssignmentRepository()
    profiles = AsyncPostgresProfileRepository()

    transport = TwilioSmsTransport(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        settings.twilio_from_number,
    )
    if not transport.is_configured():
        logger.warning("Twilio not configured: assignments will be saved without SMS")

    state.notifier = ChangeNotifier(
        shifts,
        assignments,
        profiles,
        transport,
        tz=ZoneInfo(settings.app_timezone),
        schedule_url=settings.schedule_url,
    )

    if settings.identity_enabled:
        identities = SupabaseIdentityClient(
            settings.supabase_url,
            settings.supabase_service_role_key,
            page_size=settings.identity_page_size,
        )
        state.provisioner = ProvisioningCoordinator(
            identities,
            profiles,
            default_pay_rate=settings.default_pay_rate,
            invite_redirect_url=settings.invite_redirect_url,
        )
    else:
        logger.warning("Identity provider not configured: POST /workers disabled")
        state.provisioner = None


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    logger.info(f"Starting application: env={settings.app_env}")

    if settings.is_production:
        missing = settings.validate_required_for_production()
        if missing:
            logger.critical(f"Missing required production settings: {missing}")
            raise RuntimeError(f"Missing production config: {missing}")

    await init_pool()
    build_services(fastapi_app.state)
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    await close_all_sessions()
    await close_pool()
    logger.info("Application shutdown complete")


def get_notifier(request: Request) -> ChangeNotifier:
    return request.app.state.notifier


def get_provisioner(request: Request) -> ProvisioningCoordinator:
    provisioner = getattr(request.app.state, "provisioner", None)
    if provisioner is None:
        raise HTTPException(status_code=503, detail="Identity provider not configured")
    return provisioner


def _parse(model, payload: dict):
    try:
        return model(**payload)
    except PydanticValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _to_http(exc: ShiftdeskError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


def _shift_uuid(shift_id: str) -> str:
    """Canonical form of a shift id from the path; 400 if it is not a UUID."""
    try:
        return str(UUID(shift_id))
    except ValueError:
        raise HTTPException(status_code=400, detail="shift_id must be a UUID")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Shiftdesk",
    description="Shift assignment, worker provisioning and SMS notifications",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """Detailed message in dev, generic one in production"""
    if not is_production:
        return str(error)
    generic_messages = {
        "ValueError": "Invalid input",
        "ConnectionError": "Service temporarily unavailable",
        "TimeoutError": "Request timeout",
    }
    return generic_messages.get(type(error).__name__, "An error occurred")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": sanitize_error_message(exc, settings.is_production)},
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics():
    """
    In-process counters and histograms. INTERNAL only.

    Access: internal network OR METRICS_TOKEN
    """
    return get_metrics_collector().get_metrics()


@app.post("/webhooks/twilio")
async def webhook_twilio(request: Request):
    """Inbound SMS keywords. Signature-validated."""
    return await twilio_inbound_handler(request)


# ============================================================================
# SHIFT ASSIGNMENTS
# ============================================================================

@app.post("/shifts/{shift_id}/assign")
async def assign_workers(shift_id: str, payload: dict, notifier: ChangeNotifier = Depends(get_notifier)):
    """
    Assign workers to a shift and text only the ones who are new.

    Replaying the same request assigns nothing new and sends nothing.
    """
    req = _parse(AssignRequest, payload)
    try:
        result = await notifier.assign(_shift_uuid(shift_id), req.worker_ids())
    except ShiftdeskError as exc:
        raise _to_http(exc)

    return {
        "ok": True,
        "added": sorted(result.added_worker_ids),
        "sent": result.sent,
        "notifications": [o.to_dict() for o in result.outcomes],
        "notifications_unavailable": result.notifications_unavailable,
        "notifications_failed": result.notifications_failed,
    }


@app.delete("/shifts/{shift_id}/assign")
async def unassign_workers(shift_id: str, payload: dict, notifier: ChangeNotifier = Depends(get_notifier)):
    req = _parse(AssignRequest, payload)
    try:
        await notifier.unassign(_shift_uuid(shift_id), req.worker_ids())
    except ShiftdeskError as exc:
        raise _to_http(exc)
    return {"ok": True}


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@app.post("/notifications/shift-assigned")
async def notify_shift_assigned(payload: dict, notifier: ChangeNotifier = Depends(get_notifier)):
    req = _parse(ShiftAssignedNotifyRequest, payload)
    try:
        outcomes = await notifier.notify_assigned(str(req.shift_id), req.worker_ids())
    except ShiftdeskError as exc:
        raise _to_http(exc)
    return {"success": True, "sent": count_sent(outcomes)}


@app.post("/notifications/shift-updated")
async def notify_shift_updated(payload: dict, notifier: ChangeNotifier = Depends(get_notifier)):
    req = _parse(ShiftUpdatedNotifyRequest, payload)
    try:
        outcomes = await notifier.notify_updated(str(req.shift_id), req.field_changes())
    except ShiftdeskError as exc:
        raise _to_http(exc)
    return {"success": True, "sent": count_sent(outcomes)}


# ============================================================================
# WORKERS
# ============================================================================

@app.post("/workers", status_code=201)
async def create_worker(payload: dict, provisioner: ProvisioningCoordinator = Depends(get_provisioner)):
    """Create a worker account, or reactivate one whose email already exists."""
    req = _parse(CreateWorkerRequest, payload)
    try:
        result = await provisioner.provision(
            req.email,
            req.to_attributes(),
            req.password,
            send_invite=req.send_invite,
        )
    except ShiftdeskError as exc:
        raise _to_http(exc)

    body = result.profile.to_dict() if result.profile else {"id": result.worker_id}
    body.update({
        "email": result.email,
        "invite_sent": result.credential_issued,
        "reactivated": result.was_reactivated,
    })
    return body


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "shiftdesk.transport.http_app:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,
        server_header=False,
    )
