# shiftdesk/core/errors.py
"""
Typed domain errors for the scheduling core.

Each error maps to a specific HTTP status code.  The transport layer
catches ``ShiftdeskError`` subtypes and converts them to ``HTTPException``
without embedding business logic in the route handlers.

Per-recipient SMS failures are deliberately absent: they are reported as
failed ``DispatchOutcome`` values, never raised.
"""
from __future__ import annotations


class ShiftdeskError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class InvalidRequest(ShiftdeskError):
    """Bad or empty input from the caller (400). Not retried."""

    status_code = 400


class NotFound(ShiftdeskError):
    """Referenced shift or worker does not exist (404)."""

    status_code = 404


class StorageError(ShiftdeskError):
    """Persistence failure; the operation was aborted (500)."""

    status_code = 500


class ServiceUnavailable(ShiftdeskError):
    """SMS transport is not configured, nothing was dispatched (503)."""

    status_code = 503


class IdentityCreationFailed(ShiftdeskError):
    """Identity lookup or creation failed; no profile was written (502)."""

    status_code = 502


class ProfileCreationFailed(ShiftdeskError):
    """Profile upsert failed; a freshly created identity was rolled back (500)."""

    status_code = 500


class RollbackFailed(ShiftdeskError):
    """
    Profile upsert failed AND the compensating identity delete failed.

    The identity now exists without a profile and needs manual cleanup,
    so both underlying errors are kept for the operator.
    """

    status_code = 500

    def __init__(
        self,
        detail: str,
        *,
        identity_id: str,
        original_error: BaseException,
        rollback_error: BaseException,
    ):
        self.identity_id = identity_id
        self.original_error = original_error
        self.rollback_error = rollback_error
        super().__init__(detail)
