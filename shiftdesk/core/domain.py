# shiftdesk/core/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Any, Dict


# ============================================================================
# ENUMS
# ============================================================================

class JobType(str, Enum):
    SETUP = "setup"
    LIGHTS = "lights"
    BREAKDOWN = "breakdown"
    OTHER = "other"


class ShiftStatus(str, Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    CHANGED = "changed"


class Role(str, Enum):
    ADMIN = "admin"
    EMPLOYEE = "employee"


# ============================================================================
# SHIFTS
# ============================================================================

@dataclass
class Shift:
    """A scheduled block of work. Read-only inside the engine."""
    id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    location_name: Optional[str] = None
    address: Optional[str] = None
    job_type: str = JobType.OTHER.value
    notes: Optional[str] = None
    status: str = ShiftStatus.DRAFT.value
    created_by: Optional[str] = None

    def __post_init__(self) -> None:
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")

    @property
    def place(self) -> Optional[str]:
        """Location name if set, otherwise the street address"""
        return self.location_name or self.address


# Fields whose change is announced to assigned workers, in message order
NOTIFIABLE_FIELDS = ("start_time", "end_time", "location_name", "address")


@dataclass
class FieldChange:
    """Previous and new value of one shift field"""
    before: Optional[Any] = None
    after: Optional[Any] = None


# ============================================================================
# WORKERS
# ============================================================================

@dataclass
class Recipient:
    """A worker who can actually receive an SMS"""
    id: str
    display_name: str
    phone: str
    opted_in: bool = True


@dataclass
class WorkerProfile:
    """Row of the profiles table"""
    id: str
    full_name: str
    role: str = Role.EMPLOYEE.value
    phone: Optional[str] = None
    venmo_url: Optional[str] = None
    pay_rate: Optional[Decimal] = None
    is_active: bool = True
    sms_opt_in: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "role": self.role,
            "phone": self.phone,
            "venmo_url": self.venmo_url,
            "pay_rate": float(self.pay_rate) if self.pay_rate is not None else None,
            "is_active": self.is_active,
            "sms_opt_in": self.sms_opt_in,
        }


@dataclass
class WorkerAttributes:
    """Profile attributes supplied when provisioning a worker"""
    full_name: str
    role: str = Role.EMPLOYEE.value
    phone: Optional[str] = None
    venmo_url: Optional[str] = None
    pay_rate: Optional[Decimal] = None
    sms_opt_in: bool = False


# ============================================================================
# DISPATCH OUTCOMES
# ============================================================================

@dataclass(frozen=True)
class DispatchOutcome:
    """
    Result of one notification attempt.

    Exactly one of ``message_id`` (success) or ``error`` (failure) is set.
    Never persisted.
    """
    recipient_id: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def sent(cls, recipient_id: str, message_id: str) -> "DispatchOutcome":
        return cls(recipient_id=recipient_id, success=True, message_id=message_id)

    @classmethod
    def failed(cls, recipient_id: str, error: str) -> "DispatchOutcome":
        return cls(recipient_id=recipient_id, success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"recipientId": self.recipient_id, "success": self.success}
        if self.success:
            data["messageId"] = self.message_id
        else:
            data["error"] = self.error
        return data


def count_sent(outcomes: list[DispatchOutcome]) -> int:
    return sum(1 for o in outcomes if o.success)


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class ReconcileResult:
    added_worker_ids: set[str] = field(default_factory=set)


@dataclass
class AssignResult:
    """Outcome of the assign flow: what was added and who was told"""
    added_worker_ids: set[str] = field(default_factory=set)
    outcomes: list[DispatchOutcome] = field(default_factory=list)
    notifications_unavailable: bool = False
    notifications_failed: bool = False  # saved, but recipients or shift could not be loaded

    @property
    def sent(self) -> int:
        return count_sent(self.outcomes)


@dataclass
class ProvisioningResult:
    worker_id: str
    email: str
    was_reactivated: bool
    credential_issued: bool
    profile: Optional[WorkerProfile] = None
