# shiftdesk/transport/models.py
"""
Pydantic request models for the HTTP API.

Request bodies are validated here; the core never sees raw JSON.
Shift and employee ids are database UUIDs, so malformed ids are rejected
here rather than by Postgres.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from shiftdesk.core.domain import NOTIFIABLE_FIELDS, FieldChange, Role, WorkerAttributes


def _id_strings(ids: list[UUID]) -> list[str]:
    return [str(i) for i in ids]


class AssignRequest(BaseModel):
    """Add (POST) or remove (DELETE) workers on a shift."""

    employee_ids: list[UUID] = Field(..., min_length=1)

    def worker_ids(self) -> list[str]:
        return _id_strings(self.employee_ids)


class ShiftAssignedNotifyRequest(BaseModel):
    shift_id: UUID
    employee_ids: list[UUID] = Field(..., min_length=1)

    def worker_ids(self) -> list[str]:
        return _id_strings(self.employee_ids)


class ChangeValue(BaseModel):
    """Before/after pair; JSON keys are ``from`` and ``to``."""

    from_: Any = Field(default=None, alias="from")
    to: Any = None

    def to_field_change(self) -> FieldChange:
        return FieldChange(before=self.from_, after=self.to)


class ShiftUpdatedNotifyRequest(BaseModel):
    shift_id: UUID
    changes: dict[str, ChangeValue]

    @field_validator("changes")
    @classmethod
    def has_notifiable_field(cls, v: dict[str, ChangeValue]) -> dict[str, ChangeValue]:
        if not any(k in NOTIFIABLE_FIELDS for k in v):
            raise ValueError(f"changes must include one of: {', '.join(NOTIFIABLE_FIELDS)}")
        return v

    def field_changes(self) -> dict[str, FieldChange]:
        return {k: v.to_field_change() for k, v in self.changes.items() if k in NOTIFIABLE_FIELDS}


class CreateWorkerRequest(BaseModel):
    """Provision (or reactivate) a worker account."""

    email: str = Field(..., min_length=3, max_length=320)
    full_name: str = Field(..., min_length=1, max_length=256)
    phone: str | None = Field(default=None, max_length=32)
    venmo_url: str | None = Field(default=None, max_length=512)
    pay_rate: Decimal | None = Field(default=None, ge=0, le=1000)
    role: Role = Role.EMPLOYEE
    sms_opt_in: bool = False
    password: str | None = Field(default=None, min_length=6, max_length=128)
    send_invite: bool = True

    @field_validator("email")
    @classmethod
    def email_looks_valid(cls, v: str) -> str:
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("email must be a valid address")
        return v

    @field_validator("full_name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("full_name must not be blank")
        return v

    @field_validator("phone", "venmo_url")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    def to_attributes(self) -> WorkerAttributes:
        return WorkerAttributes(
            full_name=self.full_name,
            role=self.role.value,
            phone=self.phone,
            venmo_url=self.venmo_url,
            pay_rate=self.pay_rate,
            sms_opt_in=self.sms_opt_in,
        )
