# shiftdesk/core/messages.py
"""
SMS wording for shift notifications.

Shift times are stored in UTC and shown to workers in the business
timezone (``settings.app_timezone``).  Naive datetimes are treated as UTC.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping
from zoneinfo import ZoneInfo

from shiftdesk.core.domain import NOTIFIABLE_FIELDS, FieldChange, Recipient, Shift

BLANK = "—"

_FIELD_LABELS = {
    "start_time": "Start",
    "end_time": "End",
    "location_name": "Location",
    "address": "Address",
}

_TIME_FIELDS = {"start_time", "end_time"}


def _localize(value: datetime, tz: ZoneInfo) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz)


def format_date(value: datetime, tz: ZoneInfo) -> str:
    """Sat, Jan 4"""
    local = _localize(value, tz)
    return f"{local:%a, %b} {local.day}"


def format_time(value: datetime, tz: ZoneInfo) -> str:
    """9:00 AM"""
    local = _localize(value, tz)
    return local.strftime("%I:%M %p").lstrip("0")


def _parse_time(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _display(field_name: str, value: Any, tz: ZoneInfo) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return BLANK
    if field_name in _TIME_FIELDS:
        parsed = _parse_time(value)
        if parsed is not None:
            return f"{format_date(parsed, tz)} {format_time(parsed, tz)}"
    return str(value).strip()


def render_assigned(shift: Shift, tz: ZoneInfo):
    """Build the renderer for the 'you have been scheduled' message."""
    when = f"on {format_date(shift.start_time, tz)} from {format_time(shift.start_time, tz)}"
    if shift.end_time is not None:
        when += f" to {format_time(shift.end_time, tz)}"
    where = f" at {shift.place}" if shift.place else ""

    def render(recipient: Recipient) -> str:
        name = recipient.display_name or "You"
        return (
            f"{name}, you've been scheduled for a shift {when}{where}. "
            f"Reply to your manager if you have any questions."
        )

    return render


def render_changes(
    changes: Mapping[str, FieldChange],
    tz: ZoneInfo,
    schedule_url: str | None = None,
):
    """Build the renderer for the 'shift updated' message. Lists only changed fields."""
    lines = []
    for field_name in NOTIFIABLE_FIELDS:
        change = changes.get(field_name)
        if change is None:
            continue
        before = _display(field_name, change.before, tz)
        after = _display(field_name, change.after, tz)
        lines.append(f"{_FIELD_LABELS[field_name]}: {before} → {after}")

    body = "Shift updated.\n\n" + "\n".join(lines) + "\n\n"
    if schedule_url:
        body += f"View schedule: {schedule_url}\n\n"
    body += "Reply STOP to opt out."

    def render(recipient: Recipient) -> str:
        return body

    return render
