# tests/conftest.py
"""Pytest configuration, in-memory fakes of the storage/identity/SMS ports"""
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from shiftdesk.core.domain import Shift, WorkerProfile  # noqa: E402

CHICAGO = ZoneInfo("America/Chicago")


class MockShiftStore:
    def __init__(self, shifts=None):
        self.shifts = {s.id: s for s in (shifts or [])}
        self.fail = False

    async def get(self, shift_id):
        if self.fail:
            raise ConnectionError("db down")
        return self.shifts.get(shift_id)


class MockAssignmentStore:
    """Mirrors the unique (shift, worker) constraint of schedule_assignments"""

    def __init__(self, yield_after_list=False):
        self.rows: set[tuple[str, str]] = set()
        self.upsert_calls = []
        self.fail_upsert = False
        self.fail_list = False
        # Lets a concurrent request run between the read and the insert
        self.yield_after_list = yield_after_list

    async def list_assignees(self, shift_id):
        if self.fail_list:
            raise ConnectionError("db down")
        current = {w for s, w in self.rows if s == shift_id}
        if self.yield_after_list:
            await asyncio.sleep(0)
        return current

    async def upsert_many(self, shift_id, worker_ids):
        if self.fail_upsert:
            raise ConnectionError("db down")
        self.upsert_calls.append((shift_id, set(worker_ids)))
        new_rows = {(shift_id, w) for w in worker_ids} - self.rows
        self.rows |= new_rows
        return {w for _, w in new_rows}

    async def delete_many(self, shift_id, worker_ids):
        doomed = {(shift_id, w) for w in worker_ids} & self.rows
        self.rows -= doomed
        return len(doomed)


class MockProfileStore:
    def __init__(self, profiles=None):
        self.profiles = {p.id: p for p in (profiles or [])}
        self.fail_get = False
        self.fail_upsert = False
        self.upserts = []

    async def get_many(self, worker_ids):
        if self.fail_get:
            raise ConnectionError("db down")
        return [self.profiles[w] for w in worker_ids if w in self.profiles]

    async def upsert(self, profile):
        if self.fail_upsert:
            raise ConnectionError("profiles insert failed")
        self.upserts.append(profile)
        self.profiles[profile.id] = profile
        return profile


class MockTransport:
    """Records sends; numbers in ``failing`` raise"""

    def __init__(self, configured=True, failing=(), delay=0.0):
        self.configured = configured
        self.failing = set(failing)
        self.delay = delay
        self.sent = []
        self.in_flight = 0
        self.max_in_flight = 0

    def is_configured(self):
        return self.configured

    async def send(self, to, body, *, from_=None):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if to in self.failing:
                raise ConnectionError(f"carrier rejected {to}")
            self.sent.append((to, body))
            return f"SM{len(self.sent):04d}"
        finally:
            self.in_flight -= 1


class MockIdentityProvider:
    def __init__(self, existing=None):
        self.users = dict(existing or {})  # email -> id
        self.created = []
        self.deleted = []
        self.updated = []
        self.invites = []
        self.resets = []
        self.fail_lookup = False
        self.fail_create = False
        self.fail_delete = False
        self.fail_update = False
        self.fail_invite = False
        self.fail_reset = False
        self._next = 1

    async def find_by_email(self, email):
        if self.fail_lookup:
            raise ConnectionError("auth down")
        return self.users.get(email)

    async def create_identity(self, email, password, *, confirmed, metadata):
        if self.fail_create:
            raise ConnectionError("auth down")
        identity_id = f"00000000-0000-0000-0000-{self._next:012d}"
        self._next += 1
        self.users[email] = identity_id
        self.created.append({"id": identity_id, "email": email, "password": password,
                             "confirmed": confirmed, "metadata": metadata})
        return identity_id

    async def delete_identity(self, identity_id):
        if self.fail_delete:
            raise ConnectionError("delete failed")
        self.deleted.append(identity_id)
        self.users = {e: i for e, i in self.users.items() if i != identity_id}

    async def update_credential(self, identity_id, password, metadata):
        if self.fail_update:
            raise ConnectionError("update failed")
        self.updated.append((identity_id, password, metadata))

    async def send_invitation(self, email, redirect_url=None):
        if self.fail_invite:
            raise ConnectionError("already registered")
        self.invites.append((email, redirect_url))

    async def send_credential_reset(self, email, redirect_url=None):
        if self.fail_reset:
            raise ConnectionError("smtp down")
        self.resets.append((email, redirect_url))


def make_profile(worker_id, name="Worker", phone="+15550000000", sms_opt_in=True, is_active=True):
    return WorkerProfile(
        id=worker_id, full_name=name, phone=phone, sms_opt_in=sms_opt_in, is_active=is_active,
    )


@pytest.fixture
def chicago():
    return CHICAGO


@pytest.fixture
def shift():
    """Sat Jan 4 2025, 9:00 AM - 5:00 PM Chicago time"""
    return Shift(
        id="shift-1",
        start_time=datetime(2025, 1, 4, 15, 0, tzinfo=timezone.utc),
        end_time=datetime(2025, 1, 4, 23, 0, tzinfo=timezone.utc),
        location_name="Civic Center",
        address="100 Main St",
    )


@pytest.fixture
def shift_store(shift):
    return MockShiftStore([shift])


@pytest.fixture
def assignment_store():
    return MockAssignmentStore()


@pytest.fixture
def profile_store():
    return MockProfileStore([
        make_profile("w1", "Ann", "+15550000001"),
        make_profile("w2", "Bob", "+15550000002"),
        make_profile("w3", "Cy", "+15550000003"),
        make_profile("w4", "Dee", None),
        make_profile("w5", "Eve", "+15550000005", sms_opt_in=False),
        make_profile("w6", "Fay", "+15550000006", is_active=False),
    ])


@pytest.fixture
def transport():
    return MockTransport()


@pytest.fixture
def identity_provider():
    return MockIdentityProvider()


@pytest.fixture
def sample_twilio_form_data():
    """Sample Twilio inbound SMS form data"""
    return {
        "From": "+12345678900",
        "To": "+10987654321",
        "Body": "HELP",
        "MessageSid": "SM1234567890abcdef",
        "NumMedia": "0",
        "AccountSid": "AC1234567890abcdef",
    }
