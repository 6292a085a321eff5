# shiftdesk/core/ports.py
from __future__ import annotations
from typing import Protocol, Optional, Any
from shiftdesk.core.domain import Shift, WorkerProfile


# ============================================================================
# STORAGE
# ============================================================================

class AsyncShiftStore(Protocol):
    async def get(self, shift_id: str) -> Optional[Shift]: ...


class AsyncAssignmentStore(Protocol):
    async def list_assignees(self, shift_id: str) -> set[str]: ...

    async def upsert_many(self, shift_id: str, worker_ids: set[str]) -> set[str]:
        """
        Insert-or-ignore one row per (shift, worker) in a single statement.
        Must be atomic per row so racing callers cannot both insert.
        Returns the worker ids whose rows this call inserted.
        """
        ...

    async def delete_many(self, shift_id: str, worker_ids: set[str]) -> int: ...


class AsyncProfileStore(Protocol):
    async def get_many(self, worker_ids: set[str]) -> list[WorkerProfile]: ...
    async def upsert(self, profile: WorkerProfile) -> WorkerProfile: ...


# ============================================================================
# EXTERNAL SERVICES
# ============================================================================

class IdentityProvider(Protocol):
    async def create_identity(
        self, email: str, password: str, *, confirmed: bool, metadata: dict[str, Any]
    ) -> str: ...

    async def find_by_email(self, email: str) -> Optional[str]: ...
    async def delete_identity(self, identity_id: str) -> None: ...

    async def update_credential(
        self, identity_id: str, password: str, metadata: dict[str, Any]
    ) -> None: ...

    async def send_invitation(self, email: str, redirect_url: str | None = None) -> None: ...
    async def send_credential_reset(self, email: str, redirect_url: str | None = None) -> None: ...


class MessageTransport(Protocol):
    def is_configured(self) -> bool: ...

    async def send(self, to: str, body: str, *, from_: str | None = None) -> str:
        """
        Send one message, return the provider message id. Raises on failure.
        ``from_`` defaults to the transport's configured sender number.
        """
        ...
