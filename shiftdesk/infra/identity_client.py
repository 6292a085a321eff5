# shiftdesk/infra/identity_client.py
"""
Supabase Auth (GoTrue) admin API client.

Endpoints used (all under ``{supabase_url}/auth/v1``):
- POST   /admin/users            create a pre-confirmed user
- GET    /admin/users            paginated listing, used for email lookup
- PUT    /admin/users/{id}       set password and user metadata
- DELETE /admin/users/{id}       remove a user (rollback)
- POST   /invite                 invitation email
- POST   /recover                password reset email

Every call authenticates with the service role key.  Non-2xx responses
and connection errors are raised as ``IdentityProviderError``.

HTTP session lifecycle:
- Uses the shared identity session from shiftdesk.infra.http_client.
- Call close_all_sessions() during application shutdown.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable

import aiohttp

from shiftdesk.core.ports import IdentityProvider
from shiftdesk.infra.http_client import get_identity_session
from shiftdesk.infra.logging_config import get_logger, mask_email
from shiftdesk.infra.metrics import inc_counter

logger = get_logger(__name__)


class IdentityProviderError(Exception):
    """Error calling the identity provider admin API.

    Attributes:
        status:  HTTP status code (0 for connection-level errors).
        message: Provider error message, truncated.
    """

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"Identity provider error {status}: {message}")


async def _safe_response_json(resp: aiohttp.ClientResponse) -> Any:
    try:
        return await resp.json(content_type=None)
    except Exception:
        logger.warning(f"Identity provider returned non-JSON body: status={resp.status}")
        return None


def _error_message(body: Any) -> str:
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            if body.get(key):
                return str(body[key])[:300]
    return "Unknown error"


class SupabaseIdentityClient(IdentityProvider):

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        *,
        page_size: int = 1000,
        session_factory: Callable[[], aiohttp.ClientSession] = get_identity_session,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_role_key = service_role_key
        self.page_size = page_size
        self._session_factory = session_factory

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        url = f"{self.base_url}/auth/v1{path}"
        try:
            session = self._session_factory()
            async with session.request(
                method, url, json=json, params=params, headers=self._headers(),
            ) as resp:
                body = await _safe_response_json(resp)
                if 200 <= resp.status < 300:
                    return body

                message = _error_message(body)
                logger.warning(f"Identity API error: {method} {path} status={resp.status}: {message}")
                inc_counter("identity_api_error", status=str(resp.status))
                raise IdentityProviderError(resp.status, message)

        except IdentityProviderError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error(f"Identity API connection error: {method} {path}: {type(exc).__name__}")
            inc_counter("identity_api_error", status="0")
            raise IdentityProviderError(0, type(exc).__name__) from exc

    # ------------------------------------------------------------------
    # IdentityProvider
    # ------------------------------------------------------------------

    async def create_identity(
        self,
        email: str,
        password: str,
        *,
        confirmed: bool,
        metadata: dict[str, Any],
    ) -> str:
        body = await self._request(
            "POST",
            "/admin/users",
            json={
                "email": email,
                "password": password,
                "email_confirm": confirmed,
                "user_metadata": metadata,
            },
        )
        identity_id = (body or {}).get("id")
        if not identity_id:
            raise IdentityProviderError(200, "Response has no user id")
        logger.info(f"Identity created: email={mask_email(email)}", extra={"worker_id": identity_id})
        return identity_id

    async def find_by_email(self, email: str) -> str | None:
        """
        Walk the user listing page by page; the admin API has no email filter.

        The server may cap ``per_page`` below what we ask for, so a short
        page proves nothing. Only an empty page ends the walk.
        """
        wanted = email.strip().lower()
        page = 1
        while True:
            body = await self._request(
                "GET",
                "/admin/users",
                params={"page": page, "per_page": self.page_size},
            )
            users = (body or {}).get("users", []) if isinstance(body, dict) else []
            if not users:
                return None
            for user in users:
                if (user.get("email") or "").lower() == wanted:
                    return user.get("id")
            page += 1

    async def delete_identity(self, identity_id: str) -> None:
        await self._request("DELETE", f"/admin/users/{identity_id}")
        logger.info("Identity deleted", extra={"worker_id": identity_id})

    async def update_credential(self, identity_id: str, password: str, metadata: dict[str, Any]) -> None:
        await self._request(
            "PUT",
            f"/admin/users/{identity_id}",
            json={"password": password, "user_metadata": metadata},
        )

    async def send_invitation(self, email: str, redirect_url: str | None = None) -> None:
        params = {"redirect_to": redirect_url} if redirect_url else None
        await self._request("POST", "/invite", json={"email": email}, params=params)

    async def send_credential_reset(self, email: str, redirect_url: str | None = None) -> None:
        params = {"redirect_to": redirect_url} if redirect_url else None
        await self._request("POST", "/recover", json={"email": email}, params=params)
