# shiftdesk/core/provisioning.py
"""
Worker provisioning across the identity provider and the profiles table.

The two writes share no transaction, so provisioning is a two-step saga:

    NOT_STARTED --(identity created / reactivated)--> IDENTITY_CREATED
    IDENTITY_CREATED --(profile upserted)----------> PROFILE_COMMITTED
    IDENTITY_CREATED --(profile failed, new id deleted)--> ROLLED_BACK
    IDENTITY_CREATED --(profile failed, kept or delete failed)--> FAILED
    NOT_STARTED --(identity lookup / create failed)--> FAILED

Only an identity created by this very call is ever deleted; a reactivated
identity pre-dates the operation and is left alone.

Invitation delivery happens after the saga has committed and is
best-effort: its outcome is reported, never raised.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from shiftdesk.core.domain import ProvisioningResult, WorkerAttributes, WorkerProfile
from shiftdesk.core.errors import (
    IdentityCreationFailed,
    InvalidRequest,
    ProfileCreationFailed,
    RollbackFailed,
)
from shiftdesk.core.passwords import GeneratedPassword, generate_password
from shiftdesk.core.ports import AsyncProfileStore, IdentityProvider
from shiftdesk.infra.logging_config import get_logger, mask_email
from shiftdesk.infra.metrics import AppMetrics

logger = get_logger(__name__)


class SagaState(str, Enum):
    NOT_STARTED = "not_started"
    IDENTITY_CREATED = "identity_created"  # identity in place, new or reactivated
    PROFILE_COMMITTED = "profile_committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


_TRANSITIONS: dict[SagaState, frozenset[SagaState]] = {
    SagaState.NOT_STARTED: frozenset({SagaState.IDENTITY_CREATED, SagaState.FAILED}),
    SagaState.IDENTITY_CREATED: frozenset({
        SagaState.PROFILE_COMMITTED, SagaState.ROLLED_BACK, SagaState.FAILED,
    }),
    SagaState.PROFILE_COMMITTED: frozenset(),
    SagaState.ROLLED_BACK: frozenset(),
    SagaState.FAILED: frozenset(),
}


@dataclass
class ProvisioningSaga:
    """State of one provisioning run."""
    email: str
    state: SagaState = SagaState.NOT_STARTED
    identity_id: str | None = None
    reactivated: bool = False
    history: list[SagaState] = field(default_factory=list)

    def advance(self, target: SagaState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal provisioning transition {self.state.value} -> {target.value}")
        self.history.append(self.state)
        self.state = target

    @property
    def owns_identity(self) -> bool:
        """True if the identity was created by this run (and may be rolled back)"""
        return self.identity_id is not None and not self.reactivated


class ProvisioningCoordinator:

    def __init__(
        self,
        identities: IdentityProvider,
        profiles: AsyncProfileStore,
        *,
        default_pay_rate,
        invite_redirect_url: str | None = None,
        password_factory: Callable[[], GeneratedPassword] = generate_password,
    ) -> None:
        self.identities = identities
        self.profiles = profiles
        self.default_pay_rate = default_pay_rate
        self.invite_redirect_url = invite_redirect_url
        self.password_factory = password_factory

    async def provision(
        self,
        email: str,
        attributes: WorkerAttributes,
        explicit_password: str | None = None,
        *,
        send_invite: bool = True,
    ) -> ProvisioningResult:
        email = (email or "").strip()
        if not email:
            raise InvalidRequest("email is required")
        if not (attributes.full_name or "").strip():
            raise InvalidRequest("full_name is required")

        saga = ProvisioningSaga(email=email)
        # Invitations only make sense when we chose the password ourselves
        wants_invite = send_invite and explicit_password is None

        await self._resolve_identity(saga, attributes, explicit_password)
        profile = await self._commit_profile(saga, attributes)

        # Only once the profile is in place; a failed upsert must leave the old password working
        if saga.reactivated and wants_invite:
            await self._rotate_credential(saga.identity_id, attributes)

        credential_issued = False
        if wants_invite:
            credential_issued = await self._deliver_invitation(email)

        AppMetrics.worker_provisioned(saga.reactivated)
        logger.info(
            f"Worker provisioned: email={mask_email(email)}, reactivated={saga.reactivated}, "
            f"invite_sent={credential_issued}",
            extra={"worker_id": saga.identity_id},
        )
        return ProvisioningResult(
            worker_id=saga.identity_id,
            email=email,
            was_reactivated=saga.reactivated,
            credential_issued=credential_issued,
            profile=profile,
        )

    # ------------------------------------------------------------------
    # Step 1: identity
    # ------------------------------------------------------------------

    async def _resolve_identity(
        self,
        saga: ProvisioningSaga,
        attributes: WorkerAttributes,
        explicit_password: str | None,
    ) -> None:
        try:
            existing_id = await self.identities.find_by_email(saga.email)
        except Exception as exc:
            saga.advance(SagaState.FAILED)
            logger.error(f"Identity lookup failed: email={mask_email(saga.email)}", exc_info=True)
            raise IdentityCreationFailed("Failed to look up identity") from exc

        if existing_id:
            saga.identity_id = existing_id
            saga.reactivated = True
            saga.advance(SagaState.IDENTITY_CREATED)
            logger.info(
                f"Identity exists, reactivating: email={mask_email(saga.email)}",
                extra={"worker_id": existing_id},
            )
            return

        password = explicit_password or self._new_password().value
        metadata = {
            "full_name": attributes.full_name,
            "requires_password_change": explicit_password is None,
        }
        try:
            identity_id = await self.identities.create_identity(
                saga.email, password, confirmed=True, metadata=metadata,
            )
        except Exception as exc:
            saga.advance(SagaState.FAILED)
            logger.error(f"Identity creation failed: email={mask_email(saga.email)}", exc_info=True)
            raise IdentityCreationFailed("Failed to create identity") from exc

        if not identity_id:
            saga.advance(SagaState.FAILED)
            raise IdentityCreationFailed("Identity provider returned no id")

        saga.identity_id = identity_id
        saga.advance(SagaState.IDENTITY_CREATED)

    async def _rotate_credential(self, identity_id: str, attributes: WorkerAttributes) -> None:
        """Give a returning worker a fresh temporary password before the invite goes out."""
        try:
            await self.identities.update_credential(
                identity_id,
                self._new_password().value,
                {"full_name": attributes.full_name, "requires_password_change": True},
            )
        except Exception:
            # The old credential still works; the reset email lets the worker choose a new one
            logger.warning(
                "Credential rotation failed for reactivated worker",
                extra={"worker_id": identity_id},
                exc_info=True,
            )

    def _new_password(self) -> GeneratedPassword:
        generated = self.password_factory()
        if generated.degraded:
            logger.critical("Temporary password generated from a non-cryptographic source")
            AppMetrics.weak_password_generated()
        return generated

    # ------------------------------------------------------------------
    # Step 2: profile (+ compensation)
    # ------------------------------------------------------------------

    async def _commit_profile(self, saga: ProvisioningSaga, attributes: WorkerAttributes) -> WorkerProfile:
        profile = WorkerProfile(
            id=saga.identity_id,
            full_name=attributes.full_name.strip(),
            role=attributes.role,
            phone=attributes.phone or None,
            venmo_url=attributes.venmo_url or None,
            pay_rate=attributes.pay_rate if attributes.pay_rate is not None else self.default_pay_rate,
            is_active=True,
            sms_opt_in=attributes.sms_opt_in,
        )

        try:
            stored = await self.profiles.upsert(profile)
        except Exception as exc:
            await self._compensate(saga, exc)
            raise ProfileCreationFailed("Failed to save worker profile") from exc

        saga.advance(SagaState.PROFILE_COMMITTED)
        return stored or profile

    async def _compensate(self, saga: ProvisioningSaga, original: Exception) -> None:
        """Undo step 1 after a profile failure. Raises RollbackFailed if undo is impossible."""
        logger.error(
            f"Profile upsert failed: email={mask_email(saga.email)}, reactivated={saga.reactivated}",
            extra={"worker_id": saga.identity_id},
            exc_info=original,
        )

        if not saga.owns_identity:
            saga.advance(SagaState.FAILED)
            return

        try:
            await self.identities.delete_identity(saga.identity_id)
        except Exception as rollback_exc:
            saga.advance(SagaState.FAILED)
            AppMetrics.provisioning_rollback_failed()
            logger.critical(
                f"Rollback failed, identity left without profile: email={mask_email(saga.email)}",
                extra={"worker_id": saga.identity_id},
                exc_info=rollback_exc,
            )
            raise RollbackFailed(
                "Profile creation failed and the new identity could not be removed",
                identity_id=saga.identity_id,
                original_error=original,
                rollback_error=rollback_exc,
            ) from rollback_exc

        saga.advance(SagaState.ROLLED_BACK)
        AppMetrics.provisioning_rolled_back()
        logger.warning(
            f"New identity rolled back: email={mask_email(saga.email)}",
            extra={"worker_id": saga.identity_id},
        )

    # ------------------------------------------------------------------
    # Step 3: invitation (best-effort)
    # ------------------------------------------------------------------

    async def _deliver_invitation(self, email: str) -> bool:
        try:
            await self.identities.send_invitation(email, self.invite_redirect_url)
            AppMetrics.invite_delivery("invite", True)
            logger.info(f"Invite email sent: email={mask_email(email)}")
            return True
        except Exception as exc:
            AppMetrics.invite_delivery("invite", False)
            logger.warning(
                f"Invite email failed, trying password reset instead: email={mask_email(email)}, "
                f"error={type(exc).__name__}"
            )

        try:
            await self.identities.send_credential_reset(email, self.invite_redirect_url)
            AppMetrics.invite_delivery("reset", True)
            logger.info(f"Password reset email sent: email={mask_email(email)}")
            return True
        except Exception as exc:
            AppMetrics.invite_delivery("reset", False)
            logger.error(
                f"Password reset email failed, worker has no credential delivered: "
                f"email={mask_email(email)}, error={type(exc).__name__}"
            )
            return False
