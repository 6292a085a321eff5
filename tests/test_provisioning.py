# tests/test_provisioning.py
"""Tests for the identity + profile provisioning saga"""
from decimal import Decimal

import pytest

from shiftdesk.core.domain import WorkerAttributes
from shiftdesk.core.errors import (
    IdentityCreationFailed,
    InvalidRequest,
    ProfileCreationFailed,
    RollbackFailed,
)
from shiftdesk.core.passwords import GeneratedPassword
from shiftdesk.core.provisioning import ProvisioningCoordinator, ProvisioningSaga, SagaState
from shiftdesk.infra.metrics import get_metrics_collector
from conftest import MockIdentityProvider, MockProfileStore

REDIRECT = "https://app.example.com/update-password"


def _coordinator(identities, profiles, password="Temp!Password123"):
    return ProvisioningCoordinator(
        identities,
        profiles,
        default_pay_rate=Decimal("25.00"),
        invite_redirect_url=REDIRECT,
        password_factory=lambda: GeneratedPassword(password),
    )


def _attrs(**overrides):
    data = {"full_name": "Ann Lee", "phone": "+15550000001", "sms_opt_in": True}
    data.update(overrides)
    return WorkerAttributes(**data)


class TestNewWorker:
    def setup_method(self):
        get_metrics_collector().reset()
        self.identities = MockIdentityProvider()
        self.profiles = MockProfileStore()

    @pytest.mark.asyncio
    async def test_creates_identity_profile_and_invites(self):
        result = await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        created = self.identities.created[0]
        assert created["confirmed"] is True
        assert created["password"] == "Temp!Password123"
        assert created["metadata"] == {"full_name": "Ann Lee", "requires_password_change": True}

        assert result.worker_id == created["id"]
        assert result.was_reactivated is False
        assert result.credential_issued is True
        assert self.identities.invites == [("ann@example.com", REDIRECT)]

        profile = self.profiles.profiles[result.worker_id]
        assert profile.is_active is True
        assert profile.pay_rate == Decimal("25.00")
        assert profile.sms_opt_in is True

    @pytest.mark.asyncio
    async def test_explicit_pay_rate_kept(self):
        result = await _coordinator(self.identities, self.profiles).provision(
            "ann@example.com", _attrs(pay_rate=Decimal("31.50"))
        )

        assert self.profiles.profiles[result.worker_id].pay_rate == Decimal("31.50")

    @pytest.mark.asyncio
    async def test_explicit_password_skips_invite(self):
        result = await _coordinator(self.identities, self.profiles).provision(
            "ann@example.com", _attrs(), explicit_password="chosen-secret"
        )

        created = self.identities.created[0]
        assert created["password"] == "chosen-secret"
        assert created["metadata"]["requires_password_change"] is False
        assert result.credential_issued is False
        assert self.identities.invites == []
        assert self.identities.resets == []

    @pytest.mark.asyncio
    async def test_invite_not_requested(self):
        result = await _coordinator(self.identities, self.profiles).provision(
            "ann@example.com", _attrs(), send_invite=False
        )

        assert result.credential_issued is False
        assert self.identities.invites == []

    @pytest.mark.asyncio
    async def test_invite_failure_falls_back_to_reset(self):
        self.identities.fail_invite = True

        result = await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        assert result.credential_issued is True
        assert self.identities.resets == [("ann@example.com", REDIRECT)]

    @pytest.mark.asyncio
    async def test_both_deliveries_fail_is_not_fatal(self):
        self.identities.fail_invite = True
        self.identities.fail_reset = True

        result = await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        assert result.credential_issued is False
        assert result.worker_id in self.profiles.profiles

    @pytest.mark.asyncio
    async def test_identity_creation_failure(self):
        self.identities.fail_create = True

        with pytest.raises(IdentityCreationFailed):
            await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        assert self.profiles.upserts == []

    @pytest.mark.asyncio
    async def test_identity_lookup_failure(self):
        self.identities.fail_lookup = True

        with pytest.raises(IdentityCreationFailed):
            await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        assert self.identities.created == []

    @pytest.mark.asyncio
    async def test_profile_failure_rolls_back_new_identity(self):
        self.profiles.fail_upsert = True

        with pytest.raises(ProfileCreationFailed):
            await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        created_id = self.identities.created[0]["id"]
        assert self.identities.deleted == [created_id]
        assert "ann@example.com" not in self.identities.users
        assert self.identities.invites == []
        assert get_metrics_collector().get_counter("provisioning_rollbacks_total") == 1

    @pytest.mark.asyncio
    async def test_rollback_failure_carries_both_errors(self):
        self.profiles.fail_upsert = True
        self.identities.fail_delete = True

        with pytest.raises(RollbackFailed) as exc_info:
            await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        err = exc_info.value
        assert err.identity_id == self.identities.created[0]["id"]
        assert "profiles insert failed" in str(err.original_error)
        assert "delete failed" in str(err.rollback_error)
        assert err.status_code == 500
        assert get_metrics_collector().get_counter("provisioning_rollback_failures_total") == 1

    @pytest.mark.asyncio
    async def test_degraded_password_is_counted(self):
        coordinator = ProvisioningCoordinator(
            self.identities,
            self.profiles,
            default_pay_rate=Decimal("25.00"),
            password_factory=lambda: GeneratedPassword("weak-but-usable1", degraded=True),
        )

        await coordinator.provision("ann@example.com", _attrs())

        assert get_metrics_collector().get_counter("passwords_generated_degraded_total") == 1

    @pytest.mark.asyncio
    async def test_blank_email_rejected(self):
        with pytest.raises(InvalidRequest):
            await _coordinator(self.identities, self.profiles).provision("  ", _attrs())


class TestReactivation:
    def setup_method(self):
        get_metrics_collector().reset()
        self.existing_id = "11111111-1111-1111-1111-111111111111"
        self.identities = MockIdentityProvider({"ann@example.com": self.existing_id})
        self.profiles = MockProfileStore()

    @pytest.mark.asyncio
    async def test_reuses_identity_and_rotates_credential(self):
        result = await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        assert result.worker_id == self.existing_id
        assert result.was_reactivated is True
        assert self.identities.created == []
        assert self.identities.updated == [
            (self.existing_id, "Temp!Password123",
             {"full_name": "Ann Lee", "requires_password_change": True}),
        ]
        assert self.profiles.profiles[self.existing_id].is_active is True
        assert get_metrics_collector().get_counter("workers_provisioned_total", reactivated="true") == 1

    @pytest.mark.asyncio
    async def test_no_rotation_with_explicit_password(self):
        await _coordinator(self.identities, self.profiles).provision(
            "ann@example.com", _attrs(), explicit_password="chosen-secret"
        )

        assert self.identities.updated == []

    @pytest.mark.asyncio
    async def test_no_rotation_without_invite(self):
        await _coordinator(self.identities, self.profiles).provision(
            "ann@example.com", _attrs(), send_invite=False
        )

        assert self.identities.updated == []

    @pytest.mark.asyncio
    async def test_rotation_failure_is_not_fatal(self):
        self.identities.fail_update = True

        result = await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        assert result.was_reactivated is True
        assert result.credential_issued is True

    @pytest.mark.asyncio
    async def test_profile_failure_keeps_existing_identity(self):
        self.profiles.fail_upsert = True

        with pytest.raises(ProfileCreationFailed):
            await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        assert self.identities.deleted == []
        assert self.identities.users["ann@example.com"] == self.existing_id

    @pytest.mark.asyncio
    async def test_profile_failure_leaves_old_credential(self):
        self.profiles.fail_upsert = True

        with pytest.raises(ProfileCreationFailed):
            await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        assert self.identities.updated == []
        assert self.identities.invites == []
        assert self.identities.resets == []

    @pytest.mark.asyncio
    async def test_rotation_follows_profile_commit(self):
        order = []
        upsert, update = self.profiles.upsert, self.identities.update_credential

        async def tracked_upsert(profile):
            order.append("profile")
            return await upsert(profile)

        async def tracked_update(identity_id, password, metadata):
            order.append("credential")
            await update(identity_id, password, metadata)

        self.profiles.upsert = tracked_upsert
        self.identities.update_credential = tracked_update

        await _coordinator(self.identities, self.profiles).provision("ann@example.com", _attrs())

        assert order == ["profile", "credential"]


class TestProvisioningSaga:
    def test_happy_path(self):
        saga = ProvisioningSaga(email="a@b.co")
        saga.advance(SagaState.IDENTITY_CREATED)
        saga.advance(SagaState.PROFILE_COMMITTED)

        assert saga.state is SagaState.PROFILE_COMMITTED
        assert saga.history == [SagaState.NOT_STARTED, SagaState.IDENTITY_CREATED]

    def test_cannot_skip_identity_step(self):
        saga = ProvisioningSaga(email="a@b.co")

        with pytest.raises(RuntimeError):
            saga.advance(SagaState.PROFILE_COMMITTED)

    def test_terminal_states_are_final(self):
        saga = ProvisioningSaga(email="a@b.co")
        saga.advance(SagaState.IDENTITY_CREATED)
        saga.advance(SagaState.ROLLED_BACK)

        with pytest.raises(RuntimeError):
            saga.advance(SagaState.PROFILE_COMMITTED)

    def test_owns_identity_only_when_created(self):
        saga = ProvisioningSaga(email="a@b.co", identity_id="x")
        assert saga.owns_identity is True
        saga.reactivated = True
        assert saga.owns_identity is False
