# tests/test_recipients.py
import pytest

from shiftdesk.core.errors import StorageError
from shiftdesk.core.recipients import RecipientResolver, to_recipient
from conftest import make_profile


class TestToRecipient:
    def test_deliverable(self):
        r = to_recipient(make_profile("w1", " Ann ", " +15550000001 "))
        assert r.id == "w1"
        assert r.display_name == "Ann"
        assert r.phone == "+15550000001"
        assert r.opted_in is True

    def test_no_phone(self):
        assert to_recipient(make_profile("w1", phone=None)) is None
        assert to_recipient(make_profile("w1", phone="   ")) is None

    def test_opted_out(self):
        assert to_recipient(make_profile("w1", sms_opt_in=False)) is None

    def test_inactive(self):
        assert to_recipient(make_profile("w1", is_active=False)) is None


class TestRecipientResolver:
    @pytest.mark.asyncio
    async def test_filters_undeliverable(self, profile_store):
        resolver = RecipientResolver(profile_store)

        recipients = await resolver.resolve(["w1", "w2", "w4", "w5", "w6"])

        assert [r.id for r in recipients] == ["w1", "w2"]

    @pytest.mark.asyncio
    async def test_missing_workers_omitted(self, profile_store):
        resolver = RecipientResolver(profile_store)

        recipients = await resolver.resolve(["w1", "ghost"])

        assert [r.id for r in recipients] == ["w1"]

    @pytest.mark.asyncio
    async def test_empty_input_skips_storage(self, profile_store):
        profile_store.fail_get = True
        resolver = RecipientResolver(profile_store)

        assert await resolver.resolve([]) == []

    @pytest.mark.asyncio
    async def test_lookup_failure(self, profile_store):
        profile_store.fail_get = True
        resolver = RecipientResolver(profile_store)

        with pytest.raises(StorageError):
            await resolver.resolve(["w1"])
