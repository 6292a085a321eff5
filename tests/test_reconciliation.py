# tests/test_reconciliation.py
"""Tests for assignment reconciliation"""
import asyncio

import pytest

from shiftdesk.core.errors import InvalidRequest, StorageError
from shiftdesk.core.reconciliation import AssignmentReconciler, compute_added, normalize_ids
from shiftdesk.infra.metrics import get_metrics_collector
from conftest import MockAssignmentStore


class TestComputeAdded:
    def test_only_new_ids(self):
        assert compute_added({"a", "b", "c"}, {"a"}) == {"b", "c"}

    def test_nothing_new(self):
        assert compute_added({"a"}, {"a", "b"}) == set()

    def test_empty_current(self):
        assert compute_added({"a", "b"}, set()) == {"a", "b"}


class TestNormalizeIds:
    def test_dedup_and_strip(self):
        assert normalize_ids(["a", " a ", "b", "", "  "]) == {"a", "b"}

    def test_none(self):
        assert normalize_ids(None) == set()


class TestAssignmentReconciler:
    def setup_method(self):
        get_metrics_collector().reset()

    @pytest.mark.asyncio
    async def test_first_assignment_adds_everyone(self, assignment_store):
        reconciler = AssignmentReconciler(assignment_store)

        result = await reconciler.reconcile("shift-1", ["w1", "w2"])

        assert result.added_worker_ids == {"w1", "w2"}
        assert await assignment_store.list_assignees("shift-1") == {"w1", "w2"}

    @pytest.mark.asyncio
    async def test_partial_overlap(self, assignment_store):
        """Existing {A}, request {A, B} -> only B is added"""
        assignment_store.rows = {("shift-1", "A")}
        reconciler = AssignmentReconciler(assignment_store)

        result = await reconciler.reconcile("shift-1", ["A", "B"])

        assert result.added_worker_ids == {"B"}
        assert await assignment_store.list_assignees("shift-1") == {"A", "B"}

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, assignment_store):
        reconciler = AssignmentReconciler(assignment_store)

        first = await reconciler.reconcile("shift-1", ["w1", "w2"])
        second = await reconciler.reconcile("shift-1", ["w1", "w2"])

        assert first.added_worker_ids == {"w1", "w2"}
        assert second.added_worker_ids == set()
        assert await assignment_store.list_assignees("shift-1") == {"w1", "w2"}

    @pytest.mark.asyncio
    async def test_request_persisted_in_one_call(self, assignment_store):
        assignment_store.rows = {("shift-1", "A")}
        reconciler = AssignmentReconciler(assignment_store)

        await reconciler.reconcile("shift-1", ["A", "B"])

        assert assignment_store.upsert_calls == [("shift-1", {"A", "B"})]
        assert await assignment_store.list_assignees("shift-1") == {"A", "B"}

    @pytest.mark.asyncio
    async def test_concurrent_requests_add_worker_once(self):
        store = MockAssignmentStore(yield_after_list=True)
        reconciler = AssignmentReconciler(store)

        first, second = await asyncio.gather(
            reconciler.reconcile("shift-1", ["w1", "w2"]),
            reconciler.reconcile("shift-1", ["w1"]),
        )

        assert store.rows == {("shift-1", "w1"), ("shift-1", "w2")}
        assert first.added_worker_ids == {"w1", "w2"}
        assert second.added_worker_ids == set()
        assert get_metrics_collector().get_counter("assignments_added_total") == 2

    @pytest.mark.asyncio
    async def test_row_inserted_elsewhere_is_not_added(self, assignment_store):
        """Read says new, but the insert found the row already there"""
        reconciler = AssignmentReconciler(assignment_store)

        async def racing_upsert(shift_id, worker_ids):
            assignment_store.rows.add((shift_id, "w1"))
            return set()

        assignment_store.upsert_many = racing_upsert

        result = await reconciler.reconcile("shift-1", ["w1"])

        assert result.added_worker_ids == set()

    @pytest.mark.asyncio
    async def test_duplicates_in_request_collapse(self, assignment_store):
        reconciler = AssignmentReconciler(assignment_store)

        result = await reconciler.reconcile("shift-1", ["w1", "w1", " w1 "])

        assert result.added_worker_ids == {"w1"}

    @pytest.mark.asyncio
    async def test_other_shifts_untouched(self, assignment_store):
        assignment_store.rows = {("shift-2", "w1")}
        reconciler = AssignmentReconciler(assignment_store)

        result = await reconciler.reconcile("shift-1", ["w1"])

        assert result.added_worker_ids == {"w1"}
        assert ("shift-2", "w1") in assignment_store.rows

    @pytest.mark.asyncio
    async def test_empty_request_rejected(self, assignment_store):
        reconciler = AssignmentReconciler(assignment_store)

        with pytest.raises(InvalidRequest):
            await reconciler.reconcile("shift-1", [])
        with pytest.raises(InvalidRequest):
            await reconciler.reconcile("shift-1", ["", "  "])

        assert assignment_store.upsert_calls == []

    @pytest.mark.asyncio
    async def test_upsert_failure_raises_storage_error(self, assignment_store):
        assignment_store.fail_upsert = True
        reconciler = AssignmentReconciler(assignment_store)

        with pytest.raises(StorageError):
            await reconciler.reconcile("shift-1", ["w1"])

        assert assignment_store.rows == set()
        assert get_metrics_collector().get_counter("database_errors_total", operation="assignments_upsert") == 1

    @pytest.mark.asyncio
    async def test_lookup_failure_raises_storage_error(self, assignment_store):
        assignment_store.fail_list = True
        reconciler = AssignmentReconciler(assignment_store)

        with pytest.raises(StorageError):
            await reconciler.reconcile("shift-1", ["w1"])

        assert assignment_store.upsert_calls == []

    @pytest.mark.asyncio
    async def test_unassign(self, assignment_store):
        assignment_store.rows = {("shift-1", "w1"), ("shift-1", "w2")}
        reconciler = AssignmentReconciler(assignment_store)

        removed = await reconciler.unassign("shift-1", ["w1", "w9"])

        assert removed == 1
        assert await assignment_store.list_assignees("shift-1") == {"w2"}

    @pytest.mark.asyncio
    async def test_unassign_empty_rejected(self, assignment_store):
        reconciler = AssignmentReconciler(assignment_store)

        with pytest.raises(InvalidRequest):
            await reconciler.unassign("shift-1", [])
