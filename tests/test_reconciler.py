"""Tests for candidate reconciliation."""

import copy
from datetime import timedelta
from types import SimpleNamespace

import pytest

from postpulse.core.errors import StoreError
from postpulse.ingestor.reconciler import Reconciler, ReconcileReport, dedupe_candidates, has_changed

from factories import NOW, make_candidate


def bump(candidate, favorites=0, shares=0):
    """Copy of a candidate with higher counters, as a later fetch would return it."""
    refreshed = copy.deepcopy(candidate)
    refreshed.favorite_count += favorites
    refreshed.share_count += shares
    refreshed.raw_status["favorite_count"] = refreshed.favorite_count
    refreshed.raw_status["retweet_count"] = refreshed.share_count
    return refreshed


class TestScenarios:
    """Insert, skip and update passes over the same three posts."""

    @pytest.mark.asyncio
    async def test_new_posts_are_inserted(self, store, three_candidates):
        report = await Reconciler(store).reconcile(three_candidates)

        assert (report.inserted, report.updated, report.unchanged) == (3, 0, 0)
        assert set(store.posts) == {"1001", "1002", "1003"}
        assert len(store.insert_calls) == 1  # one bulk insert

    @pytest.mark.asyncio
    async def test_identical_refetch_is_unchanged(self, store, three_candidates):
        reconciler = Reconciler(store)
        await reconciler.reconcile(three_candidates)
        before = copy.deepcopy(store.posts)

        report = await reconciler.reconcile(copy.deepcopy(three_candidates))

        assert (report.inserted, report.updated, report.unchanged) == (0, 0, 3)
        assert store.posts == before
        assert store.update_calls == []
        assert len(store.insert_calls) == 1

    @pytest.mark.asyncio
    async def test_changed_counter_updates_only_that_post(self, store, three_candidates):
        reconciler = Reconciler(store)
        await reconciler.reconcile(three_candidates)

        refetched = copy.deepcopy(three_candidates)
        refetched[1] = bump(refetched[1], favorites=5)
        report = await reconciler.reconcile(refetched)

        assert (report.inserted, report.updated, report.unchanged) == (0, 1, 2)
        assert store.update_calls == ["1002"]
        assert store.posts["1001"].favorite_count == 10
        assert store.posts["1002"].favorite_count == 25
        assert store.posts["1003"].favorite_count == 30

    @pytest.mark.asyncio
    async def test_payload_change_alone_counts_as_changed(self, store, three_candidates):
        reconciler = Reconciler(store)
        await reconciler.reconcile(three_candidates)

        refetched = copy.deepcopy(three_candidates)
        refetched[0].raw_status["text"] = "edited thread 🧵"
        report = await reconciler.reconcile(refetched)

        assert report.updated == 1
        assert store.posts["1001"].raw_status["text"] == "edited thread 🧵"

    @pytest.mark.asyncio
    async def test_mixed_batch(self, store, three_candidates):
        reconciler = Reconciler(store)
        await reconciler.reconcile(three_candidates[:2])

        batch = [bump(three_candidates[0], shares=1), three_candidates[1], three_candidates[2]]
        report = await reconciler.reconcile(batch)

        assert report.to_dict() == {
            "inserted": 1,
            "updated": 1,
            "unchanged": 1,
            "duplicates": 0,
            "failed_updates": [],
            "insert_failed": False,
            "total": 3,
        }


class TestInvariants:
    """Properties that hold across any sequence of passes."""

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, store, three_candidates):
        reconciler = Reconciler(store)
        first = await reconciler.reconcile(three_candidates)
        second = await reconciler.reconcile(three_candidates)

        assert first.inserted == 3
        assert (second.inserted, second.updated, second.unchanged) == (0, 0, 3)

    @pytest.mark.asyncio
    async def test_published_at_never_changes(self, store):
        reconciler = Reconciler(store)
        original = make_candidate("42", favorite_count=1, published_at=NOW - timedelta(hours=3))
        await reconciler.reconcile([original])

        for i in range(1, 4):
            later = bump(original, favorites=i)
            later.published_at = NOW - timedelta(minutes=i)  # source re-reports a different time
            await reconciler.reconcile([later])

        assert store.posts["42"].favorite_count == 4
        assert store.posts["42"].published_at == NOW - timedelta(hours=3)

    @pytest.mark.asyncio
    async def test_no_duplicate_ids_across_passes(self, store, three_candidates):
        reconciler = Reconciler(store)
        batches = [
            three_candidates[:1],
            three_candidates,
            [bump(c, favorites=1) for c in three_candidates],
            three_candidates[1:] + [make_candidate("1004")],
        ]
        for batch in batches:
            await reconciler.reconcile(batch)

        # the fake store raises on duplicate inserts, so reaching here is the check
        assert sorted(store.posts) == ["1001", "1002", "1003", "1004"]

    @pytest.mark.asyncio
    async def test_partition_is_complete(self, store, three_candidates):
        reconciler = Reconciler(store)
        await reconciler.reconcile(three_candidates[:2])

        batch = [
            three_candidates[0],
            bump(three_candidates[1], favorites=2),
            three_candidates[2],
            make_candidate("2000"),
            make_candidate("2000", favorite_count=9),
        ]
        report = await reconciler.reconcile(batch)

        assert report.duplicates == 1
        assert report.total == len(batch) - report.duplicates

    @pytest.mark.asyncio
    async def test_unobserved_posts_keep_their_counters(self, store, three_candidates):
        reconciler = Reconciler(store)
        await reconciler.reconcile(three_candidates)

        await reconciler.reconcile([bump(three_candidates[0], favorites=100)])

        assert store.posts["1002"].favorite_count == 20
        assert store.posts["1003"].favorite_count == 30


class TestDuplicatesInBatch:

    def test_last_occurrence_wins(self):
        first = make_candidate("7", favorite_count=1)
        other = make_candidate("8")
        last = make_candidate("7", favorite_count=3)

        unique = dedupe_candidates([first, other, last])

        assert [c.external_id for c in unique] == ["7", "8"]
        assert unique[0].favorite_count == 3

    @pytest.mark.asyncio
    async def test_later_duplicate_is_persisted(self, store):
        batch = [make_candidate("7", favorite_count=1), make_candidate("7", favorite_count=3)]

        report = await Reconciler(store).reconcile(batch)

        assert report.inserted == 1
        assert report.duplicates == 1
        assert store.posts["7"].favorite_count == 3


class TestFailures:

    @pytest.mark.asyncio
    async def test_lookup_failure_aborts_before_writes(self, store, three_candidates):
        store.fail_lookup_ids = {"1002"}

        with pytest.raises(StoreError) as exc_info:
            await Reconciler(store).reconcile(three_candidates)

        assert exc_info.value.operation == "lookup"
        assert exc_info.value.external_id == "1002"
        assert store.insert_calls == []
        assert store.update_calls == []
        assert store.posts == {}

    @pytest.mark.asyncio
    async def test_insert_failure_still_runs_updates(self, store, three_candidates):
        reconciler = Reconciler(store)
        await reconciler.reconcile(three_candidates[:1])
        store.fail_insert = True

        batch = [bump(three_candidates[0], favorites=1)] + three_candidates[1:]
        with pytest.raises(StoreError) as exc_info:
            await reconciler.reconcile(batch)

        report = exc_info.value.report
        assert exc_info.value.operation == "insert"
        assert report.insert_failed is True
        assert report.inserted == 0
        assert report.updated == 1
        assert store.posts["1001"].favorite_count == 11

    @pytest.mark.asyncio
    async def test_update_failure_keeps_inserts_and_other_updates(self, store, three_candidates):
        reconciler = Reconciler(store)
        await reconciler.reconcile(three_candidates[:2])
        store.fail_update_ids = {"1001"}

        batch = [bump(c, favorites=1) for c in three_candidates[:2]] + [three_candidates[2]]
        with pytest.raises(StoreError) as exc_info:
            await reconciler.reconcile(batch)

        error = exc_info.value
        assert error.operation == "update"
        assert error.external_id == "1001"
        assert error.report.inserted == 1
        assert error.report.updated == 1
        assert error.report.failed_updates == ["1001"]
        assert sorted(store.update_calls) == ["1001", "1002"]
        assert store.posts["1002"].favorite_count == 21

        # next pass repairs: the insert persisted and the failed update is retried
        store.fail_update_ids = set()
        report = await reconciler.reconcile(batch)
        assert (report.inserted, report.updated, report.unchanged) == (0, 1, 2)
        assert store.posts["1001"].favorite_count == 11

    @pytest.mark.asyncio
    async def test_rows_skipped_by_insert_count_as_unchanged(self, store, three_candidates):
        # another writer stores 1002 after classify
        real_insert = store.insert_many

        async def racing_insert(candidates):
            store.posts["1002"] = SimpleNamespace(**three_candidates[1].to_row())
            return await real_insert([c for c in candidates if c.external_id != "1002"])

        store.insert_many = racing_insert
        batch = three_candidates + [three_candidates[0]]

        report = await Reconciler(store).reconcile(batch)

        assert (report.inserted, report.updated, report.unchanged) == (2, 0, 1)
        assert report.total == len(batch) - report.duplicates
        assert report.ok


class TestLookupModes:

    @pytest.mark.asyncio
    async def test_batch_lookups_classify_like_point_lookups(self, store, three_candidates):
        reconciler = Reconciler(store, batch_lookups=True)
        await reconciler.reconcile(three_candidates[:2])

        batch = [bump(three_candidates[0], favorites=1), three_candidates[1], three_candidates[2]]
        report = await reconciler.reconcile(batch)

        assert (report.inserted, report.updated, report.unchanged) == (1, 1, 1)
        assert store.lookups == 0
        assert store.batch_lookups == 2

    @pytest.mark.asyncio
    async def test_point_lookups_are_one_per_candidate(self, store, three_candidates):
        await Reconciler(store).reconcile(three_candidates)
        assert store.lookups == 3

    def test_has_changed_compares_counters_and_payload(self):
        candidate = make_candidate("1", favorite_count=1, share_count=None)
        stored = copy.deepcopy(candidate)

        assert not has_changed(stored, candidate)
        stored.share_count = 0
        assert has_changed(stored, candidate)


def test_empty_report():
    report = ReconcileReport()
    assert report.total == 0
    assert report.ok
