"""
Tests for SyncOrchestrator: per-owner sync, full runs, single-flight.
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import T0, V1, V2, make_record, remote_file
from models.cache import CacheKind
from services.sync.exceptions import ConcurrencyViolation, ListingError, OwnerNotFoundError
from services.sync.models import Owner

ALICE = Owner(id="alice", container_id="folder-alice", display_name="Alice")
BOB = Owner(id="bob", container_id="folder-bob", display_name="Bob")
CAROL = Owner(id="carol", container_id="folder-carol", display_name="Carol")
DAVE = Owner(id="dave", container_id="folder-dave", display_name="Dave")


async def seed(records, clock, age: timedelta, items):
    """Write records as if they had been synced ``age`` ago."""
    now = clock.now
    clock.now = now - age
    await records.write_batch(items)
    clock.now = now


class TestSyncOwner:

    async def test_empty_store_all_files_new(self, orchestrator, listing, records):
        listing.files[ALICE.container_id] = [remote_file("a1"), remote_file("a2"), remote_file("a3")]

        result = await orchestrator.sync_owner(ALICE)

        assert (result.files_seen, result.files_updated) == (3, 3)
        assert await records.count(ALICE.id) == 3

    async def test_only_new_file_is_enriched(self, orchestrator, listing, records, enrichment, clock):
        await seed(records, clock, timedelta(hours=7),
                   [make_record(BOB, "b1", version=V1), make_record(BOB, "b2", version=V1)])
        listing.files[BOB.container_id] = [remote_file("b1", V1), remote_file("b2", V1),
                                           remote_file("b3", V1)]

        result = await orchestrator.sync_owner(BOB)

        assert (result.files_seen, result.files_updated) == (3, 1)
        assert enrichment.calls == ["b3.pdf"]
        stored = {r.id: r for r in await records.list(BOB.id)}
        assert stored["b1"].summary == "cached summary"
        assert stored["b3"].summary == "Samenvatting van b3.pdf"

    async def test_second_sync_updates_nothing(self, orchestrator, listing):
        listing.files[ALICE.container_id] = [remote_file("a1"), remote_file("a2")]

        await orchestrator.sync_owner(ALICE, force=True)
        second = await orchestrator.sync_owner(ALICE, force=True)

        assert (second.files_seen, second.files_updated) == (2, 0)

    async def test_fresh_owner_is_skipped_without_remote_calls(self, orchestrator, listing,
                                                               records, clock):
        await seed(records, clock, timedelta(hours=3), [make_record(ALICE, "a1")])
        listing.files[ALICE.container_id] = [remote_file("a1"), remote_file("a2")]

        result = await orchestrator.sync_owner(ALICE)

        assert result.skipped is True
        assert (result.files_seen, result.files_updated) == (0, 0)
        assert listing.calls == []

    async def test_remote_edit_is_picked_up(self, orchestrator, listing, records, clock):
        created = T0 - timedelta(hours=7)
        await seed(records, clock, timedelta(hours=7),
                   [make_record(ALICE, "a1", version=V1, created_at=created)])
        listing.files[ALICE.container_id] = [remote_file("a1", V2)]

        result = await orchestrator.sync_owner(ALICE)

        assert result.files_updated == 1
        record = await records.get("a1")
        assert record.remote_version == V2
        assert record.created_at == created
        assert record.updated_at == T0

    async def test_listing_error_propagates(self, orchestrator, listing):
        listing.errors[ALICE.container_id] = ListingError(ALICE.container_id, "rate limited")

        with pytest.raises(ListingError):
            await orchestrator.sync_owner(ALICE)

    async def test_concurrent_syncs_of_one_owner_are_serialized(self, orchestrator, listing,
                                                                enrichment):
        listing.files[ALICE.container_id] = [remote_file("a1"), remote_file("a2")]
        enrichment.delay = 0.01

        first, second = await asyncio.gather(
            orchestrator.sync_owner(ALICE, force=True),
            orchestrator.sync_owner(ALICE, force=True),
        )

        assert sorted([first.files_updated, second.files_updated]) == [0, 2]
        assert sorted(enrichment.calls) == ["a1.pdf", "a2.pdf"]


class TestForceOperations:

    async def test_force_sync_ignores_freshness(self, orchestrator, directory, listing,
                                                records, clock):
        directory.owners = [ALICE]
        await seed(records, clock, timedelta(hours=1), [make_record(ALICE, "a1")])
        listing.files[ALICE.container_id] = [remote_file("a1"), remote_file("a2")]

        result = await orchestrator.force_sync(ALICE.id)

        assert (result.files_seen, result.files_updated) == (2, 1)

    async def test_force_sync_unknown_owner(self, orchestrator, directory):
        directory.owners = [ALICE]

        with pytest.raises(OwnerNotFoundError):
            await orchestrator.force_sync("nobody")

        assert directory.invalidations == 1

    async def test_force_sync_finds_owner_added_after_listing(self, orchestrator, directory,
                                                              listing):
        directory.owners = [ALICE]
        directory.discovered = [BOB]
        listing.files[BOB.container_id] = [remote_file("b1")]

        result = await orchestrator.force_sync(BOB.id)

        assert result.files_updated == 1
        assert directory.invalidations == 1

    async def test_known_owner_does_not_refresh(self, orchestrator, directory, listing):
        directory.owners = [ALICE]
        listing.files[ALICE.container_id] = []

        await orchestrator.force_sync(ALICE.id)

        assert directory.invalidations == 0

    async def test_force_reanalyze_bypasses_enrichment_cache(self, orchestrator, directory,
                                                             listing, enrichment):
        directory.owners = [ALICE]
        listing.files[ALICE.container_id] = [remote_file("a1"), remote_file("a2")]
        await orchestrator.force_sync(ALICE.id)

        result = await orchestrator.force_reanalyze(ALICE.id)

        assert result.files_updated == 2
        assert len(enrichment.calls) == 4

    async def test_get_cached_records(self, orchestrator, records):
        await records.write_batch([make_record(ALICE, "a1", version=V1),
                                   make_record(ALICE, "a2", version=V2)])

        assert [r.id for r in await orchestrator.get_cached_records(ALICE.id)] == ["a2", "a1"]


class TestFullSync:

    async def test_full_run_isolates_failing_owner(self, orchestrator, directory, listing,
                                                   records, database, clock):
        directory.owners = [ALICE, BOB, CAROL, DAVE]
        listing.files[ALICE.container_id] = [remote_file("a1"), remote_file("a2"), remote_file("a3")]
        await seed(records, clock, timedelta(hours=7),
                   [make_record(BOB, "b1"), make_record(BOB, "b2")])
        listing.files[BOB.container_id] = [remote_file("b1"), remote_file("b2"), remote_file("b3")]
        listing.errors[CAROL.container_id] = ListingError(CAROL.container_id, "quota exceeded")
        await seed(records, clock, timedelta(hours=3), [make_record(DAVE, "d1")])

        summary = await orchestrator.run_full_sync()

        assert summary.skipped is False
        assert summary.owners_total == 4
        assert summary.owners_synced == 2
        assert summary.owners_fresh == 1
        assert summary.failed_owners == 1
        assert summary.total_files == 6
        assert summary.updated_files == 4
        assert DAVE.container_id not in listing.calls

        status = await database.get_sync_status()
        assert status.is_running is False
        assert status.last_full_sync_at == T0
        assert status.last_total_files == 6
        assert status.last_updated_files == 4
        assert status.last_failed_owners == 1

    async def test_enrichment_failure_writes_nothing_for_that_owner(self, orchestrator, directory,
                                                                    listing, enrichment, records):
        directory.owners = [ALICE, BOB]
        listing.files[ALICE.container_id] = [remote_file("a1"), remote_file("a2")]
        listing.files[BOB.container_id] = [remote_file("b1")]
        enrichment.fail_on.add("a2.pdf")

        summary = await orchestrator.run_full_sync()

        assert summary.failed_owners == 1
        assert await records.list(ALICE.id) == []
        assert [r.id for r in await records.list(BOB.id)] == ["b1"]

    async def test_expired_cache_is_cleaned_first(self, orchestrator, cache, clock):
        await cache.set("files:stale", CacheKind.METADATA, [], ttl=10)
        clock.advance(seconds=11)

        await orchestrator.run_full_sync()

        assert (await cache.stats()).total == 0

    async def test_directory_failure_releases_run(self, orchestrator, directory, database):
        directory.error = ListingError("root", "drive unavailable")

        summary = await orchestrator.run_full_sync()

        assert summary.owners_total == 0
        status = await database.get_sync_status()
        assert status.is_running is False
        assert status.last_full_sync_at is None

        directory.error = None
        again = await orchestrator.run_full_sync()
        assert again.skipped is False

    async def test_reanalyze_all_ignores_freshness(self, orchestrator, directory, listing,
                                                   records, enrichment, clock):
        directory.owners = [ALICE]
        await seed(records, clock, timedelta(hours=1), [make_record(ALICE, "a1")])
        listing.files[ALICE.container_id] = [remote_file("a1")]

        summary = await orchestrator.reanalyze_all()

        assert summary.updated_files == 1
        assert enrichment.calls == ["a1.pdf"]
        assert (await records.get("a1")).summary == "Samenvatting van a1.pdf"


class TestSingleFlight:

    async def test_back_to_back_runs(self, orchestrator, directory, listing):
        directory.owners = [ALICE]
        listing.files[ALICE.container_id] = [remote_file("a1")]

        first, second = await asyncio.gather(
            orchestrator.run_full_sync(), orchestrator.run_full_sync()
        )

        assert first.skipped is False
        assert second.skipped is True
        assert directory.calls == 1
        assert listing.calls == [ALICE.container_id]

    async def test_run_held_by_another_process(self, orchestrator, directory, database, clock):
        assert await database.try_acquire_sync_run(clock.now - timedelta(minutes=5), 3600)

        summary = await orchestrator.run_full_sync()

        assert summary.skipped is True
        assert directory.calls == 0

    async def test_stale_run_is_taken_over(self, orchestrator, directory, database, clock):
        assert await database.try_acquire_sync_run(clock.now - timedelta(hours=2), 3600)

        summary = await orchestrator.run_full_sync()

        assert summary.skipped is False
        assert directory.calls == 1
        assert (await database.get_sync_status()).is_running is False

    async def test_status_reports_running_during_run(self, orchestrator, directory):
        seen = {}

        async def capture():
            seen.update(await orchestrator.get_sync_status())

        directory.hook = capture
        await orchestrator.run_full_sync()

        assert seen["is_running"] is True
        assert (await orchestrator.get_sync_status())["is_running"] is False

    async def test_lost_token_raises(self, orchestrator, directory, database, clock):
        async def steal():
            await database.try_acquire_sync_run(clock.now + timedelta(hours=2), 3600)

        directory.hook = steal

        with pytest.raises(ConcurrencyViolation):
            await orchestrator.run_full_sync()

        assert orchestrator.is_running() is False
