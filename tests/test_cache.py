"""
Tests for the TTL cache service (SQLite and in-memory backends).
"""

import pytest

from core.cache import CacheService
from core.cleanup import CleanupService
from core.database import Database
from models.cache import CacheKind, prefix_upper_bound


@pytest.fixture(params=["sqlite", "memory"])
def any_cache(request) -> CacheService:
    name = "cache" if request.param == "sqlite" else "memory_cache"
    return request.getfixturevalue(name)


class TestExpiry:
    """Entries are visible until their TTL passes and gone after."""

    async def test_hit_before_expiry(self, any_cache, clock):
        await any_cache.set("files:owner-1", CacheKind.METADATA, {"ids": ["a", "b"]}, ttl=3600)

        clock.advance(seconds=3599)
        assert await any_cache.get("files:owner-1") == {"ids": ["a", "b"]}

    async def test_miss_after_expiry(self, any_cache, clock):
        await any_cache.set("files:owner-1", CacheKind.METADATA, {"ids": ["a"]}, ttl=3600)

        clock.advance(seconds=3601)
        assert await any_cache.get("files:owner-1") is None

    async def test_expired_read_deletes_entry(self, any_cache, clock):
        await any_cache.set("files:owner-1", CacheKind.METADATA, [1, 2, 3], ttl=60)
        clock.advance(seconds=61)

        assert await any_cache.get("files:owner-1") is None
        stats = await any_cache.stats()
        assert stats.total == 0

    async def test_default_ttl_from_settings(self, any_cache, clock, settings):
        await any_cache.set("metadata:x", CacheKind.METADATA, "v")

        clock.advance(seconds=settings.cache_ttl - 1)
        assert await any_cache.get("metadata:x") == "v"
        clock.advance(seconds=2)
        assert await any_cache.get("metadata:x") is None

    async def test_set_overwrites_and_restarts_ttl(self, any_cache, clock):
        await any_cache.set("k", CacheKind.METADATA, "old", ttl=100)
        clock.advance(seconds=90)
        await any_cache.set("k", CacheKind.METADATA, "new", ttl=100)
        clock.advance(seconds=90)

        assert await any_cache.get("k") == "new"

    async def test_missing_key(self, any_cache):
        assert await any_cache.get("nope") is None


class TestInvalidation:

    async def test_prefix_range_delete(self, any_cache):
        for key in ("enrichment:o1:a", "enrichment:o1:b", "enrichment:o10:a", "enrichment:o2:a"):
            await any_cache.set(key, CacheKind.ENRICHMENT, {"k": key})
        await any_cache.set("files:o1", CacheKind.METADATA, [])

        deleted = await any_cache.invalidate_prefix("enrichment:o1:")

        assert deleted == 2
        assert await any_cache.get("enrichment:o1:a") is None
        assert await any_cache.get("enrichment:o1:b") is None
        assert await any_cache.get("enrichment:o10:a") == {"k": "enrichment:o10:a"}
        assert await any_cache.get("enrichment:o2:a") is not None
        assert await any_cache.get("files:o1") == []

    async def test_prefix_covers_astral_and_max_bmp_characters(self, any_cache):
        keys = ("enrichment:alice:\U0001F600", "enrichment:alice:\uffffz", "enrichment:alice:a")
        for key in keys:
            await any_cache.set(key, CacheKind.ENRICHMENT, {})
        await any_cache.set("enrichment:alicf", CacheKind.ENRICHMENT, {})

        assert await any_cache.invalidate_prefix("enrichment:alice:") == 3
        assert await any_cache.get("enrichment:alicf") == {}

    async def test_prefix_with_no_matches(self, any_cache):
        await any_cache.set("files:o1", CacheKind.METADATA, [])
        assert await any_cache.invalidate_prefix("owners:") == 0

    async def test_delete_single_key(self, any_cache):
        await any_cache.set("owners:all", CacheKind.OWNERS, [])

        assert await any_cache.delete("owners:all") is True
        assert await any_cache.delete("owners:all") is False


class TestCleanup:

    async def test_cleanup_respects_batch_limit(self, any_cache, clock):
        for i in range(5):
            await any_cache.set(f"files:old-{i}", CacheKind.METADATA, i, ttl=10)
        await any_cache.set("files:live", CacheKind.METADATA, "live", ttl=10_000)
        clock.advance(seconds=11)

        assert await any_cache.cleanup_expired(batch_limit=2) == 2
        assert await any_cache.cleanup_expired(batch_limit=2) == 2
        assert await any_cache.cleanup_expired(batch_limit=2) == 1
        assert await any_cache.cleanup_expired(batch_limit=2) == 0
        assert await any_cache.get("files:live") == "live"

    async def test_explicit_zero_batch_limit_deletes_nothing(self, any_cache, clock):
        await any_cache.set("metadata:old", CacheKind.METADATA, 1, ttl=10)
        clock.advance(seconds=11)

        assert await any_cache.cleanup_expired(batch_limit=0) == 0
        assert (await any_cache.stats()).total == 1

    async def test_cleanup_service_sweeps_until_short_batch(self, cache, clock, settings):
        for i in range(7):
            await cache.set(f"metadata:{i}", CacheKind.METADATA, i, ttl=10)
        clock.advance(seconds=11)

        service = CleanupService(cache, settings.model_copy(update={"cleanup_batch_limit": 3}))
        result = await service.run_once()

        assert result == {"expired_cache": 7, "batches": 3}
        assert (await cache.stats()).total == 0


class TestStats:

    async def test_counts_by_kind_and_expired(self, any_cache, clock):
        await any_cache.set("files:a", CacheKind.METADATA, 1, ttl=10)
        await any_cache.set("files:b", CacheKind.METADATA, 2, ttl=1000)
        await any_cache.set("enrichment:o:f:v", CacheKind.ENRICHMENT, {}, ttl=1000)
        clock.advance(seconds=11)

        stats = await any_cache.stats()

        assert stats.total == 3
        assert stats.expired == 1
        assert stats.by_kind == {"metadata": 2, "enrichment": 1}
        assert stats.to_dict()["by_kind"]["metadata"] == 2


class TestFailOpen:
    """Backend errors never escape the cache service."""

    @pytest.fixture
    def broken_cache(self, settings, clock) -> CacheService:
        # Database that was never started: every session raises
        return CacheService(settings, Database(settings), clock=clock)

    async def test_get_is_a_miss(self, broken_cache):
        assert broken_cache.backend == "sqlite"
        assert await broken_cache.get("files:x") is None

    async def test_writes_fail_silently(self, broken_cache):
        assert await broken_cache.set("files:x", CacheKind.METADATA, []) is False
        assert await broken_cache.delete("files:x") is False
        assert await broken_cache.invalidate_prefix("files:") == 0
        assert await broken_cache.cleanup_expired() == 0

    async def test_stats_are_empty(self, broken_cache):
        stats = await broken_cache.stats()
        assert (stats.total, stats.expired, stats.by_kind) == (0, 0, {})


class TestPrefixUpperBound:

    def test_bumps_last_character(self):
        assert prefix_upper_bound("enrichment:") == "enrichment;"

    def test_skips_surrogates(self):
        assert prefix_upper_bound("a\ud7ff") == "a\ue000"

    def test_no_bound_for_empty_or_max_prefix(self):
        assert prefix_upper_bound("") is None
        assert prefix_upper_bound("\U0010FFFF") is None
        assert prefix_upper_bound("a\U0010FFFF") == "b"
