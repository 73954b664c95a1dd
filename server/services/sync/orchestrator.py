"""Full-population metadata sync.

State machine (Idle / Running) guarded twice:
- an in-process asyncio.Lock, checked and taken without suspending, so a
  second trigger in the same process returns before touching any store
- a compare-and-swap on sync_run_status.is_running, so another process
  sharing the database cannot start a concurrent run

Owners are processed in fixed-size batches with asyncio.gather and a
courtesy delay between batches. A failing owner contributes zero and never
aborts the batch or the run. Per-owner locks keep force_sync from racing
the full run on the same owner.
"""

import asyncio
import time
from typing import Dict, List, Optional

import structlog

from core.cache import CacheService
from core.clock import Clock, utc_now
from core.config import Settings
from core.database import Database
from core.logging import get_logger, log_execution_time, log_owner_sync
from models.database import FileMetadataRecord
from .exceptions import ConcurrencyViolation, OwnerNotFoundError
from .freshness import FreshnessPolicy
from .models import (
    Owner,
    OwnerDirectory,
    OwnerSyncResult,
    RemoteListingClient,
    SyncRunSummary,
)
from .reconciler import Reconciler
from .records import MetadataRecordStore

logger = get_logger(__name__)


class SyncOrchestrator:
    """Drives full syncs and on-demand owner refreshes."""

    def __init__(self, settings: Settings, database: Database, cache: CacheService,
                 records: MetadataRecordStore, freshness: FreshnessPolicy,
                 reconciler: Reconciler, listing: RemoteListingClient,
                 directory: OwnerDirectory, clock: Clock = utc_now):
        self.settings = settings
        self.database = database
        self.cache = cache
        self.records = records
        self.freshness = freshness
        self.reconciler = reconciler
        self.listing = listing
        self.directory = directory
        self.clock = clock

        self.batch_size = settings.sync_batch_size
        self.batch_delay = settings.sync_batch_delay_seconds
        self.stale_after = settings.sync_stale_run_seconds

        self._run_lock = asyncio.Lock()
        self._owner_locks: Dict[str, asyncio.Lock] = {}

    def is_running(self) -> bool:
        return self._run_lock.locked()

    # =========================================================================
    # FULL RUNS
    # =========================================================================

    async def run_full_sync(self) -> SyncRunSummary:
        """Sync every owner. Returns immediately (skipped) if a run is in progress."""
        return await self._run_exclusive("full_sync", reanalyze=False)

    async def reanalyze_all(self) -> SyncRunSummary:
        """Re-enrich every file of every owner, ignoring freshness and the enrichment cache."""
        return await self._run_exclusive("reanalyze_all", reanalyze=True)

    async def _run_exclusive(self, operation: str, reanalyze: bool) -> SyncRunSummary:
        # locked() and the uncontended acquire below happen without yielding
        # to the event loop, which makes this a test-and-set.
        if self._run_lock.locked():
            logger.info("Sync already running, skipping", operation=operation)
            return SyncRunSummary(skipped=True)

        async with self._run_lock:
            started_at = self.clock()
            if not await self.database.try_acquire_sync_run(started_at, self.stale_after):
                logger.info("Sync already running in another process, skipping",
                            operation=operation)
                return SyncRunSummary(skipped=True)

            summary = SyncRunSummary(started_at=started_at)
            completed = False
            start_time = time.time()

            try:
                with structlog.contextvars.bound_contextvars(
                    sync_operation=operation, sync_started_at=started_at.isoformat()
                ):
                    logger.info("Starting sync run")
                    await self._run_batches(summary, reanalyze)
                completed = True
            except Exception as e:
                logger.error("Sync run failed", operation=operation, error=str(e),
                             error_type=type(e).__name__)
            finally:
                summary.finished_at = self.clock()
                released = await self.database.release_sync_run(
                    started_at,
                    finished_at=summary.finished_at if completed else None,
                    counters={
                        "total_files": summary.total_files,
                        "updated_files": summary.updated_files,
                        "failed_owners": summary.failed_owners,
                    } if completed else None,
                )

            if not released:
                raise ConcurrencyViolation(
                    f"Sync run token started at {started_at.isoformat()} was taken over before release"
                )

            log_execution_time(logger, operation, start_time, time.time(),
                               owners=summary.owners_total,
                               owners_fresh=summary.owners_fresh,
                               failed_owners=summary.failed_owners,
                               total_files=summary.total_files,
                               updated_files=summary.updated_files)
            return summary

    async def _run_batches(self, summary: SyncRunSummary, reanalyze: bool) -> None:
        await self.cache.cleanup_expired()

        owners = await self.directory.list_owners()
        summary.owners_total = len(owners)
        logger.info("Owners to sync", count=len(owners))

        for start in range(0, len(owners), self.batch_size):
            batch = owners[start:start + self.batch_size]
            results = await asyncio.gather(
                *(self._sync_owner_isolated(owner, reanalyze) for owner in batch)
            )

            for result in results:
                if result is None:
                    summary.failed_owners += 1
                    continue
                if result.skipped:
                    summary.owners_fresh += 1
                else:
                    summary.owners_synced += 1
                summary.total_files += result.files_seen
                summary.updated_files += result.files_updated

            if start + self.batch_size < len(owners):
                await asyncio.sleep(self.batch_delay)

    async def _sync_owner_isolated(self, owner: Owner, reanalyze: bool) -> Optional[OwnerSyncResult]:
        """sync_owner with every failure logged and turned into None."""
        try:
            result = await self.sync_owner(owner, force=reanalyze, reanalyze=reanalyze)
            log_owner_sync(logger, owner.id, result.files_seen, result.files_updated,
                           skipped=result.skipped, owner_name=owner.display_name)
            return result
        except Exception as e:
            logger.error("Owner sync failed", owner_id=owner.id, owner_name=owner.display_name,
                         error=str(e), error_type=type(e).__name__)
            return None

    # =========================================================================
    # SINGLE OWNER
    # =========================================================================

    async def sync_owner(self, owner: Owner, force: bool = False,
                         reanalyze: bool = False) -> OwnerSyncResult:
        """Freshness gate, remote listing, reconcile, atomic write for one owner.

        Raises ListingError, EnrichmentError or PersistenceError.
        """
        lock = self._owner_locks.setdefault(owner.id, asyncio.Lock())
        async with lock:
            if await self.freshness.should_skip(owner.id, force=force or reanalyze):
                return OwnerSyncResult(skipped=True)

            listing = await self.listing.list_files(owner.container_id)
            existing = await self.records.list(owner.id)
            result = await self.reconciler.reconcile(owner, existing, listing, force=reanalyze)
            await self.records.write_batch(result.records)

            return OwnerSyncResult(files_seen=len(listing), files_updated=result.updated)

    async def force_sync(self, owner_id: str) -> OwnerSyncResult:
        """Refresh one owner now, ignoring the freshness window. Errors propagate."""
        owner = await self._resolve_owner(owner_id)
        logger.info("Force syncing owner", owner_id=owner.id, owner_name=owner.display_name)
        result = await self.sync_owner(owner, force=True)
        log_owner_sync(logger, owner.id, result.files_seen, result.files_updated,
                       owner_name=owner.display_name)
        return result

    async def force_reanalyze(self, owner_id: str) -> OwnerSyncResult:
        """Re-enrich every file of one owner, bypassing freshness and the enrichment cache."""
        owner = await self._resolve_owner(owner_id)
        logger.info("Force re-analyzing owner", owner_id=owner.id, owner_name=owner.display_name)
        return await self.sync_owner(owner, force=True, reanalyze=True)

    async def refresh_owners(self) -> List[Owner]:
        """Rediscover owners, bypassing the cached owner list."""
        await self.directory.invalidate()
        owners = await self.directory.list_owners()
        logger.info("Owner list refreshed", count=len(owners))
        return owners

    async def _resolve_owner(self, owner_id: str) -> Owner:
        # A folder added since the owner list was cached is found after one refresh
        for owner in await self.directory.list_owners():
            if owner.id == owner_id:
                return owner
        for owner in await self.refresh_owners():
            if owner.id == owner_id:
                return owner
        raise OwnerNotFoundError(owner_id)

    # =========================================================================
    # READ PATHS
    # =========================================================================

    async def get_cached_records(self, owner_id: str) -> List[FileMetadataRecord]:
        return await self.records.list(owner_id)

    async def get_sync_status(self) -> Dict[str, object]:
        """Last completed full sync and whether a run is in progress."""
        try:
            status = await self.database.get_sync_status()
        except Exception as e:
            logger.error("Failed to get sync status", error=str(e))
            return {
                "last_full_sync_at": None,
                "is_running": self.is_running(),
                "version": "1.0",
            }

        data = status.to_dict()
        data["is_running"] = self.is_running() or status.is_running
        return data
