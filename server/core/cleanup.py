"""Periodic cache cleanup for the long-running server.

Follows the RecoverySweeper background-loop pattern.
All configuration from Settings (environment variables).
"""
import asyncio
import gc
from typing import Optional, TYPE_CHECKING

from core.logging import get_logger

if TYPE_CHECKING:
    from core.config import Settings
    from core.cache import CacheService

logger = get_logger(__name__)

# Upper bound on cleanup batches per tick so a huge backlog cannot hog the loop
MAX_BATCHES_PER_TICK = 20


class CleanupService:
    """Background sweep of expired TTL cache entries.

    Each tick deletes expired entries in batches of CLEANUP_BATCH_LIMIT until
    a batch comes back short, then forces garbage collection.
    """

    def __init__(
        self,
        cache: "CacheService",
        settings: "Settings"
    ):
        self.cache = cache
        self.settings = settings
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the cleanup service background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            "Cleanup service started",
            interval=self.settings.cleanup_interval,
            batch_limit=self.settings.cleanup_batch_limit
        )

    async def stop(self) -> None:
        """Stop the cleanup service gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Cleanup service stopped")

    async def _cleanup_loop(self) -> None:
        """Main cleanup loop - runs at configured interval."""
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Cleanup failed", error=str(e))
            await asyncio.sleep(self.settings.cleanup_interval)

    async def run_once(self) -> dict:
        """Run one sweep and return what was removed."""
        limit = self.settings.cleanup_batch_limit
        removed = 0
        batches = 0

        while batches < MAX_BATCHES_PER_TICK:
            deleted = await self.cache.cleanup_expired(batch_limit=limit)
            removed += deleted
            batches += 1
            if deleted < limit:
                break

        gc.collect()

        # Only log if something was cleaned up
        if removed > 0:
            logger.info("Cleanup completed", expired_cache=removed, batches=batches)
        return {"expired_cache": removed, "batches": batches}
