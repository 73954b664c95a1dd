"""Freshness gate consulted before any remote I/O for an owner."""

from core.logging import get_logger
from .records import MetadataRecordStore

logger = get_logger(__name__)


class FreshnessPolicy:
    """Skip owners whose cached metadata is younger than the freshness window."""

    def __init__(self, records: MetadataRecordStore, window_hours: float = 6.0):
        self.records = records
        self.window_hours = window_hours

    async def should_skip(self, owner_id: str, force: bool = False) -> bool:
        """True when the owner can be skipped entirely (no remote calls, no writes).

        ``force`` is the "refresh now" path and never skips.
        """
        if force:
            return False

        fresh = await self.records.is_fresh(owner_id, self.window_hours)
        if fresh:
            logger.debug("Owner metadata is fresh, skipping", owner_id=owner_id,
                         window_hours=self.window_hours)
        return fresh
