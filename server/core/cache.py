"""TTL cache service with a SQLite (shared database) or in-memory backend.

Reads fail open: any backend error is logged and reported as a miss.
Writes, invalidation and cleanup fail silently: errors are logged and the
call returns False / 0. Cache availability wins over strict consistency.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, TYPE_CHECKING

from core.clock import Clock, utc_now
from core.config import Settings
from core.logging import get_logger, log_cache_operation
from models.cache import CacheEntry, CacheKind

if TYPE_CHECKING:
    from core.database import Database

logger = get_logger(__name__)


@dataclass
class CacheStats:
    total: int = 0
    expired: int = 0
    by_kind: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"total": self.total, "expired": self.expired, "by_kind": dict(self.by_kind)}


class CacheService:
    """Async key/value cache with expiry, prefix invalidation and bulk cleanup.

    Backend selection:
    - SQLite: when a Database is given and CACHE_BACKEND=sqlite (default)
    - Memory: CACHE_BACKEND=memory, or no Database available
    """

    def __init__(self, settings: Settings, database: Optional["Database"] = None,
                 clock: Clock = utc_now):
        self.settings = settings
        self.database = database
        self.clock = clock
        self.memory_cache: Dict[str, CacheEntry] = {}
        self.use_sqlite = settings.cache_backend == "sqlite" and database is not None

    async def startup(self):
        """Log the selected backend."""
        if self.use_sqlite:
            logger.info("Using SQLite cache")
        else:
            logger.info("Using in-memory cache", cache_backend=self.settings.cache_backend)

    async def shutdown(self):
        """Drop in-process entries."""
        self.memory_cache.clear()

    def _now(self) -> float:
        return self.clock().timestamp()

    @property
    def backend(self) -> str:
        return "sqlite" if self.use_sqlite else "memory"

    async def get(self, key: str) -> Optional[Any]:
        """Get a payload from the cache. Expired entries are deleted and count as a miss."""
        try:
            now = self._now()
            if self.use_sqlite:
                entry = await self.database.get_cache_entry(key, now)
            else:
                entry = self.memory_cache.get(key)
                if entry is not None and entry.is_expired(now):
                    del self.memory_cache[key]
                    entry = None

            log_cache_operation(logger, "get", key, hit=entry is not None)
            return entry.payload if entry is not None else None

        except Exception as e:
            logger.error("Cache get failed", key=key, error=str(e))
            return None

    async def set(self, key: str, kind: CacheKind, payload: Any, ttl: Optional[int] = None,
                  owner_id: Optional[str] = None, scope_id: Optional[str] = None,
                  source_version: Optional[str] = None) -> bool:
        """Upsert an entry expiring ttl seconds from now."""
        try:
            ttl = ttl if ttl is not None else self.settings.cache_ttl
            now = self._now()
            entry = CacheEntry(
                key=key,
                kind=CacheKind(kind).value,
                payload=payload,
                created_at=now,
                expires_at=now + ttl,
                owner_id=owner_id,
                scope_id=scope_id,
                source_version=source_version,
            )

            if self.use_sqlite:
                await self.database.set_cache_entry(entry)
            else:
                self.memory_cache[key] = entry

            log_cache_operation(logger, "set", key, ttl=ttl, kind=entry.kind)
            return True

        except Exception as e:
            logger.error("Cache set failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Delete a single entry."""
        try:
            if self.use_sqlite:
                deleted = await self.database.delete_cache_entry(key)
            else:
                deleted = self.memory_cache.pop(key, None) is not None
            log_cache_operation(logger, "delete", key, deleted=deleted)
            return deleted

        except Exception as e:
            logger.error("Cache delete failed", key=key, error=str(e))
            return False

    async def invalidate_prefix(self, prefix: str) -> int:
        """Delete every entry whose key starts with prefix (lexicographic range scan)."""
        try:
            if self.use_sqlite:
                deleted = await self.database.delete_cache_range(prefix)
            else:
                keys = [k for k in self.memory_cache if k.startswith(prefix)]
                for key in keys:
                    del self.memory_cache[key]
                deleted = len(keys)

            log_cache_operation(logger, "invalidate_prefix", prefix, deleted=deleted)
            if deleted:
                logger.info("Invalidated cache entries", prefix=prefix, count=deleted)
            return deleted

        except Exception as e:
            logger.error("Cache invalidate failed", prefix=prefix, error=str(e))
            return 0

    async def cleanup_expired(self, batch_limit: Optional[int] = None) -> int:
        """Delete up to batch_limit expired entries. Callers loop or schedule for more."""
        if batch_limit is None:
            batch_limit = self.settings.cleanup_batch_limit
        try:
            now = self._now()
            if self.use_sqlite:
                count = await self.database.cleanup_expired_cache(now, batch_limit)
            else:
                expired = [k for k, e in self.memory_cache.items() if e.expires_at < now]
                for key in expired[:batch_limit]:
                    del self.memory_cache[key]
                count = min(len(expired), batch_limit)

            if count > 0:
                logger.info("Cleaned up expired cache entries", count=count)
            return count

        except Exception as e:
            logger.error("Cache cleanup failed", error=str(e))
            return 0

    async def stats(self) -> CacheStats:
        """Entry counts for diagnostics."""
        try:
            now = self._now()
            if self.use_sqlite:
                return CacheStats(**await self.database.get_cache_stats(now))

            by_kind: Dict[str, int] = {}
            expired = 0
            for entry in self.memory_cache.values():
                by_kind[entry.kind] = by_kind.get(entry.kind, 0) + 1
                if entry.expires_at < now:
                    expired += 1
            return CacheStats(total=len(self.memory_cache), expired=expired, by_kind=by_kind)

        except Exception as e:
            logger.error("Cache stats failed", error=str(e))
            return CacheStats()
