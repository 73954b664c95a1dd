"""Async database service with SQLModel and SQLAlchemy 2.0."""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from sqlmodel import SQLModel, select
from sqlalchemy import func, delete, update, or_
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from contextlib import asynccontextmanager

from core.config import Settings
from models.cache import CacheEntry, prefix_upper_bound
from models.database import FileMetadataRecord, SyncRunStatus  # noqa: F401  (table registration)
from core.logging import get_logger

logger = get_logger(__name__)

SYNC_STATUS_ID = 1


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None

    async def startup(self):
        """Initialize database connection and create tables."""
        try:
            engine_kwargs: Dict[str, Any] = {
                "echo": self.settings.database_echo,
                "future": True,
            }
            if ":memory:" in self.settings.database_url:
                # One shared connection, otherwise every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool
                engine_kwargs["connect_args"] = {"check_same_thread": False}
            else:
                engine_kwargs["pool_size"] = self.settings.database_pool_size
                engine_kwargs["max_overflow"] = self.settings.database_max_overflow

            self.engine = create_async_engine(self.settings.database_url, **engine_kwargs)

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            logger.info("Database initialized successfully", url=self.settings.database_url)

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    # ============================================================================
    # Cache Entries
    # ============================================================================
    # These raise on I/O errors; CacheService decides how failures degrade.

    async def get_cache_entry(self, key: str, now: float) -> Optional[CacheEntry]:
        """Get cache entry by key. Expired entries are deleted and reported as missing."""
        async with self.get_session() as session:
            entry = await session.get(CacheEntry, key)

            if not entry:
                return None

            if entry.is_expired(now):
                await session.delete(entry)
                await session.commit()
                return None

            return entry

    async def set_cache_entry(self, entry: CacheEntry) -> None:
        """Insert or replace a cache entry."""
        async with self.get_session() as session:
            await session.merge(entry)
            await session.commit()

    async def delete_cache_entry(self, key: str) -> bool:
        """Delete cache entry by key."""
        async with self.get_session() as session:
            result = await session.execute(
                delete(CacheEntry)
                .where(CacheEntry.key == key)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_cache_range(self, prefix: str) -> int:
        """Delete every entry whose key sorts in [prefix, prefix_upper_bound(prefix))."""
        async with self.get_session() as session:
            stmt = delete(CacheEntry).where(CacheEntry.key >= prefix)
            upper = prefix_upper_bound(prefix)
            if upper is not None:
                stmt = stmt.where(CacheEntry.key < upper)
            stmt = stmt.execution_options(synchronize_session=False)
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    async def cleanup_expired_cache(self, now: float, batch_limit: int) -> int:
        """Remove up to batch_limit expired cache entries. Returns count deleted."""
        async with self.get_session() as session:
            expired_keys = (
                select(CacheEntry.key)
                .where(CacheEntry.expires_at < now)
                .limit(batch_limit)
            )
            result = await session.execute(
                delete(CacheEntry)
                .where(CacheEntry.key.in_(expired_keys))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount or 0

    async def get_cache_stats(self, now: float) -> Dict[str, Any]:
        """Count cache entries in total, expired, and per kind."""
        async with self.get_session() as session:
            total = await session.scalar(select(func.count()).select_from(CacheEntry))
            expired = await session.scalar(
                select(func.count()).select_from(CacheEntry).where(CacheEntry.expires_at < now)
            )
            rows = await session.execute(
                select(CacheEntry.kind, func.count()).group_by(CacheEntry.kind)
            )
            return {
                "total": total or 0,
                "expired": expired or 0,
                "by_kind": {kind: count for kind, count in rows.all()},
            }

    # ============================================================================
    # Sync Run Status
    # ============================================================================

    async def get_sync_status(self) -> SyncRunStatus:
        """Get the sync status row, creating it on first access."""
        async with self.get_session() as session:
            status = await session.get(SyncRunStatus, SYNC_STATUS_ID)
            if status is None:
                status = SyncRunStatus(id=SYNC_STATUS_ID)
                session.add(status)
                await session.commit()
            return status

    async def try_acquire_sync_run(self, now: datetime, stale_after_seconds: int) -> bool:
        """Compare-and-swap is_running from false to true.

        A run whose start is older than stale_after_seconds is treated as
        abandoned (crashed process) and can be taken over.
        """
        await self.get_sync_status()
        cutoff = now - timedelta(seconds=stale_after_seconds)
        async with self.get_session() as session:
            stmt = (
                update(SyncRunStatus)
                .where(SyncRunStatus.id == SYNC_STATUS_ID)
                .where(
                    or_(
                        SyncRunStatus.is_running.is_(False),
                        SyncRunStatus.run_started_at.is_(None),
                        SyncRunStatus.run_started_at < cutoff,
                    )
                )
                .values(is_running=True, run_started_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def release_sync_run(self, started_at: datetime, finished_at: Optional[datetime] = None,
                               counters: Optional[Dict[str, int]] = None) -> bool:
        """Clear is_running for the run that started at started_at.

        Returns False when the token is no longer held by that run.
        """
        values: Dict[str, Any] = {"is_running": False}
        if finished_at is not None:
            values["last_full_sync_at"] = finished_at
        if counters:
            values["last_total_files"] = counters.get("total_files", 0)
            values["last_updated_files"] = counters.get("updated_files", 0)
            values["last_failed_owners"] = counters.get("failed_owners", 0)

        async with self.get_session() as session:
            stmt = (
                update(SyncRunStatus)
                .where(SyncRunStatus.id == SYNC_STATUS_ID)
                .where(SyncRunStatus.is_running.is_(True))
                .where(SyncRunStatus.run_started_at == started_at)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1
