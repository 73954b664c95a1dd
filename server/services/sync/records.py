"""Durable per-owner store of file metadata records.

This is the cache the rest of the application reads from. Reads fail open
(an empty list means "nothing cached yet", which makes the reconciler treat
every remote file as new). Batch writes are a single transaction and raise
PersistenceError so the orchestrator can fail just that owner.
"""

from datetime import timedelta
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlmodel import select

from core.clock import Clock, utc_now
from core.database import Database
from core.logging import get_logger
from models.database import FileMetadataRecord
from .exceptions import PersistenceError

logger = get_logger(__name__)


class MetadataRecordStore:
    """FileMetadataRecord persistence on top of the shared async Database."""

    def __init__(self, database: Database, clock: Clock = utc_now):
        self.database = database
        self.clock = clock

    async def list(self, owner_id: str) -> List[FileMetadataRecord]:
        """All records for an owner, newest remote version first."""
        try:
            async with self.database.get_session() as session:
                stmt = (
                    select(FileMetadataRecord)
                    .where(FileMetadataRecord.owner_id == owner_id)
                    .order_by(FileMetadataRecord.remote_version.desc())
                )
                result = await session.execute(stmt)
                return list(result.scalars().all())

        except Exception as e:
            logger.error("Failed to list file metadata", owner_id=owner_id, error=str(e))
            return []

    async def get(self, file_id: str) -> Optional[FileMetadataRecord]:
        try:
            async with self.database.get_session() as session:
                return await session.get(FileMetadataRecord, file_id)

        except Exception as e:
            logger.error("Failed to get file metadata", file_id=file_id, error=str(e))
            return None

    async def write_batch(self, records: Iterable[FileMetadataRecord]) -> int:
        """Persist records atomically: either every record is written or none is.

        Every written record is stamped with ``updated_at = now``.
        Returns the number of records written.
        """
        records = list(records)
        if not records:
            return 0

        owner_ids = {r.owner_id for r in records}
        owner_id = next(iter(owner_ids)) if len(owner_ids) == 1 else None
        now = self.clock()

        try:
            async with self.database.get_session() as session:
                async with session.begin():
                    for record in records:
                        record.updated_at = now
                        await session.merge(record)

        except Exception as e:
            logger.error("File metadata batch write failed",
                         owner_id=owner_id, count=len(records), error=str(e))
            raise PersistenceError(owner_id, len(records), str(e)) from e

        logger.debug("Wrote file metadata batch", owner_id=owner_id, count=len(records))
        return len(records)

    async def is_fresh(self, owner_id: str, max_age_hours: float) -> bool:
        """True iff the owner's most recently updated record is younger than max_age_hours."""
        try:
            async with self.database.get_session() as session:
                latest = await session.scalar(
                    select(func.max(FileMetadataRecord.updated_at))
                    .where(FileMetadataRecord.owner_id == owner_id)
                )

        except Exception as e:
            logger.error("Failed to check file metadata freshness", owner_id=owner_id, error=str(e))
            return False

        if latest is None:
            return False

        return self.clock() - latest < timedelta(hours=max_age_hours)

    async def count(self, owner_id: Optional[str] = None) -> int:
        try:
            async with self.database.get_session() as session:
                stmt = select(func.count()).select_from(FileMetadataRecord)
                if owner_id is not None:
                    stmt = stmt.where(FileMetadataRecord.owner_id == owner_id)
                return await session.scalar(stmt) or 0

        except Exception as e:
            logger.error("Failed to count file metadata", owner_id=owner_id, error=str(e))
            return 0
