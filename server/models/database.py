"""SQLModel database models and tables."""

from datetime import datetime
from typing import Optional, Dict, Any, List
from sqlmodel import SQLModel, Field, Column, JSON
from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

from core.clock import ensure_utc, utc_now


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime column that always round-trips as UTC.

    SQLite stores datetimes without an offset; values read back are naive
    and get UTC attached here so comparisons against remote versions work.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            value = ensure_utc(value)
        return value

    def process_result_value(self, value, dialect):
        return ensure_utc(value)


# Fields written by the enrichment step. Everything else on a record comes
# from the remote listing or is local bookkeeping.
DERIVED_FIELDS = (
    "subject",
    "topic_group",
    "topic",
    "level",
    "school_year",
    "keywords",
    "summary",
    "summary_en",
    "topic_en",
    "keywords_en",
)


class FileMetadataRecord(SQLModel, table=True):
    """Cached metadata for one remote file.

    Identity is the remote file id. ``remote_version`` is the remote
    last-modified time and only ever moves forward.
    """

    __tablename__ = "file_metadata"

    id: str = Field(primary_key=True, max_length=255)
    owner_id: str = Field(index=True, max_length=255)
    container_id: str = Field(max_length=255)
    display_name: str = Field(max_length=1024)
    title: Optional[str] = Field(default=None, max_length=1024)
    remote_version: datetime = Field(sa_column=Column(UTCDateTime, nullable=False))
    size: int = Field(default=0)
    mime_type: Optional[str] = Field(default=None, max_length=255)
    thumbnail_url: Optional[str] = Field(default=None, max_length=2048)
    download_url: Optional[str] = Field(default=None, max_length=2048)
    view_url: Optional[str] = Field(default=None, max_length=2048)

    # Derived (enrichment) fields
    subject: Optional[str] = Field(default=None, max_length=100)
    topic_group: Optional[str] = Field(default=None, max_length=100)
    topic: Optional[str] = Field(default=None, max_length=255)
    level: Optional[str] = Field(default=None, max_length=100)
    school_year: Optional[str] = Field(default=None, max_length=20)
    keywords: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    summary: Optional[str] = Field(default=None, max_length=2000)
    summary_en: Optional[str] = Field(default=None, max_length=2000)
    topic_en: Optional[str] = Field(default=None, max_length=255)
    keywords_en: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    enriched_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime, nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime, nullable=False, index=True)
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        data = self.model_dump()
        for key in ("remote_version", "enriched_at", "created_at", "updated_at"):
            value = data.get(key)
            data[key] = value.isoformat() if value else None
        return data


class SyncRunStatus(SQLModel, table=True):
    """Single-row record of full-sync runs (id is always 1)."""

    __tablename__ = "sync_run_status"

    id: int = Field(default=1, primary_key=True)
    is_running: bool = Field(default=False)
    run_started_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))
    last_full_sync_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))
    last_total_files: int = Field(default=0)
    last_updated_files: int = Field(default=0)
    last_failed_owners: int = Field(default=0)
    version: str = Field(default="1.0", max_length=20)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "run_started_at": self.run_started_at.isoformat() if self.run_started_at else None,
            "last_full_sync_at": self.last_full_sync_at.isoformat() if self.last_full_sync_at else None,
            "last_total_files": self.last_total_files,
            "last_updated_files": self.last_updated_files,
            "last_failed_owners": self.last_failed_owners,
            "version": self.version,
        }
