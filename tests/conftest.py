"""Shared fixtures: temp-file SQLite database, pinned clock, fake collaborators."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

import pytest

from core.cache import CacheService
from core.config import Settings
from core.database import Database
from models.database import FileMetadataRecord
from services.sync.enricher import CachedEnricher
from services.sync.exceptions import EnrichmentError
from services.sync.freshness import FreshnessPolicy
from services.sync.models import EnrichmentResult, Owner, RemoteFile
from services.sync.orchestrator import SyncOrchestrator
from services.sync.reconciler import Reconciler
from services.sync.records import MetadataRecordStore

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
V1 = datetime(2024, 2, 1, 9, 0, tzinfo=timezone.utc)
V2 = datetime(2024, 2, 15, 9, 0, tzinfo=timezone.utc)


class MutableClock:
    """Clock callable whose current time only moves when a test says so."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeListing:
    """RemoteListingClient serving canned listings per container."""

    def __init__(self):
        self.files: Dict[str, List[RemoteFile]] = {}
        self.errors: Dict[str, Exception] = {}
        self.calls: List[str] = []

    async def list_files(self, container_id: str) -> List[RemoteFile]:
        self.calls.append(container_id)
        await asyncio.sleep(0)
        if container_id in self.errors:
            raise self.errors[container_id]
        return list(self.files.get(container_id, []))


class FakeEnrichment:
    """EnrichmentClient that records every file name it is asked about."""

    def __init__(self):
        self.calls: List[str] = []
        self.fail_on: set = set()
        self.delay: float = 0

    async def analyze(self, name: str) -> EnrichmentResult:
        self.calls.append(name)
        await asyncio.sleep(self.delay)
        if name in self.fail_on:
            raise EnrichmentError(name, "model unavailable")
        return EnrichmentResult(
            subject="wiskunde-a",
            topic_group="algebra-vergelijkingen",
            topic=f"topic of {name}",
            level="vo-havo-onderbouw",
            keywords=[name],
            summary=f"Samenvatting van {name}",
            summary_en=f"Summary of {name}",
        )


class FakeDirectory:
    def __init__(self, owners: Optional[List[Owner]] = None):
        self.owners: List[Owner] = list(owners or [])
        self.calls = 0
        self.error: Optional[Exception] = None
        self.hook: Optional[Callable[[], Awaitable[None]]] = None
        self.invalidations = 0
        # Owners that only show up once the cached list is invalidated
        self.discovered: List[Owner] = []

    async def list_owners(self) -> List[Owner]:
        self.calls += 1
        if self.hook is not None:
            await self.hook()
        if self.error is not None:
            raise self.error
        return list(self.owners)

    async def invalidate(self) -> bool:
        self.invalidations += 1
        self.owners.extend(self.discovered)
        self.discovered = []
        return True


def remote_file(file_id: str, version: datetime = V1, name: Optional[str] = None,
                size: int = 1024) -> RemoteFile:
    return RemoteFile(
        id=file_id,
        name=name or f"{file_id}.pdf",
        version=version,
        size=size,
        mime_type="application/pdf",
        view_url=f"https://drive.example/{file_id}",
    )


def make_record(owner: Owner, file_id: str, version: datetime = V1,
                updated_at: datetime = T0, created_at: Optional[datetime] = None,
                summary: str = "cached summary") -> FileMetadataRecord:
    return FileMetadataRecord(
        id=file_id,
        owner_id=owner.id,
        container_id=owner.container_id,
        display_name=f"{file_id}.pdf",
        title=file_id,
        remote_version=version,
        size=1024,
        subject="wiskunde-b",
        topic="cached topic",
        summary=summary,
        keywords=["cached"],
        enriched_at=created_at or updated_at,
        created_at=created_at or updated_at,
        updated_at=updated_at,
    )


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(T0)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'notes_cache.db'}",
        cache_backend="sqlite",
        cache_ttl=3600,
        sync_batch_size=2,
        sync_batch_delay_seconds=0.0,
        sync_freshness_hours=6.0,
        sync_stale_run_seconds=3600,
        cleanup_batch_limit=100,
        google_client_id=None,
        google_client_secret=None,
        google_refresh_token=None,
        drive_root_folder_id=None,
        openai_api_key=None,
        log_file=None,
    )


@pytest.fixture
async def database(settings):
    db = Database(settings)
    await db.startup()
    yield db
    await db.shutdown()


@pytest.fixture
def cache(settings, database, clock) -> CacheService:
    return CacheService(settings, database, clock=clock)


@pytest.fixture
def memory_cache(settings, clock) -> CacheService:
    return CacheService(settings.model_copy(update={"cache_backend": "memory"}), clock=clock)


@pytest.fixture
def records(database, clock) -> MetadataRecordStore:
    return MetadataRecordStore(database, clock=clock)


@pytest.fixture
def listing() -> FakeListing:
    return FakeListing()


@pytest.fixture
def enrichment() -> FakeEnrichment:
    return FakeEnrichment()


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def enricher(enrichment, cache, settings) -> CachedEnricher:
    return CachedEnricher(enrichment, cache, ttl=settings.enrichment_cache_ttl)


@pytest.fixture
def reconciler(enricher, clock) -> Reconciler:
    return Reconciler(enricher, clock=clock)


@pytest.fixture
def orchestrator(settings, database, cache, records, reconciler, listing,
                 directory, clock) -> SyncOrchestrator:
    freshness = FreshnessPolicy(records, window_hours=settings.sync_freshness_hours)
    return SyncOrchestrator(
        settings=settings,
        database=database,
        cache=cache,
        records=records,
        freshness=freshness,
        reconciler=reconciler,
        listing=listing,
        directory=directory,
        clock=clock,
    )
