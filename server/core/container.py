"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.database import Database
from core.cache import CacheService
from core.cleanup import CleanupService
from services.drive import DriveClient, DriveListingClient, DriveOwnerDirectory
from services.enrichment import OpenAIEnrichmentClient
from services.sync.enricher import CachedEnricher
from services.sync.freshness import FreshnessPolicy
from services.sync.orchestrator import SyncOrchestrator
from services.sync.reconciler import Reconciler
from services.sync.records import MetadataRecordStore


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Database (also backs the SQLite cache)
    database = providers.Singleton(
        Database,
        settings=settings
    )

    # TTL cache (SQLite table or in-process dict)
    cache = providers.Singleton(
        CacheService,
        settings=settings,
        database=database
    )

    cleanup_service = providers.Singleton(
        CleanupService,
        cache=cache,
        settings=settings
    )

    # Remote collaborators
    drive_client = providers.Singleton(
        DriveClient,
        settings=settings
    )

    listing_client = providers.Singleton(
        DriveListingClient,
        client=drive_client
    )

    owner_directory = providers.Singleton(
        DriveOwnerDirectory,
        client=drive_client,
        cache=cache,
        settings=settings
    )

    enrichment_client = providers.Singleton(
        OpenAIEnrichmentClient,
        settings=settings
    )

    # Sync engine
    enricher = providers.Singleton(
        CachedEnricher,
        client=enrichment_client,
        cache=cache,
        ttl=settings.provided.enrichment_cache_ttl
    )

    records = providers.Singleton(
        MetadataRecordStore,
        database=database
    )

    freshness = providers.Singleton(
        FreshnessPolicy,
        records=records,
        window_hours=settings.provided.sync_freshness_hours
    )

    reconciler = providers.Singleton(
        Reconciler,
        enricher=enricher
    )

    sync_orchestrator = providers.Singleton(
        SyncOrchestrator,
        settings=settings,
        database=database,
        cache=cache,
        records=records,
        freshness=freshness,
        reconciler=reconciler,
        listing=listing_client,
        directory=owner_directory
    )


# Global container instance
container = Container()
