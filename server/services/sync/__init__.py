"""Metadata sync engine package.

Keeps the per-owner file metadata cache in step with the remote store:
- freshness gate before any remote I/O
- version-based change detection, so unchanged files are never re-enriched
- TTL-cached enrichment keyed by file version
- atomic per-owner batch writes
- single-flight full runs in bounded-concurrency batches with asyncio.gather
"""

from .models import (
    Owner,
    RemoteFile,
    EnrichmentResult,
    OwnerSyncResult,
    SyncRunSummary,
    RemoteListingClient,
    EnrichmentClient,
    OwnerDirectory,
)
from .exceptions import (
    SyncError,
    ListingError,
    EnrichmentError,
    PersistenceError,
    ConfigurationError,
    ConcurrencyViolation,
    OwnerNotFoundError,
)
from .records import MetadataRecordStore
from .freshness import FreshnessPolicy
from .enricher import CachedEnricher, enrichment_key, ENRICHMENT_PREFIX
from .reconciler import Reconciler, ReconcileResult, needs_update, clean_title
from .orchestrator import SyncOrchestrator

__all__ = [
    # Models
    "Owner",
    "RemoteFile",
    "EnrichmentResult",
    "OwnerSyncResult",
    "SyncRunSummary",
    "RemoteListingClient",
    "EnrichmentClient",
    "OwnerDirectory",
    # Exceptions
    "SyncError",
    "ListingError",
    "EnrichmentError",
    "PersistenceError",
    "ConfigurationError",
    "ConcurrencyViolation",
    "OwnerNotFoundError",
    # Stores and policies
    "MetadataRecordStore",
    "FreshnessPolicy",
    # Enrichment cache
    "CachedEnricher",
    "enrichment_key",
    "ENRICHMENT_PREFIX",
    # Reconciliation
    "Reconciler",
    "ReconcileResult",
    "needs_update",
    "clean_title",
    # Orchestration
    "SyncOrchestrator",
]
