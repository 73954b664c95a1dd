"""Sync engine exception hierarchy."""

from typing import Optional


class SyncError(Exception):
    """Base exception for all sync-engine errors."""


class ListingError(SyncError):
    """Remote enumeration (owners or files) failed."""

    def __init__(self, container_id: Optional[str], message: str):
        self.container_id = container_id
        target = f"[{container_id}] " if container_id else ""
        super().__init__(f"{target}{message}")


class EnrichmentError(SyncError):
    """Derived-metadata computation failed for a file."""

    def __init__(self, file_name: str, message: str):
        self.file_name = file_name
        super().__init__(f"Enrichment failed for {file_name!r}: {message}")


class PersistenceError(SyncError):
    """A batch write to the metadata store failed and was rolled back."""

    def __init__(self, owner_id: Optional[str], record_count: int, message: str):
        self.owner_id = owner_id
        self.record_count = record_count
        super().__init__(f"Failed to write {record_count} records for {owner_id}: {message}")


class ConfigurationError(SyncError):
    """Missing credentials or endpoint. Fatal at startup."""


class ConcurrencyViolation(SyncError):
    """An internal concurrency invariant was broken (e.g. run token lost)."""


class OwnerNotFoundError(SyncError):
    """The requested owner is not known to the owner directory."""

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(f"Owner not found: {owner_id}")
