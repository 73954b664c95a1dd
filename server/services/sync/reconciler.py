"""Diff a remote listing against cached records for one owner.

Change detection compares the remote last-modified version rather than a
content hash: unchanged files are never re-enriched, while any remote edit
advances the version and triggers recomputation of the derived fields.
Records whose file is missing from the listing are not touched.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from core.clock import Clock, ensure_utc, utc_now
from core.logging import get_logger
from models.database import FileMetadataRecord
from .enricher import CachedEnricher
from .models import EnrichmentResult, Owner, RemoteFile

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    records: List[FileMetadataRecord] = field(default_factory=list)
    updated: int = 0


def needs_update(remote_file: RemoteFile, existing: Optional[FileMetadataRecord]) -> bool:
    """New files and files whose remote version moved forward need enrichment."""
    if existing is None:
        return True
    return ensure_utc(remote_file.version) > ensure_utc(existing.remote_version)


class Reconciler:
    """Produce the record set to write back for an owner."""

    def __init__(self, enricher: CachedEnricher, clock: Clock = utc_now):
        self.enricher = enricher
        self.clock = clock

    async def reconcile(self, owner: Owner, existing: List[FileMetadataRecord],
                        listing: List[RemoteFile], force: bool = False) -> ReconcileResult:
        """Keep unchanged records verbatim, rebuild new or changed ones.

        With ``force`` every listed file is re-enriched, bypassing the
        enrichment cache. An EnrichmentError aborts the whole owner.
        """
        by_id: Dict[str, FileMetadataRecord] = {record.id: record for record in existing}
        result = ReconcileResult()

        for remote_file in listing:
            current = by_id.get(remote_file.id)

            if not force and not needs_update(remote_file, current):
                result.records.append(current)
                continue

            enrichment = await self.enricher.enrich(owner.id, remote_file, bypass_cache=force)
            result.records.append(self._build_record(owner, remote_file, current, enrichment))
            result.updated += 1

        logger.debug("Reconciled owner", owner_id=owner.id, listed=len(listing),
                     cached=len(existing), updated=result.updated)
        return result

    def _build_record(self, owner: Owner, remote_file: RemoteFile,
                      current: Optional[FileMetadataRecord],
                      enrichment: EnrichmentResult) -> FileMetadataRecord:
        now = self.clock()
        version = ensure_utc(remote_file.version)
        # A forced re-analysis must not move the version backwards.
        if current is not None and ensure_utc(current.remote_version) > version:
            version = ensure_utc(current.remote_version)

        return FileMetadataRecord(
            id=remote_file.id,
            owner_id=owner.id,
            container_id=owner.container_id,
            display_name=remote_file.name,
            title=clean_title(remote_file.name),
            remote_version=version,
            size=remote_file.size or 0,
            mime_type=remote_file.mime_type,
            thumbnail_url=remote_file.thumbnail_url,
            download_url=remote_file.download_url,
            view_url=remote_file.view_url,
            enriched_at=now,
            created_at=current.created_at if current is not None else now,
            updated_at=now,
            **enrichment.derived_fields(),
        )


def clean_title(name: str) -> str:
    """File name without extension, underscores turned into spaces."""
    stem = name.rsplit(".", 1)[0] if "." in name else name
    return " ".join(stem.replace("_", " ").split())
