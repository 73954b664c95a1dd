"""Value objects and collaborator protocols for the sync engine."""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from models.database import DERIVED_FIELDS


def split_keywords(value: Any) -> Any:
    """Normalize a keyword answer: None becomes [], "a, b" becomes ["a", "b"].

    Anything else is returned unchanged for the caller to validate.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


@dataclass(frozen=True)
class Owner:
    """An entity (a student) whose files live in one remote container."""
    id: str
    container_id: str
    display_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Owner":
        return cls(
            id=data["id"],
            container_id=data["container_id"],
            display_name=data.get("display_name", ""),
        )


@dataclass(frozen=True)
class RemoteFile:
    """One entry of a remote listing. ``version`` is the remote last-modified time."""
    id: str
    name: str
    version: datetime
    size: int = 0
    mime_type: Optional[str] = None
    thumbnail_url: Optional[str] = None
    download_url: Optional[str] = None
    view_url: Optional[str] = None


@dataclass
class EnrichmentResult:
    """Derived metadata for one file.

    ``source`` is "model" for results from the enrichment model and
    "filename" for the fallback computed from the file name alone.
    """
    subject: Optional[str] = None
    topic_group: Optional[str] = None
    topic: Optional[str] = None
    level: Optional[str] = None
    school_year: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    summary_en: Optional[str] = None
    topic_en: Optional[str] = None
    keywords_en: List[str] = field(default_factory=list)
    source: str = "model"

    def derived_fields(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in DERIVED_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnrichmentResult":
        """Build from a model answer or cached payload. Unknown keys are ignored.

        Accepts both snake_case and the camelCase keys the model is prompted with.
        """
        aliases = {
            "topicGroup": "topic_group",
            "schoolYear": "school_year",
            "summaryEn": "summary_en",
            "topicEn": "topic_en",
            "keywordsEn": "keywords_en",
        }
        normalized = {aliases.get(k, k): v for k, v in data.items()}
        kwargs = {name: normalized.get(name) for name in DERIVED_FIELDS}
        kwargs["keywords"] = list(split_keywords(kwargs.get("keywords")))
        kwargs["keywords_en"] = list(split_keywords(kwargs.get("keywords_en")))
        return cls(source=normalized.get("source", "model"), **kwargs)


@dataclass
class OwnerSyncResult:
    files_seen: int = 0
    files_updated: int = 0
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncRunSummary:
    """Outcome of one full-sync (or re-analyze-all) run."""
    skipped: bool = False
    owners_total: int = 0
    owners_synced: int = 0
    owners_fresh: int = 0
    failed_owners: int = 0
    total_files: int = 0
    updated_files: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


@runtime_checkable
class RemoteListingClient(Protocol):
    async def list_files(self, container_id: str) -> List[RemoteFile]:
        """List files in a container. Must be side-effect free. Raises ListingError."""
        ...


@runtime_checkable
class EnrichmentClient(Protocol):
    async def analyze(self, name: str) -> EnrichmentResult:
        """Compute derived metadata for a file name. Raises EnrichmentError."""
        ...


@runtime_checkable
class OwnerDirectory(Protocol):
    async def list_owners(self) -> List[Owner]:
        """Enumerate owners to sync. Raises ListingError."""
        ...

    async def invalidate(self) -> bool:
        """Drop any cached owner list so the next list_owners rediscovers."""
        ...
