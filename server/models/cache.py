"""SQLite-backed cache model for key-value storage with TTL.

Entries carry a kind plus optional owner/scope tags so the cache can be
inspected per kind and bulk-invalidated by key prefix.
"""

import sys
import time
from enum import Enum
from typing import Any, Optional
from sqlmodel import SQLModel, Field, Column, JSON


class CacheKind(str, Enum):
    """What a cache entry holds."""
    METADATA = "metadata"
    OWNERS = "owners"
    ENRICHMENT = "enrichment"


def prefix_upper_bound(prefix: str) -> Optional[str]:
    """Smallest key sorting after every key that starts with prefix.

    None means no upper bound (empty prefix, or only U+10FFFF characters).
    """
    stripped = prefix.rstrip(chr(sys.maxunicode))
    if not stripped:
        return None
    successor = ord(stripped[-1]) + 1
    if 0xD800 <= successor <= 0xDFFF:
        successor = 0xE000
    return stripped[:-1] + chr(successor)


class CacheEntry(SQLModel, table=True):
    """Generic key-value cache entry with expiration."""

    __tablename__ = "cache_entries"

    key: str = Field(primary_key=True, max_length=512)
    kind: str = Field(default=CacheKind.METADATA.value, max_length=50, index=True)
    payload: Any = Field(default=None, sa_column=Column(JSON))
    created_at: float = Field(default_factory=time.time)
    expires_at: float = Field(index=True)  # Unix timestamp
    owner_id: Optional[str] = Field(default=None, max_length=255, index=True)
    scope_id: Optional[str] = Field(default=None, max_length=255)
    source_version: Optional[str] = Field(default=None, max_length=64)

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at
