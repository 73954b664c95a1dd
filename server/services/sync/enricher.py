"""TTL-cached wrapper around the enrichment client.

Key schema:
    enrichment:{owner_id}:{file_id}:{version}  -> EnrichmentResult dict

Including the remote version in the key means an edited file always misses,
while re-enriching an unchanged file is free until the entry expires.
``invalidate_all`` drops every stored analysis with a single prefix delete.
"""

from core.cache import CacheService
from core.logging import get_logger
from models.cache import CacheKind
from .models import EnrichmentClient, EnrichmentResult, RemoteFile

logger = get_logger(__name__)

ENRICHMENT_PREFIX = "enrichment:"


def enrichment_key(owner_id: str, remote_file: RemoteFile) -> str:
    version = remote_file.version.strftime("%Y%m%dT%H%M%S.%f")
    return f"{ENRICHMENT_PREFIX}{owner_id}:{remote_file.id}:{version}"


class CachedEnricher:
    """Enrich files through the cache; only model results are cached."""

    def __init__(self, client: EnrichmentClient, cache: CacheService, ttl: int):
        self.client = client
        self.cache = cache
        self.ttl = ttl

    async def enrich(self, owner_id: str, remote_file: RemoteFile,
                     bypass_cache: bool = False) -> EnrichmentResult:
        """Derived metadata for a file. Raises EnrichmentError from the client."""
        key = enrichment_key(owner_id, remote_file)

        if not bypass_cache:
            cached = await self.cache.get(key)
            if cached:
                logger.debug("Using cached enrichment", owner_id=owner_id, file_id=remote_file.id)
                return EnrichmentResult.from_dict(cached)
        else:
            logger.info("Re-analyzing file (ignoring cache)", owner_id=owner_id,
                        file_name=remote_file.name)

        result = await self.client.analyze(remote_file.name)

        if result.source == "model":
            await self.cache.set(
                key,
                CacheKind.ENRICHMENT,
                result.to_dict(),
                ttl=self.ttl,
                owner_id=owner_id,
                scope_id=remote_file.id,
                source_version=remote_file.version.isoformat(),
            )
        return result

    async def invalidate_all(self) -> int:
        return await self.cache.invalidate_prefix(ENRICHMENT_PREFIX)
