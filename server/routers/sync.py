"""Metadata sync and cache maintenance routes."""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional

from core.cache import CacheService
from core.cleanup import CleanupService
from core.container import container
from core.logging import get_logger
from services.scheduler import FULL_SYNC_JOB_ID, get_job_info
from services.sync.enricher import ENRICHMENT_PREFIX, CachedEnricher
from services.sync.exceptions import OwnerNotFoundError, SyncError
from services.sync.orchestrator import SyncOrchestrator

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["sync"])

# Shorthand accepted by /cache/invalidate for "every stored AI analysis"
AI_ANALYSIS_PATTERN = "ai-analysis"


class InvalidateRequest(BaseModel):
    pattern: str


class CleanupRequest(BaseModel):
    batch_limit: Optional[int] = None


# ============================================================================
# Owners
# ============================================================================

@router.post("/owners/refresh")
async def refresh_owners(
    orchestrator: SyncOrchestrator = Depends(lambda: container.sync_orchestrator())
):
    """Rediscover owner folders now instead of waiting for the cached list to expire."""
    try:
        owners = await orchestrator.refresh_owners()
        return {"success": True, "count": len(owners), "owners": [o.to_dict() for o in owners]}
    except SyncError as e:
        logger.error("Owner refresh failed", error=str(e))
        return {"success": False, "error": str(e)}


@router.get("/owners/{owner_id}/files")
async def get_owner_files(
    owner_id: str,
    orchestrator: SyncOrchestrator = Depends(lambda: container.sync_orchestrator())
):
    """Cached file metadata for an owner, newest remote version first."""
    records = await orchestrator.get_cached_records(owner_id)
    return {
        "success": True,
        "owner_id": owner_id,
        "count": len(records),
        "files": [record.to_dict() for record in records],
    }


@router.post("/owners/{owner_id}/sync")
async def sync_owner(
    owner_id: str,
    orchestrator: SyncOrchestrator = Depends(lambda: container.sync_orchestrator())
):
    """Refresh one owner now, ignoring the freshness window."""
    try:
        result = await orchestrator.force_sync(owner_id)
        return {"success": True, "owner_id": owner_id, **result.to_dict()}
    except OwnerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SyncError as e:
        logger.error("Force sync failed", owner_id=owner_id, error=str(e))
        return {"success": False, "owner_id": owner_id, "error": str(e)}


@router.post("/owners/{owner_id}/reanalyze")
async def reanalyze_owner(
    owner_id: str,
    orchestrator: SyncOrchestrator = Depends(lambda: container.sync_orchestrator())
):
    """Re-enrich every file of one owner, bypassing the enrichment cache."""
    try:
        result = await orchestrator.force_reanalyze(owner_id)
        return {"success": True, "owner_id": owner_id, **result.to_dict()}
    except OwnerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SyncError as e:
        logger.error("Force reanalyze failed", owner_id=owner_id, error=str(e))
        return {"success": False, "owner_id": owner_id, "error": str(e)}


# ============================================================================
# Full Sync
# ============================================================================

@router.post("/sync/run")
async def run_full_sync(
    background_tasks: BackgroundTasks,
    reanalyze: bool = False,
    orchestrator: SyncOrchestrator = Depends(lambda: container.sync_orchestrator())
):
    """Start a full sync (or re-analyze-all) in the background."""
    if orchestrator.is_running():
        return {"success": False, "started": False, "error": "Sync already running"}

    task = orchestrator.reanalyze_all if reanalyze else orchestrator.run_full_sync
    background_tasks.add_task(task)
    return {"success": True, "started": True, "reanalyze": reanalyze}


@router.get("/sync/status")
async def get_sync_status(
    orchestrator: SyncOrchestrator = Depends(lambda: container.sync_orchestrator())
):
    status = await orchestrator.get_sync_status()
    return {"success": True, "status": status, "schedule": get_job_info(FULL_SYNC_JOB_ID)}


# ============================================================================
# Cache Maintenance
# ============================================================================

@router.get("/cache/stats")
async def get_cache_stats(
    cache: CacheService = Depends(lambda: container.cache())
):
    stats = await cache.stats()
    return {"success": True, "backend": cache.backend, "stats": stats.to_dict()}


@router.post("/cache/cleanup")
async def cleanup_cache(
    request: Optional[CleanupRequest] = None,
    cache: CacheService = Depends(lambda: container.cache()),
    cleanup: CleanupService = Depends(lambda: container.cleanup_service())
):
    """Delete expired cache entries (one batch, or a full sweep without batch_limit)."""
    if request is not None and request.batch_limit:
        deleted = await cache.cleanup_expired(batch_limit=request.batch_limit)
        return {"success": True, "deleted": deleted}

    result = await cleanup.run_once()
    return {"success": True, "deleted": result["expired_cache"]}


@router.post("/cache/invalidate")
async def invalidate_cache(
    request: InvalidateRequest,
    cache: CacheService = Depends(lambda: container.cache()),
    enricher: CachedEnricher = Depends(lambda: container.enricher())
):
    """Delete every cache entry whose key starts with the pattern."""
    pattern = request.pattern.strip()
    if not pattern:
        raise HTTPException(status_code=400, detail="Pattern is required")

    if pattern == AI_ANALYSIS_PATTERN:
        prefix = ENRICHMENT_PREFIX
        deleted = await enricher.invalidate_all()
    else:
        prefix = pattern
        deleted = await cache.invalidate_prefix(prefix)
    logger.info("Cache invalidated", prefix=prefix, deleted=deleted)
    return {"success": True, "prefix": prefix, "deleted": deleted}
