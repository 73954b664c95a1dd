"""
FastAPI backend for the student-notes metadata cache.

Keeps per-student file metadata in step with Google Drive on a schedule
and serves it from the local cache.
"""

# Performance: Install uvloop if available (Linux/macOS only)
try:
    import uvloop
    uvloop.install()
except ImportError:
    pass  # Windows - uvloop not available, use default asyncio

import asyncio
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from core.container import container
from core.config import Settings
from core.logging import configure_logging, get_logger
from routers import sync

# Initialize settings and logging
settings = Settings()
configure_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info("Starting notes metadata cache")

    await container.database().startup()
    await container.cache().startup()

    # Fails fast with ConfigurationError when Drive credentials are missing
    from services.drive import build_credentials
    build_credentials(container.settings())

    orchestrator = container.sync_orchestrator()

    # Periodic full sync
    from services.scheduler import (
        FULL_SYNC_JOB_ID, register_full_sync, remove_cron_job, shutdown_scheduler, start_scheduler,
    )
    register_full_sync(orchestrator, settings.sync_cron)
    start_scheduler()

    cleanup_service = container.cleanup_service()
    await cleanup_service.start()

    startup_sync = None
    if settings.sync_on_startup:
        startup_sync = asyncio.create_task(orchestrator.run_full_sync())

    logger.info("Services started successfully",
                cache_backend=container.cache().backend,
                sync_cron=settings.sync_cron)
    yield

    # Shutdown
    if startup_sync is not None and not startup_sync.done():
        startup_sync.cancel()

    await cleanup_service.stop()
    remove_cron_job(FULL_SYNC_JOB_ID)
    shutdown_scheduler()  # Stop APScheduler
    await container.enrichment_client().close()
    await container.cache().shutdown()
    await container.database().shutdown()
    logger.info("Services shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Notes Metadata Cache",
    version="1.0.0",
    description="Metadata cache synchronization for the student-notes portal",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)

# Add exception handler middleware BEFORE CORS to catch all errors
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error("Unhandled exception", error_type=type(e).__name__,
                         error=str(e), path=request.url.path, exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": f"{type(e).__name__}: {str(e)}",
                    "detail": "Internal server error"
                }
            )

app.add_middleware(CatchAllExceptionsMiddleware)

# Add CORS middleware (must be AFTER exception middleware)
logger.info("Configuring CORS middleware",
           origins_count=len(settings.cors_origins),
           origins=settings.cors_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sync.router)


@app.get("/health")
async def health_check():
    """Detailed health check."""
    orchestrator = container.sync_orchestrator()

    return {
        "status": "OK",
        "service": "notes-metadata-cache",
        "version": "1.0.0",
        "environment": "development" if settings.debug else "production",
        "cache_backend": container.cache().backend,
        "drive_configured": settings.drive_configured,
        "enrichment": "openai" if settings.openai_api_key else "filename",
        "sync_running": orchestrator.is_running(),
        "timestamp": datetime.now().isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting notes metadata cache",
               host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["."] if settings.debug else None,
        reload_excludes=["*.pyc", "__pycache__", "*.log", "*.db"] if settings.debug else None,
    )
