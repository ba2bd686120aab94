"""
Audience Sync
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from audience_sync.config import get_settings
from audience_sync.utils.logger import log
from audience_sync import __version__

from audience_sync.api import health, customers, stats, sync, webhooks

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    try:
        from audience_sync.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    from audience_sync.scheduler import start_scheduler, stop_scheduler
    try:
        start_scheduler()
    except Exception as e:
        log.error(f"Scheduler startup error: {str(e)}")

    yield

    try:
        stop_scheduler()
    except Exception as e:
        log.error(f"Scheduler shutdown error: {str(e)}")
    log.info("Shutting down application")


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Shopify customer mirror with AI gender enrichment

    - Incremental and full customer syncs from the Shopify Admin API
    - Gender inference with Claude, optional write-back as metafield / tag
    - Filtering, statistics and CSV / Interakt export for segmentation
    - customers/create and customers/update webhooks
    """,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(customers.router)
app.include_router(stats.router)
app.include_router(sync.router)
app.include_router(webhooks.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "audience_sync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
