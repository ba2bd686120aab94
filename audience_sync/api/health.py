"""
Health check and status endpoints
"""
from fastapi import APIRouter
from audience_sync.config import get_settings
from audience_sync.utils.dates import utc_now
from audience_sync import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "features": {
            "llm_enrichment": settings.enable_llm_enrichment and bool(settings.anthropic_api_key),
            "metafield_write_back": settings.write_back_to_shopify,
            "gender_tags": settings.sync_gender_to_tags,
            "scheduler": settings.enable_scheduler,
        },
        "timestamp": utc_now().isoformat()
    }
