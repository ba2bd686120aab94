"""
Sync status and admin endpoints
"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from audience_sync.api.dependencies import get_sync_service, get_enrichment_service
from audience_sync.models.base import get_db
from audience_sync.schemas import SyncRequest
from audience_sync.services.customer_store import CustomerStore
from audience_sync.utils.dates import parse_datetime
from audience_sync.utils.logger import log

router = APIRouter(prefix="/api", tags=["sync"])


async def _run_customer_sync(service, start_date: Optional[str]):
    """Background task: incremental customer sync"""
    try:
        summary = await service.sync_customers(incremental=True, start_date=start_date)
        log.info(f"Background customer sync finished: {summary.to_dict()}")
    except Exception as e:
        log.error(f"Background sync failed: {str(e)}")


@router.get("/sync/status")
async def get_sync_status(service=Depends(get_sync_service)):
    """Last completed sync, whether one is running, and the customer count"""
    try:
        return service.get_sync_status()
    except Exception as e:
        log.error(f"Error fetching sync status: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch sync status")


@router.post("/admin/sync/customers")
async def trigger_customer_sync(
    background_tasks: BackgroundTasks,
    payload: Optional[SyncRequest] = Body(None),
    service=Depends(get_sync_service),
):
    """
    Start an incremental customer sync in the background.
    Poll GET /api/sync/status for progress.
    """
    if service.state.is_running:
        raise HTTPException(status_code=409, detail="Sync already in progress")

    start_date = payload.start_date if payload else None
    if start_date and parse_datetime(start_date) is None:
        raise HTTPException(status_code=400, detail="Invalid start_date provided")

    background_tasks.add_task(_run_customer_sync, service, start_date)
    return {"message": "Sync started", "status": "running"}


@router.post("/admin/enrich")
async def run_enrichment(service=Depends(get_enrichment_service)):
    """Enrich every pending customer now"""
    try:
        enriched = await service.enrich_all_pending_customers(batch_size=50)
        return {"message": "Enrichment completed", "enriched_count": enriched}
    except Exception as e:
        log.error(f"Error running enrichment: {str(e)}")
        raise HTTPException(status_code=500, detail="Enrichment failed")


@router.post("/admin/enrich/reset")
async def reset_enrichment(db: Session = Depends(get_db)):
    """Mark every customer pending so the next sweep re-infers them"""
    try:
        count = CustomerStore(db).reset_all_enrichments()
        return {"message": "Enrichment statuses reset", "customers_marked_pending": count}
    except Exception as e:
        log.error(f"Error resetting enrichment: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to reset enrichment statuses")


@router.post("/admin/sync/gender-tags")
async def sync_gender_tags(service=Depends(get_sync_service)):
    """Push gender:<value> tags to Shopify for every male/female customer"""
    try:
        updated = await service.sync_gender_tags_to_shopify()
        return {"message": "Gender tags synced", "updated_count": updated}
    except Exception as e:
        log.error(f"Error syncing gender tags: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to sync gender tags")
