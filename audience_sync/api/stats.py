"""
Summary statistics and export activity
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from audience_sync.models.base import get_db
from audience_sync.services.customer_store import CustomerStore
from audience_sync.utils.logger import log

router = APIRouter(prefix="/api", tags=["stats"])


@router.get("/stats/summary")
async def get_stats_summary(db: Session = Depends(get_db)):
    try:
        return CustomerStore(db).get_stats()
    except Exception as e:
        log.error(f"Error fetching stats: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch stats")


@router.get("/exports/activity")
async def get_export_activity(
    days: int = Query(30, ge=1, le=366, description="Lookback window in days"),
    db: Session = Depends(get_db),
):
    """Exports per day, for the activity calendar"""
    try:
        return CustomerStore(db).get_export_activity(days)
    except Exception as e:
        log.error(f"Error fetching export activity: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch export activity")
