"""
Customer list, export and filter-option endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from audience_sync.api.dependencies import customer_filter_params, customer_export_filter_params
from audience_sync.models.base import get_db
from audience_sync.schemas import CustomerFilter, CustomerExportFilter
from audience_sync.services.customer_store import CustomerStore
from audience_sync.services.export_service import ExportService, EXPORT_FORMATS, export_filename
from audience_sync.utils.logger import log

router = APIRouter(prefix="/api/customers", tags=["customers"])


@router.get("")
async def list_customers(
    customer_filter: CustomerFilter = Depends(customer_filter_params),
    db: Session = Depends(get_db),
):
    """Filtered, sorted, paginated customer list"""
    try:
        return CustomerStore(db).get_customers(customer_filter).to_dict()
    except Exception as e:
        log.error(f"Error fetching customers: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch customers")


@router.get("/export")
async def export_customers(
    format: str = Query("csv", description="csv or interakt"),
    customer_filter: CustomerExportFilter = Depends(customer_export_filter_params),
    db: Session = Depends(get_db),
):
    """CSV attachment of every customer matching the filters (max 10000)"""
    export_format = format.lower()
    if export_format not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {format}")

    try:
        content, _ = ExportService(db).export_customers(customer_filter, export_format)
    except Exception as e:
        log.error(f"Error exporting customers: {str(e)}")
        raise HTTPException(status_code=500, detail="Export failed")

    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(export_format)}"'},
    )


@router.get("/filter-options")
async def get_filter_options(db: Session = Depends(get_db)):
    """Distinct tags, cities and provinces for the filter panel"""
    try:
        store = CustomerStore(db)
        return {
            "tags": store.get_distinct_tags(),
            "cities": store.get_distinct_cities(),
            "provinces": store.get_distinct_provinces(),
        }
    except Exception as e:
        log.error(f"Error fetching filter options: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch filter options")
