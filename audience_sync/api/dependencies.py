"""
Shared FastAPI dependencies

Services are created lazily so importing the app never touches Shopify or
Anthropic configuration.
"""
from typing import List, Optional, Type, TypeVar

from fastapi import HTTPException, Query
from pydantic import ValidationError

from audience_sync.config import get_settings
from audience_sync.schemas import CustomerFilter, CustomerExportFilter
from audience_sync.utils.dates import parse_datetime

F = TypeVar("F", bound=CustomerFilter)

_sync_service = None
_enrichment_service = None
_webhook_service = None


def get_sync_service():
    global _sync_service
    if _sync_service is None:
        from audience_sync.services.sync_service import CustomerSyncService
        _sync_service = CustomerSyncService()
    return _sync_service


def get_enrichment_service():
    global _enrichment_service
    if _enrichment_service is None:
        from audience_sync.services.enrichment_service import EnrichmentService
        _enrichment_service = EnrichmentService()
    return _enrichment_service


def get_webhook_service():
    global _webhook_service
    if _webhook_service is None:
        from audience_sync.services.webhook_service import WebhookService
        _webhook_service = WebhookService()
    return _webhook_service


def get_webhook_secret() -> Optional[str]:
    return get_settings().shopify_webhook_secret


def _parse_date_param(name: str, value: Optional[str]):
    if not value:
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")
    return parsed


def _build_filter(model: Type[F], **params) -> F:
    for name in ("created_from", "created_to", "last_order_from", "last_order_to"):
        params[name] = _parse_date_param(name, params.get(name))

    try:
        return model(**{k: v for k, v in params.items() if v is not None})
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))


def customer_filter_params(
    gender_inferred: Optional[List[str]] = Query(None),
    created_from: Optional[str] = Query(None),
    created_to: Optional[str] = Query(None),
    last_order_from: Optional[str] = Query(None),
    last_order_to: Optional[str] = Query(None),
    city: Optional[List[str]] = Query(None),
    province: Optional[List[str]] = Query(None),
    region: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    min_total_spent: Optional[float] = Query(None),
    max_total_spent: Optional[float] = Query(None),
    min_orders_count: Optional[int] = Query(None),
    max_orders_count: Optional[int] = Query(None),
    page: int = Query(1),
    page_size: int = Query(25),
    sort_by: Optional[str] = Query(None),
    sort_order: Optional[str] = Query(None),
) -> CustomerFilter:
    """Query string -> CustomerFilter; invalid values give 400"""
    return _build_filter(
        CustomerFilter,
        gender_inferred=gender_inferred,
        created_from=created_from,
        created_to=created_to,
        last_order_from=last_order_from,
        last_order_to=last_order_to,
        city=city,
        province=province,
        region=region,
        tag=tag,
        min_total_spent=min_total_spent,
        max_total_spent=max_total_spent,
        min_orders_count=min_orders_count,
        max_orders_count=max_orders_count,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        sort_order=sort_order,
    )


def customer_export_filter_params(
    gender_inferred: Optional[List[str]] = Query(None),
    created_from: Optional[str] = Query(None),
    created_to: Optional[str] = Query(None),
    last_order_from: Optional[str] = Query(None),
    last_order_to: Optional[str] = Query(None),
    city: Optional[List[str]] = Query(None),
    province: Optional[List[str]] = Query(None),
    region: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    min_total_spent: Optional[float] = Query(None),
    max_total_spent: Optional[float] = Query(None),
    min_orders_count: Optional[int] = Query(None),
    max_orders_count: Optional[int] = Query(None),
) -> CustomerExportFilter:
    """Same predicates as the list endpoint; always one 10000-row page"""
    return _build_filter(
        CustomerExportFilter,
        gender_inferred=gender_inferred,
        created_from=created_from,
        created_to=created_to,
        last_order_from=last_order_from,
        last_order_to=last_order_to,
        city=city,
        province=province,
        region=region,
        tag=tag,
        min_total_spent=min_total_spent,
        max_total_spent=max_total_spent,
        min_orders_count=min_orders_count,
        max_orders_count=max_orders_count,
    )
