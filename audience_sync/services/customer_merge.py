"""
Build the stored row for an incoming Shopify customer

Source fields always come from Shopify. Enrichment fields are carried
forward from the existing row unless a fresh inference or an explicit
reset replaces them.
"""
from typing import Any, Dict, Optional

from audience_sync.connectors.shopify import NormalizedCustomer
from audience_sync.models.customer import Customer
from audience_sync.services.enrichment_service import GenderInference


def build_customer_row(
    existing: Optional[Customer],
    incoming: NormalizedCustomer,
    enrichment: Optional[GenderInference] = None,
    reset: bool = False
) -> Dict[str, Any]:
    """
    Produce the full upsert row for one customer

    Args:
        existing: Stored customer, or None for a new one
        incoming: Normalized Shopify record
        enrichment: Fresh inference; unknown results are ignored
        reset: Clear enrichment back to pending

    Returns:
        Column -> value mapping for CustomerStore.upsert_customer
    """
    last_order_at = incoming.last_order_at
    if last_order_at is None and existing is not None:
        last_order_at = existing.last_order_at

    row: Dict[str, Any] = {
        "external_id": incoming.external_id,
        "email": incoming.email,
        "phone": incoming.phone,
        "first_name": incoming.first_name,
        "last_name": incoming.last_name,
        "city": incoming.city,
        "country": incoming.country,
        "province": incoming.province,
        "postal_code": incoming.postal_code,
        "tags": incoming.tags.serialize(),
        "orders_count": incoming.orders_count,
        "total_spent": incoming.total_spent,
        "created_at_source": incoming.created_at_source,
        "updated_at_source": incoming.updated_at_source,
        "last_order_at": last_order_at,
    }

    if enrichment is not None and enrichment.is_known:
        row.update(
            gender_inferred=enrichment.gender,
            gender_confidence=enrichment.confidence,
            enrichment_status="complete",
        )
    elif reset:
        row.update(gender_inferred=None, gender_confidence=None, enrichment_status="pending")
    elif existing is not None:
        row.update(
            gender_inferred=existing.gender_inferred,
            gender_confidence=existing.gender_confidence,
            enrichment_status=existing.enrichment_status,
        )
    else:
        row.update(gender_inferred=None, gender_confidence=None, enrichment_status="pending")

    return row
