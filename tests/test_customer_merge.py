"""
Tests for build_customer_row, the merge between a stored customer and an
incoming Shopify record.
"""
from datetime import datetime
from decimal import Decimal

from audience_sync.connectors.shopify import NormalizedCustomer
from audience_sync.models.customer import Customer
from audience_sync.services.customer_merge import build_customer_row
from audience_sync.services.enrichment_service import GenderInference, UNKNOWN
from audience_sync.utils.tags import TagSet


def _incoming(**overrides):
    fields = dict(
        external_id=11,
        email="meera@example.com",
        first_name="Meera",
        city="Pune",
        tags=TagSet(["vip"]),
        orders_count=4,
        total_spent=Decimal("820.00"),
        updated_at_source=datetime(2024, 5, 1, 9, 0),
    )
    fields.update(overrides)
    return NormalizedCustomer(**fields)


def _existing(**overrides):
    fields = dict(
        external_id=11,
        email="old@example.com",
        gender_inferred="female",
        gender_confidence=0.93,
        enrichment_status="complete",
        last_order_at=datetime(2024, 4, 20),
    )
    fields.update(overrides)
    return Customer(**fields)


def test_new_customer_without_inference_is_pending():
    row = build_customer_row(None, _incoming())

    assert row["external_id"] == 11
    assert row["tags"] == "vip"
    assert row["enrichment_status"] == "pending"
    assert row["gender_inferred"] is None
    assert row["gender_confidence"] is None


def test_source_fields_always_come_from_incoming():
    row = build_customer_row(_existing(), _incoming())

    assert row["email"] == "meera@example.com"
    assert row["city"] == "Pune"
    assert row["total_spent"] == Decimal("820.00")


def test_existing_enrichment_is_preserved():
    row = build_customer_row(_existing(), _incoming())

    assert row["gender_inferred"] == "female"
    assert row["gender_confidence"] == 0.93
    assert row["enrichment_status"] == "complete"


def test_failed_status_is_not_regressed():
    row = build_customer_row(_existing(enrichment_status="failed", gender_inferred=None, gender_confidence=None),
                             _incoming())
    assert row["enrichment_status"] == "failed"


def test_known_inference_overrides():
    row = build_customer_row(_existing(), _incoming(), enrichment=GenderInference("male", 0.6))

    assert row["gender_inferred"] == "male"
    assert row["gender_confidence"] == 0.6
    assert row["enrichment_status"] == "complete"


def test_unknown_inference_keeps_existing_state():
    pending = _existing(enrichment_status="pending", gender_inferred=None, gender_confidence=None)
    row = build_customer_row(pending, _incoming(), enrichment=UNKNOWN)

    assert row["enrichment_status"] == "pending"
    assert row["gender_inferred"] is None


def test_reset_clears_enrichment():
    row = build_customer_row(_existing(), _incoming(), reset=True)

    assert row["enrichment_status"] == "pending"
    assert row["gender_inferred"] is None
    assert row["gender_confidence"] is None


def test_last_order_at_falls_back_to_existing():
    assert build_customer_row(_existing(), _incoming())["last_order_at"] == datetime(2024, 4, 20)

    newer = datetime(2024, 5, 2)
    assert build_customer_row(_existing(), _incoming(last_order_at=newer))["last_order_at"] == newer


def test_empty_tags_serialize_to_none():
    assert build_customer_row(None, _incoming(tags=TagSet()))["tags"] is None
