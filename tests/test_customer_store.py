"""
Customer store tests against an in-memory SQLite database.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from audience_sync.models.customer import Customer
from audience_sync.schemas import CustomerFilter
from audience_sync.services.customer_store import SyncLogStateError
from audience_sync.utils.dates import utc_now
from audience_sync.utils.tags import TagSet


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------

class TestUpsert:

    def test_same_external_id_twice_leaves_one_row(self, store, db):
        store.upsert_customer({"external_id": 100, "email": "a@example.com", "orders_count": 1})
        store.upsert_customer({"external_id": 100, "email": "b@example.com", "orders_count": 2})

        rows = db.query(Customer).filter(Customer.external_id == 100).all()
        assert len(rows) == 1
        assert rows[0].email == "b@example.com"
        assert rows[0].orders_count == 2

    def test_upsert_keeps_surrogate_id_and_created_at(self, store, db):
        first = store.upsert_customer({"external_id": 5, "email": "x@example.com"})
        first_id, first_created = first.id, first.created_at

        db.expire_all()
        second = store.upsert_customer({"external_id": 5, "email": "y@example.com"})

        assert second.id == first_id
        assert second.created_at == first_created
        assert second.updated_at >= first_created

    def test_omitted_enrichment_fields_are_untouched(self, store, db):
        store.upsert_customer({
            "external_id": 7,
            "gender_inferred": "female",
            "gender_confidence": 0.9,
            "enrichment_status": "complete",
        })
        db.expire_all()
        store.upsert_customer({"external_id": 7, "email": "new@example.com"})

        db.expire_all()
        customer = store.get_by_external_id(7)
        assert customer.enrichment_status == "complete"
        assert customer.gender_inferred == "female"

    def test_new_row_defaults_to_pending(self, store):
        customer = store.upsert_customer({"external_id": 8})
        assert customer.enrichment_status == "pending"
        assert customer.orders_count == 0

    def test_tagset_is_serialized(self, store):
        customer = store.upsert_customer({"external_id": 9, "tags": TagSet(["vip", "gold"])})
        assert customer.tags == "vip, gold"

    def test_external_id_required(self, store):
        with pytest.raises(ValueError):
            store.upsert_customer({"email": "nobody@example.com"})

    def test_bulk_upsert_counts_rows(self, store):
        assert store.upsert_customers([{"external_id": i} for i in range(1, 4)]) == 3
        assert store.count_customers() == 3


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

@pytest.fixture
def catalog(add_customer):
    now = utc_now()
    add_customer(1, first_name="Anu", province="Karnataka", city="Bengaluru", tags="VIP, wholesale",
                 gender_inferred="female", gender_confidence=0.9, enrichment_status="complete",
                 total_spent=Decimal("500.00"), orders_count=5, created_at_source=now - timedelta(days=2))
    add_customer(2, first_name="Bala", province="Tamil Nadu", city="Chennai", tags="newsletter",
                 gender_inferred="male", gender_confidence=0.8, enrichment_status="complete",
                 total_spent=Decimal("50.00"), orders_count=1, created_at_source=now - timedelta(days=20))
    add_customer(3, first_name="Chirag", province="Gujarat", city="Ahmedabad", tags="vip",
                 gender_inferred="male", gender_confidence=0.7, enrichment_status="complete",
                 total_spent=Decimal("1200.00"), orders_count=9, created_at_source=now - timedelta(days=60))
    add_customer(4, first_name="Deepa", province="Kerala", city="Kochi", tags=None,
                 total_spent=Decimal("0"), orders_count=0, created_at_source=now - timedelta(days=1))
    add_customer(5, first_name="Esha", province=None, city=None, tags="wholesale_b2b",
                 gender_inferred="unknown", gender_confidence=0.0, enrichment_status="complete",
                 total_spent=Decimal("75.00"), orders_count=2)


def _ids(result):
    return sorted(c.external_id for c in result.data)


class TestGetCustomers:

    def test_south_region_matches_southern_states(self, store, catalog):
        result = store.get_customers(CustomerFilter(region="South"))

        assert _ids(result) == [1, 2, 4]
        assert result.pagination.total_count == 3

    def test_unknown_region_adds_no_constraint(self, store, catalog):
        assert store.get_customers(CustomerFilter(region="Atlantis")).pagination.total_count == 5

    def test_gender_and_spend_are_combined(self, store, catalog):
        result = store.get_customers(CustomerFilter(gender_inferred=["male"], min_total_spent=100))
        assert _ids(result) == [3]

    def test_tag_substring_is_case_insensitive(self, store, catalog):
        assert _ids(store.get_customers(CustomerFilter(tag="vip"))) == [1, 3]

    def test_tag_wildcards_are_literal(self, store, catalog):
        # Unescaped, "a_e" would match the "ale" in "wholesale"
        assert _ids(store.get_customers(CustomerFilter(tag="a_e"))) == []
        assert _ids(store.get_customers(CustomerFilter(tag="e_b"))) == [5]

    def test_orders_and_created_ranges(self, store, catalog):
        now = utc_now()
        result = store.get_customers(CustomerFilter(
            min_orders_count=1,
            max_orders_count=5,
            created_from=now - timedelta(days=30),
        ))
        assert _ids(result) == [1, 2]

    def test_count_matches_data_across_pages(self, store, catalog):
        customer_filter = CustomerFilter(gender_inferred=["male", "female"], page_size=2)
        first = store.get_customers(customer_filter)
        second = store.get_customers(customer_filter.model_copy(update={"page": 2}))

        assert first.pagination.total_count == 3
        assert first.pagination.total_pages == 2
        assert len(first.data) == 2 and len(second.data) == 1
        assert sorted(_ids(first) + _ids(second)) == [1, 2, 3]

    def test_sorting(self, store, catalog):
        result = store.get_customers(CustomerFilter(sort_by="total_spent", sort_order="desc"))
        assert [c.external_id for c in result.data][:2] == [3, 1]

        result = store.get_customers(CustomerFilter(sort_by="first_name", sort_order="asc"))
        assert [c.first_name for c in result.data] == ["Anu", "Bala", "Chirag", "Deepa", "Esha"]

    def test_empty_result(self, store):
        result = store.get_customers(CustomerFilter())
        assert result.data == []
        assert result.pagination.total_pages == 0


# ---------------------------------------------------------------------------
# Stats and lookups
# ---------------------------------------------------------------------------

class TestStatsAndLookups:

    def test_stats(self, store, catalog):
        stats = store.get_stats()

        assert stats["total_customers"] == 5
        assert stats["male_count"] == 2
        assert stats["female_count"] == 1
        assert stats["unknown_count"] == 1
        assert stats["pending_enrichment"] == 1
        assert stats["customers_last_7_days"] == 2
        assert stats["customers_last_30_days"] == 3
        assert stats["total_revenue"] == 1825.0
        assert stats["total_orders"] == 17
        assert stats["average_ltv"] == 365.0
        assert stats["average_order_value"] == round(1825.0 / 17, 2)

    def test_stats_with_no_orders(self, store):
        stats = store.get_stats()
        assert stats["total_customers"] == 0
        assert stats["average_order_value"] == 0.0

    def test_distinct_tags_are_split_and_sorted(self, store, catalog):
        assert store.get_distinct_tags() == ["VIP", "newsletter", "vip", "wholesale", "wholesale_b2b"]

    def test_distinct_cities_and_provinces(self, store, catalog):
        assert store.get_distinct_cities() == ["Ahmedabad", "Bengaluru", "Chennai", "Kochi"]
        assert store.get_distinct_provinces() == ["Gujarat", "Karnataka", "Kerala", "Tamil Nadu"]

    def test_reset_all_enrichments(self, store, db, catalog):
        assert store.reset_all_enrichments() == 5

        db.expire_all()
        assert all(c.enrichment_status == "pending" for c in db.query(Customer).all())
        assert all(c.gender_inferred is None for c in db.query(Customer).all())

    def test_mark_enrichment_failed(self, store, db, add_customer):
        add_customer(1)
        assert store.mark_enrichment_failed(1) is True
        assert store.mark_enrichment_failed(999) is False

        db.expire_all()
        assert store.get_by_external_id(1).enrichment_status == "failed"

    def test_latest_source_update(self, store, add_customer):
        assert store.get_latest_source_update() is None
        add_customer(1, updated_at_source=datetime(2024, 1, 1))
        add_customer(2, updated_at_source=datetime(2024, 6, 1))
        assert store.get_latest_source_update() == datetime(2024, 6, 1)


# ---------------------------------------------------------------------------
# Sync logs and export ledger
# ---------------------------------------------------------------------------

class TestSyncLogs:

    def test_lifecycle(self, store):
        sync_log = store.create_sync_log("incremental")
        assert sync_log.status == "running"
        assert store.count_running_sync_logs() == 1

        completed = store.complete_sync_log(sync_log.id, processed=3, created=2, updated=1)
        assert completed.status == "completed"
        assert completed.completed_at is not None
        assert store.get_last_completed_sync().id == sync_log.id
        assert store.count_running_sync_logs() == 0

    def test_terminal_log_cannot_change(self, store):
        sync_log = store.create_sync_log("full")
        store.fail_sync_log(sync_log.id, "shopify down")

        with pytest.raises(SyncLogStateError):
            store.complete_sync_log(sync_log.id, processed=1, created=1, updated=0)

        with pytest.raises(SyncLogStateError):
            store.update_sync_log(sync_log.id, error_message="rewritten")

    def test_unknown_field_rejected(self, store):
        sync_log = store.create_sync_log("full")
        with pytest.raises(ValueError):
            store.update_sync_log(sync_log.id, sync_type="incremental")

    def test_sync_status(self, store, add_customer):
        add_customer(1)
        status = store.get_sync_status()
        assert status == {"last_sync": None, "is_running": False, "customers_count": 1}

        sync_log = store.create_sync_log("incremental")
        assert store.get_sync_status()["is_running"] is True

        store.complete_sync_log(sync_log.id, processed=1, created=0, updated=1)
        status = store.get_sync_status()
        assert status["is_running"] is False
        assert status["last_sync"] is not None


class TestExportLedger:

    def test_activity_groups_by_day(self, store):
        store.record_export("csv", 10)
        store.record_export("interakt", 5)

        activity = store.get_export_activity(days=30)

        assert len(activity) == 1
        assert activity[0]["exports"] == 2
        assert activity[0]["customers"] == 15
        assert activity[0]["formats"] == {"csv": 1, "interakt": 1}
        assert activity[0]["date"] == utc_now().date().isoformat()
