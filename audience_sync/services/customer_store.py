"""
Customer Store

Data-access layer for customers, sync logs and the export ledger.
Performs idempotent upsert by Shopify customer ID, filtered listing,
statistics and distinct-value lookups.
"""
import math
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, asc, func
from sqlalchemy.orm import Session

from audience_sync.models.customer import Customer, SOURCE_FIELDS, ENRICHMENT_FIELDS
from audience_sync.models.sync_log import SyncLog
from audience_sync.models.export_activity import ExportActivity
from audience_sync.schemas import CustomerFilter, Pagination
from audience_sync.utils.dates import utc_now
from audience_sync.utils.logger import log
from audience_sync.utils.regions import provinces_for_region
from audience_sync.utils.tags import TagSet

SORT_COLUMNS = {
    "created_at_source": Customer.created_at_source,
    "last_order_at": Customer.last_order_at,
    "first_name": Customer.first_name,
    "email": Customer.email,
    "total_spent": Customer.total_spent,
    "orders_count": Customer.orders_count,
}

SYNC_LOG_FIELDS = (
    "status",
    "customers_processed",
    "customers_created",
    "customers_updated",
    "error_message",
    "completed_at",
)


class SyncLogStateError(Exception):
    """Attempt to change a sync log that already completed or failed"""


@dataclass
class CustomerPageResult:
    data: List[Customer]
    pagination: Pagination

    def to_dict(self) -> dict:
        return {
            "data": [c.to_dict() for c in self.data],
            "pagination": self.pagination.model_dump(),
        }


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CustomerStore:
    """Owns persistence of Customer, SyncLog and ExportActivity rows"""

    def __init__(self, db: Session):
        self.db = db

    # Customers: writes

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise NotImplementedError(f"Upsert not supported for dialect {dialect}")
        return insert

    def upsert_customer(self, row: Dict[str, Any]) -> Customer:
        """
        Insert or update a customer keyed on external_id in one statement

        Source fields present in row are always overwritten. Enrichment
        fields are written exactly as given; omitted ones keep their stored
        value on update and take column defaults on insert.

        Args:
            row: Column values; must include external_id

        Returns:
            The stored Customer
        """
        if row.get("external_id") is None:
            raise ValueError("external_id is required for upsert")

        now = utc_now()
        columns = {k: v for k, v in row.items() if k == "external_id" or k in SOURCE_FIELDS or k in ENRICHMENT_FIELDS}
        if "tags" in columns and isinstance(columns["tags"], TagSet):
            columns["tags"] = columns["tags"].serialize()

        insert = self._insert()
        stmt = insert(Customer).values(created_at=now, updated_at=now, **columns)

        update_set = {
            name: stmt.excluded[name]
            for name in columns
            if name != "external_id"
        }
        update_set["updated_at"] = now

        stmt = stmt.on_conflict_do_update(
            index_elements=[Customer.external_id],
            set_=update_set
        )

        self.db.execute(stmt)
        self.db.commit()

        return self.get_by_external_id(columns["external_id"])

    def upsert_customers(self, rows: List[Dict[str, Any]]) -> int:
        """Upsert many rows; failures are logged and skipped"""
        written = 0
        for row in rows:
            try:
                self.upsert_customer(row)
                written += 1
            except Exception as e:
                log.error(f"Failed to upsert customer {row.get('external_id')}: {str(e)}")
                self.db.rollback()
        return written

    def set_enrichment(self, customer_id: int, gender: str, confidence: float) -> None:
        """Persist a completed inference"""
        self.db.query(Customer).filter(Customer.id == customer_id).update(
            {
                Customer.gender_inferred: gender,
                Customer.gender_confidence: confidence,
                Customer.enrichment_status: "complete",
                Customer.updated_at: utc_now(),
            },
            synchronize_session=False
        )
        self.db.commit()

    def mark_enrichment_failed(self, external_id: int) -> bool:
        """Set enrichment_status to failed; False if the customer does not exist"""
        updated = self.db.query(Customer).filter(Customer.external_id == external_id).update(
            {Customer.enrichment_status: "failed", Customer.updated_at: utc_now()},
            synchronize_session=False
        )
        self.db.commit()
        return updated > 0

    def update_tags(self, external_id: int, tags: TagSet) -> None:
        self.db.query(Customer).filter(Customer.external_id == external_id).update(
            {Customer.tags: tags.serialize(), Customer.updated_at: utc_now()},
            synchronize_session=False
        )
        self.db.commit()

    def reset_all_enrichments(self) -> int:
        """
        Clear inferred gender for every customer and mark them pending

        Returns:
            Number of customers reset
        """
        count = self.db.query(Customer).update(
            {
                Customer.gender_inferred: None,
                Customer.gender_confidence: None,
                Customer.enrichment_status: "pending",
                Customer.updated_at: utc_now(),
            },
            synchronize_session=False
        )
        self.db.commit()
        log.info(f"Reset enrichment for {count} customers")
        return count

    # Customers: reads

    def get_by_external_id(self, external_id: int) -> Optional[Customer]:
        return self.db.query(Customer).filter(Customer.external_id == external_id).first()

    def get_by_id(self, customer_id: int) -> Optional[Customer]:
        return self.db.query(Customer).filter(Customer.id == customer_id).first()

    def get_pending_customers(self, limit: int = 10) -> List[Customer]:
        return self.db.query(Customer).filter(
            Customer.enrichment_status == "pending"
        ).order_by(Customer.id).limit(limit).all()

    def get_latest_source_update(self):
        """Most recent Shopify updated_at across stored customers"""
        return self.db.query(func.max(Customer.updated_at_source)).scalar()

    def _filter_conditions(self, customer_filter: CustomerFilter) -> list:
        f = customer_filter
        conditions = []

        if f.gender_inferred:
            conditions.append(Customer.gender_inferred.in_(f.gender_inferred))

        if f.created_from:
            conditions.append(Customer.created_at_source >= f.created_from)
        if f.created_to:
            conditions.append(Customer.created_at_source <= f.created_to)

        if f.last_order_from:
            conditions.append(Customer.last_order_at >= f.last_order_from)
        if f.last_order_to:
            conditions.append(Customer.last_order_at <= f.last_order_to)

        if f.city:
            conditions.append(Customer.city.in_(f.city))

        region_provinces = provinces_for_region(f.region)
        if region_provinces:
            conditions.append(Customer.province.in_(region_provinces))

        if f.province:
            conditions.append(Customer.province.in_(f.province))

        if f.tag:
            conditions.append(Customer.tags.ilike(f"%{_escape_like(f.tag)}%", escape="\\"))

        if f.min_total_spent is not None:
            conditions.append(Customer.total_spent >= f.min_total_spent)
        if f.max_total_spent is not None:
            conditions.append(Customer.total_spent <= f.max_total_spent)

        if f.min_orders_count is not None:
            conditions.append(Customer.orders_count >= f.min_orders_count)
        if f.max_orders_count is not None:
            conditions.append(Customer.orders_count <= f.max_orders_count)

        return conditions

    def get_customers(self, customer_filter: CustomerFilter) -> CustomerPageResult:
        """
        Filtered, sorted, paginated customer list

        The count query applies exactly the same conditions as the data query.
        """
        conditions = self._filter_conditions(customer_filter)

        total_count = self.db.query(func.count(Customer.id)).filter(*conditions).scalar() or 0

        page = customer_filter.page
        page_size = customer_filter.page_size
        offset = (page - 1) * page_size

        sort_column = SORT_COLUMNS.get(customer_filter.sort_by, Customer.created_at_source)
        direction = asc if customer_filter.sort_order == "asc" else desc

        data = (
            self.db.query(Customer)
            .filter(*conditions)
            .order_by(direction(sort_column), direction(Customer.id))
            .offset(offset)
            .limit(page_size)
            .all()
        )

        return CustomerPageResult(
            data=data,
            pagination=Pagination(
                page=page,
                page_size=page_size,
                total_count=total_count,
                total_pages=math.ceil(total_count / page_size),
            )
        )

    def get_stats(self) -> Dict[str, Any]:
        """Summary statistics across all customers (unfiltered)"""
        total = self.db.query(func.count(Customer.id)).scalar() or 0

        gender_counts = dict(
            self.db.query(Customer.gender_inferred, func.count(Customer.id))
            .group_by(Customer.gender_inferred)
            .all()
        )

        pending = self.db.query(func.count(Customer.id)).filter(
            Customer.enrichment_status == "pending"
        ).scalar() or 0

        now = utc_now()
        last_7 = self.db.query(func.count(Customer.id)).filter(
            Customer.created_at_source >= now - timedelta(days=7)
        ).scalar() or 0
        last_30 = self.db.query(func.count(Customer.id)).filter(
            Customer.created_at_source >= now - timedelta(days=30)
        ).scalar() or 0

        country_rows = (
            self.db.query(Customer.country, func.count(Customer.id).label("count"))
            .group_by(Customer.country)
            .order_by(desc("count"))
            .limit(10)
            .all()
        )

        revenue, orders, avg_ltv = self.db.query(
            func.sum(Customer.total_spent),
            func.sum(Customer.orders_count),
            func.avg(Customer.total_spent),
        ).one()

        total_revenue = float(revenue or 0)
        total_orders = int(orders or 0)

        return {
            "total_customers": total,
            "male_count": gender_counts.get("male", 0),
            "female_count": gender_counts.get("female", 0),
            "unknown_count": gender_counts.get("unknown", 0),
            "pending_enrichment": pending,
            "customers_last_7_days": last_7,
            "customers_last_30_days": last_30,
            "total_revenue": round(total_revenue, 2),
            "total_orders": total_orders,
            "average_ltv": round(float(avg_ltv or 0), 2),
            "average_order_value": round(total_revenue / total_orders, 2) if total_orders > 0 else 0.0,
            "country_breakdown": [
                {"country": country or "Unknown", "count": count}
                for country, count in country_rows
            ],
        }

    def get_distinct_tags(self) -> List[str]:
        """Every individual tag in use, trimmed, de-duplicated and sorted"""
        rows = self.db.query(Customer.tags).filter(
            Customer.tags.isnot(None),
            Customer.tags != ""
        ).distinct().all()

        all_tags = set()
        for (raw,) in rows:
            all_tags.update(TagSet.parse(raw))
        return sorted(all_tags)

    def _distinct_column(self, column) -> List[str]:
        rows = self.db.query(column).filter(
            column.isnot(None),
            column != ""
        ).distinct().order_by(column).all()
        return [value for (value,) in rows]

    def get_distinct_cities(self) -> List[str]:
        return self._distinct_column(Customer.city)

    def get_distinct_provinces(self) -> List[str]:
        return self._distinct_column(Customer.province)

    def count_customers(self) -> int:
        return self.db.query(func.count(Customer.id)).scalar() or 0

    # Sync logs

    def create_sync_log(self, sync_type: str) -> SyncLog:
        sync_log = SyncLog(sync_type=sync_type, status="running", started_at=utc_now())
        self.db.add(sync_log)
        self.db.commit()
        self.db.refresh(sync_log)
        return sync_log

    def update_sync_log(self, log_id: int, **changes) -> SyncLog:
        """
        Apply changes to a running sync log

        Raises:
            SyncLogStateError: log is missing or already completed/failed
        """
        sync_log = self.db.query(SyncLog).filter(SyncLog.id == log_id).first()
        if sync_log is None:
            raise SyncLogStateError(f"Sync log {log_id} not found")
        if sync_log.is_terminal:
            raise SyncLogStateError(f"Sync log {log_id} is already {sync_log.status}")

        for key, value in changes.items():
            if key not in SYNC_LOG_FIELDS:
                raise ValueError(f"Unknown sync log field: {key}")
            setattr(sync_log, key, value)

        self.db.commit()
        self.db.refresh(sync_log)
        return sync_log

    def complete_sync_log(self, log_id: int, processed: int, created: int, updated: int) -> SyncLog:
        return self.update_sync_log(
            log_id,
            status="completed",
            customers_processed=processed,
            customers_created=created,
            customers_updated=updated,
            completed_at=utc_now(),
        )

    def fail_sync_log(self, log_id: int, error_message: str) -> SyncLog:
        return self.update_sync_log(
            log_id,
            status="failed",
            error_message=error_message[:2000],
            completed_at=utc_now(),
        )

    def get_latest_sync_log(self) -> Optional[SyncLog]:
        return self.db.query(SyncLog).order_by(desc(SyncLog.started_at), desc(SyncLog.id)).first()

    def get_last_completed_sync(self) -> Optional[SyncLog]:
        return self.db.query(SyncLog).filter(
            SyncLog.status == "completed",
            SyncLog.completed_at.isnot(None)
        ).order_by(desc(SyncLog.completed_at)).first()

    def count_running_sync_logs(self) -> int:
        return self.db.query(func.count(SyncLog.id)).filter(SyncLog.status == "running").scalar() or 0

    def get_sync_status(self) -> Dict[str, Any]:
        latest = self.get_latest_sync_log()
        last_completed = self.get_last_completed_sync()
        return {
            "last_sync": last_completed.completed_at.isoformat() if last_completed else None,
            "is_running": bool(latest and latest.status == "running"),
            "customers_count": self.count_customers(),
        }

    # Export ledger

    def record_export(self, export_format: str, exported_count: int) -> ExportActivity:
        entry = ExportActivity(format=export_format, exported_count=exported_count, created_at=utc_now())
        self.db.add(entry)
        self.db.commit()
        return entry

    def get_export_activity(self, days: int = 30) -> List[Dict[str, Any]]:
        """Exports per day over the last N days, oldest first"""
        cutoff = utc_now() - timedelta(days=days)
        rows = self.db.query(ExportActivity).filter(
            ExportActivity.created_at >= cutoff
        ).order_by(ExportActivity.created_at).all()

        by_day: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for row in rows:
            day = row.created_at.date().isoformat()
            entry = by_day.setdefault(day, {"date": day, "exports": 0, "customers": 0, "formats": {}})
            entry["exports"] += 1
            entry["customers"] += row.exported_count or 0
            entry["formats"][row.format] = entry["formats"].get(row.format, 0) + 1

        return list(by_day.values())
