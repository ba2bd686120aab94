"""
Customer CSV export

Two layouts: the default segment export and the Interakt contact import
format (WhatsApp campaigns, Indian numbers).
"""
import csv
import io
import re
from datetime import date
from typing import Dict, Iterable, List, Tuple

from sqlalchemy.orm import Session

from audience_sync.models.customer import Customer
from audience_sync.schemas import CustomerExportFilter
from audience_sync.services.customer_store import CustomerStore
from audience_sync.utils.logger import log

EXPORT_FORMATS = ("csv", "interakt")

DEFAULT_COLUMNS = [
    "name",
    "email",
    "phone",
    "city",
    "country",
    "tags",
    "gender_inferred",
    "gender_confidence",
    "total_spent",
    "orders_count",
    "created_at_shopify",
    "last_order_at",
]

INTERAKT_COLUMNS = [
    "Name",
    "Full Phone Number",
    "Phone Number",
    "Country Code",
    "Email",
    "Appointment Time",
    "WhatsApp Opted",
]

INDIA_COUNTRY_CODE = "91"

_NON_DIGITS = re.compile(r"\D")


def full_name(customer: Customer) -> str:
    return " ".join(p for p in (customer.first_name, customer.last_name) if p)


def interakt_phone(phone: str) -> Tuple[str, str]:
    """
    Split a phone number into (full, local) for Interakt

    A leading 91 is treated as the country code; otherwise the last ten
    digits are kept.
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if not digits:
        return "", ""

    if digits.startswith(INDIA_COUNTRY_CODE):
        local = digits[len(INDIA_COUNTRY_CODE):]
    elif len(digits) > 10:
        local = digits[-10:]
    else:
        local = digits

    full = f"{INDIA_COUNTRY_CODE}{local}" if local else ""
    return full, local


def _default_row(customer: Customer) -> Dict[str, object]:
    return {
        "name": full_name(customer),
        "email": customer.email or "",
        "phone": customer.phone or "",
        "city": customer.city or "",
        "country": customer.country or "",
        "tags": customer.tags or "",
        "gender_inferred": customer.gender_inferred or "",
        "gender_confidence": f"{customer.gender_confidence:.2f}" if customer.gender_confidence is not None else "",
        "total_spent": f"{float(customer.total_spent or 0):.2f}",
        "orders_count": customer.orders_count or 0,
        "created_at_shopify": customer.created_at_source.isoformat() if customer.created_at_source else "",
        "last_order_at": customer.last_order_at.isoformat() if customer.last_order_at else "",
    }


def _interakt_row(customer: Customer) -> List[str]:
    full, local = interakt_phone(customer.phone)
    return [full_name(customer), full, local, INDIA_COUNTRY_CODE, "", "", "true"]


def render_csv(customers: Iterable[Customer], export_format: str = "csv") -> str:
    buf = io.StringIO()
    if export_format == "interakt":
        writer = csv.writer(buf)
        writer.writerow(INTERAKT_COLUMNS)
        for customer in customers:
            writer.writerow(_interakt_row(customer))
    else:
        writer = csv.DictWriter(buf, fieldnames=DEFAULT_COLUMNS)
        writer.writeheader()
        for customer in customers:
            writer.writerow(_default_row(customer))
    return buf.getvalue()


def export_filename(export_format: str, today: date = None) -> str:
    today = today or date.today()
    if export_format == "interakt":
        return f"customers-interakt-export-{today.isoformat()}.csv"
    return f"customers-export-{today.isoformat()}.csv"


class ExportService:
    def __init__(self, db: Session):
        self.store = CustomerStore(db)

    def export_customers(self, customer_filter: CustomerExportFilter, export_format: str = "csv") -> Tuple[str, int]:
        """
        Render the filtered customers as CSV and record the export

        Returns:
            (csv text, number of customers exported)
        """
        export_format = (export_format or "csv").lower()
        if export_format not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {export_format}")

        result = self.store.get_customers(customer_filter)
        content = render_csv(result.data, export_format)
        exported_count = len(result.data)

        try:
            self.store.record_export(export_format, exported_count)
        except Exception as e:
            log.error(f"Failed to record {export_format} export: {str(e)}")
            self.store.db.rollback()

        log.info(f"Exported {exported_count} customers as {export_format}")
        return content, exported_count
