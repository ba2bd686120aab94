"""
Datetime helpers

All timestamps are stored as naive UTC datetimes.
"""
from datetime import datetime, timezone
from typing import Optional, Union

from dateutil import parser as date_parser


def utc_now() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC"""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_datetime(val: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass a datetime through) into naive UTC"""
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        return to_naive_utc(val)
    try:
        return to_naive_utc(date_parser.isoparse(val))
    except (ValueError, TypeError):
        try:
            return to_naive_utc(date_parser.parse(val))
        except (ValueError, TypeError, OverflowError):
            return None


def isoformat_utc(dt: datetime) -> str:
    """ISO-8601 with an explicit UTC offset, as Shopify expects"""
    return to_naive_utc(dt).replace(tzinfo=timezone.utc).isoformat()
