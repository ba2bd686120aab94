"""
Export ledger

Append-only record of customer exports, read by the activity calendar.
"""
from sqlalchemy import Column, Integer, String, DateTime
from audience_sync.models.base import Base
from audience_sync.utils.dates import utc_now


class ExportActivity(Base):
    __tablename__ = "export_activity"

    id = Column(Integer, primary_key=True, index=True)
    format = Column(String, nullable=False)  # csv, interakt
    exported_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, index=True, default=utc_now, nullable=False)
