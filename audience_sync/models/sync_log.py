"""
Sync audit models
"""
from sqlalchemy import Column, Integer, String, DateTime, Text
from audience_sync.models.base import Base
from audience_sync.utils.dates import utc_now

SYNC_TYPES = ("incremental", "full")
SYNC_STATUSES = ("running", "completed", "failed")
TERMINAL_SYNC_STATUSES = ("completed", "failed")


class SyncLog(Base):
    """
    One row per customer sync run

    Created as 'running' and moved exactly once to 'completed' or 'failed'.
    The latest completed_at is the fallback watermark for incremental syncs.
    """
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    sync_type = Column(String, nullable=False)  # incremental, full
    status = Column(String, index=True, nullable=False)  # running, completed, failed

    customers_processed = Column(Integer, default=0)
    customers_created = Column(Integer, default=0)
    customers_updated = Column(Integer, default=0)

    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, index=True, default=utc_now, nullable=False)
    completed_at = Column(DateTime, index=True, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SYNC_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sync_type": self.sync_type,
            "status": self.status,
            "customers_processed": self.customers_processed,
            "customers_created": self.customers_created,
            "customers_updated": self.customers_updated,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
