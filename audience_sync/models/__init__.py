"""Database models for the audience sync service"""

from audience_sync.models.customer import Customer
from audience_sync.models.sync_log import SyncLog
from audience_sync.models.export_activity import ExportActivity
