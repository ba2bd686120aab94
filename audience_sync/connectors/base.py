"""
Shared connector plumbing: credential state and request accounting.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional


class BaseConnector(ABC):
    """
    Base for outbound API clients.

    Subclasses bump request_count / retry_count / error_count as they talk
    to the remote service; get_status() exposes them for diagnostics.
    """

    # 429 policy; subclasses may tune
    RETRY_MAX_ATTEMPTS = 5
    RETRY_BASE_DELAY = 5.0  # seconds
    RETRY_MAX_DELAY = 60.0  # seconds

    def __init__(self, source_name: str, source_type: str):
        self.source_name = source_name
        self.source_type = source_type
        self._authenticated = False

        self.last_request_at: Optional[datetime] = None
        self.request_count = 0
        self.retry_count = 0
        self.error_count = 0

    @abstractmethod
    async def authenticate(self) -> bool:
        """Verify credentials against the remote service; True when they work"""

    def is_authenticated(self) -> bool:
        return self._authenticated

    def retry_config(self) -> Dict[str, Any]:
        """Retry policy in effect; subclasses with per-instance settings override"""
        return {
            "max_attempts": self.RETRY_MAX_ATTEMPTS,
            "base_delay": self.RETRY_BASE_DELAY,
            "max_delay": self.RETRY_MAX_DELAY,
        }

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.source_name,
            "type": self.source_type,
            "authenticated": self._authenticated,
            "last_request_at": self.last_request_at,
            "request_count": self.request_count,
            "retry_count": self.retry_count,
            "error_count": self.error_count,
            "error_rate": self.error_count / max(self.request_count, 1),
            "retry_config": self.retry_config(),
        }
