"""
Backoff helpers for the Shopify connector.

429 responses are retried a bounded number of times; these helpers compute
the waits and keep a per-request record of what happened.
"""
import random
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class RetryStats:
    """Waits and errors seen while retrying one request."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def record_attempt(self, error: Optional[str] = None, delay: float = 0.0):
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            self.last_error = error
            self.errors.append(error)

    def to_dict(self) -> dict:
        return {
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "last_error": self.last_error,
            "errors": self.errors[:5],
        }


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Wait before retry number `attempt` (1-indexed).

    base_delay doubles (by default) per attempt, is capped at max_delay,
    and optionally gets up to 25% random jitter on top.
    """
    delay = min(base_delay * exponential_base ** (attempt - 1), max_delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)
    return delay


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Retry-After header in seconds.

    Shopify sends a float number of seconds ("2.0"). HTTP-date values
    are not used by Shopify and are treated as absent.
    """
    if not value:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None
