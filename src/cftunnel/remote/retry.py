"""Backoff policy for control-plane calls."""

import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from pydantic import BaseModel, ConfigDict, Field

TOO_MANY_REQUESTS = 429


class RetryPolicy(BaseModel):
    """Exponential backoff with a hard attempt bound."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=1, le=10)
    base_delay: float = Field(default=0.5, ge=0)
    factor: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=8.0, ge=0)
    jitter: float = Field(default=0.1, ge=0, le=1, description="Fraction of delay")

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if retry_after is not None:
            return min(max(retry_after, 0.0), self.max_delay)
        delay = min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    @staticmethod
    def is_retryable_status(status_code: int) -> bool:
        return status_code == TOO_MANY_REQUESTS or 500 <= status_code < 600


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given as seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)
