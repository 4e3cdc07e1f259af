"""
Client-side throttling for GitHub API calls.

Keeps a minimum gap between requests and, once the quota reported in the
``x-ratelimit-*`` response headers runs low, holds requests until the
window resets.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional

from ..utils.secure_logging import get_secure_logger

logger = get_secure_logger(__name__)

QUOTA_HEADERS = {
    "limit": "x-ratelimit-limit",
    "remaining": "x-ratelimit-remaining",
    "used": "x-ratelimit-used",
}


@dataclass
class RateLimitInfo:
    """Quota of the current rate limit window."""

    limit: int = 5000
    remaining: int = 5000
    used: int = 0
    reset_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def seconds_until_reset(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max((self.reset_time - now).total_seconds(), 0.0)


class RateLimiter:
    """
    Paces requests and waits out exhausted quota windows.

    One limiter belongs to one client; concurrent fetchers sharing the
    client queue on its lock.
    """

    def __init__(
        self,
        requests_per_second: float = 10.0,
        min_remaining: int = 100,
        max_wait: float = 900.0,
    ):
        """
        Args:
            requests_per_second: Upper bound on the request rate
            min_remaining: Quota below which requests wait for the reset
            max_wait: Longest single wait in seconds
        """
        self.min_interval = 1.0 / requests_per_second
        self.min_remaining = min_remaining
        self.max_wait = max_wait

        self.rate_limit = RateLimitInfo()
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """Read the quota from lower-cased response headers; unparseable values are ignored."""
        for attribute, header in QUOTA_HEADERS.items():
            value = headers.get(header)
            if value is not None and value.isdigit():
                setattr(self.rate_limit, attribute, int(value))

        reset = headers.get("x-ratelimit-reset")
        if reset and reset.isdigit():
            self.rate_limit.reset_time = datetime.fromtimestamp(int(reset), tz=timezone.utc)

    async def acquire(self) -> None:
        """Block until the next request may go out."""
        async with self._lock:
            delay = self._next_slot - time.monotonic()
            if delay > 0:
                await asyncio.sleep(delay)

            if self.rate_limit.remaining < self.min_remaining:
                wait = min(self.rate_limit.seconds_until_reset(), self.max_wait)
                if wait > 0:
                    logger.warning(
                        "Only %d API requests left; pausing %.0fs until the quota resets",
                        self.rate_limit.remaining,
                        wait,
                    )
                    await asyncio.sleep(wait)
                    # The next response reports the refilled quota
                    self.rate_limit.remaining = self.rate_limit.limit

            self._next_slot = time.monotonic() + self.min_interval

    def get_retry_after(self, headers: Mapping[str, str]) -> Optional[float]:
        """Seconds requested by a ``retry-after`` header, capped at ``max_wait``."""
        try:
            return min(float(headers["retry-after"]), self.max_wait)
        except (KeyError, ValueError):
            return None
