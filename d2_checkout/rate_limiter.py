"""
D2 Checkout Rate Limiter

Fixed-window, per-caller limiter for the payment link endpoint. Counters live
in process memory, so the limit is per instance rather than global.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    """Outcome of a single rate limit check"""

    allowed: bool
    remaining: int
    reset_at: datetime

    @property
    def retry_after_seconds(self) -> int:
        delta = (self.reset_at - datetime.now(timezone.utc)).total_seconds()
        return max(int(delta) + 1, 1)


class PaymentLinkRateLimiter:
    """Counts every request per key; the request over quota is rejected"""

    def __init__(self, quota: int = 10, window_seconds: int = 60, namespace: str = "payment-link"):
        self.quota = quota
        self.window_seconds = window_seconds
        self.item = RateLimitItemPerSecond(quota, window_seconds, namespace=namespace)
        self.storage = MemoryStorage()
        self.limiter = FixedWindowRateLimiter(self.storage)

    def check(self, key: str) -> RateLimitDecision:
        allowed = self.limiter.hit(self.item, key)
        stats = self.limiter.get_window_stats(self.item, key)
        decision = RateLimitDecision(
            allowed=allowed,
            remaining=max(stats.remaining, 0),
            reset_at=datetime.fromtimestamp(stats.reset_time, tz=timezone.utc),
        )

        if not allowed:
            logger.warning(f"Rate limit exceeded for {key} ({self.quota}/{self.window_seconds}s)")
        return decision

    def reset(self) -> None:
        self.storage.reset()


def get_client_key(request: Request) -> str:
    """First X-Forwarded-For hop when behind a proxy, else the socket address"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request) or "unknown"
