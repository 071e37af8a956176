"""
backend/kupon/services/provider_rate_limiter.py

Purpose:
    Process-local token bucket per provider. The poller already spaces its
    calls; this caps bursts from manual triggers and the re-evaluation pass.

Dependencies:
    - asyncio
    - time
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field


@dataclass
class _Bucket:
    capacity: float
    refill_per_second: float
    tokens: float
    updated_at: float = field(default_factory=time.monotonic)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def refill(self) -> None:
        now = time.monotonic()
        elapsed = max(0.0, now - self.updated_at)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_per_second)
        self.updated_at = now


class ProviderRateLimiter:
    """Requests-per-minute limiter keyed by provider name."""

    def __init__(self) -> None:
        self._buckets: dict[str, _Bucket] = {}

    def _bucket(self, provider: str, rpm: int) -> _Bucket:
        capacity = max(1.0, float(rpm))
        bucket = self._buckets.get(provider)
        if bucket is None:
            bucket = _Bucket(capacity=capacity, refill_per_second=capacity / 60.0, tokens=capacity)
            self._buckets[provider] = bucket
        elif bucket.capacity != capacity:
            # Config changed: keep remaining tokens, apply the new rate.
            bucket.capacity = capacity
            bucket.refill_per_second = capacity / 60.0
            bucket.tokens = min(bucket.tokens, capacity)
        return bucket

    async def acquire(self, provider: str, rpm: int | None) -> None:
        if not rpm or int(rpm) <= 0:
            return
        bucket = self._bucket(provider.strip().lower(), int(rpm))
        async with bucket.lock:
            bucket.refill()
            if bucket.tokens < 1.0:
                await asyncio.sleep((1.0 - bucket.tokens) / bucket.refill_per_second)
                bucket.refill()
            bucket.tokens -= 1.0


provider_rate_limiter = ProviderRateLimiter()
