"""
Rate Limiter - Per-provider sliding-window request budgets.

============================================================
RESPONSIBILITY
============================================================
Guards every outgoing provider request.

- acquire() returns immediately while the provider is under budget
- Otherwise it waits until the oldest request leaves the window
- If that wait would exceed ``max_wait_seconds`` it raises RateLimited

============================================================
CONCURRENCY
============================================================
Each provider has its own asyncio.Lock. A waiter keeps the lock while
it sleeps, so callers are served in arrival order and no slot is ever
counted twice. Window math uses monotonic time only.

============================================================
"""

import asyncio
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

from core.clock import ClockProtocol, SystemClock
from token_providers.exceptions import RateLimited


logger = logging.getLogger(__name__)


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass(frozen=True)
class RateLimitConfig:
    """Request budget for one provider."""
    max_requests: int
    window_seconds: float = 60.0
    max_wait_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if self.max_wait_seconds is not None and self.max_wait_seconds < 0:
            raise ValueError("max_wait_seconds cannot be negative")


# Free-tier budgets per minute
DEFAULT_RATE_LIMITS: dict[str, RateLimitConfig] = {
    "dexscreener": RateLimitConfig(max_requests=300),
    "rugcheck": RateLimitConfig(max_requests=100),
    "jupiter": RateLimitConfig(max_requests=600),
    "solscan": RateLimitConfig(max_requests=200),
}


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: float = 0.1

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def compute_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay = self.base_delay * (self.backoff_factor ** attempt)
        if self.jitter > 0:
            delay += delay * self.jitter * random.random()
        return min(delay, self.max_delay)


@dataclass
class RateLimitState:
    """Snapshot of one provider's window."""
    provider: str
    window_start: float
    request_count: int
    max_requests: int
    window_seconds: float
    total_acquired: int = 0
    total_waits: int = 0
    total_rejected: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.max_requests - self.request_count)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "provider": self.provider,
            "request_count": self.request_count,
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "remaining": self.remaining,
            "total_acquired": self.total_acquired,
            "total_waits": self.total_waits,
            "total_rejected": self.total_rejected,
        }


@dataclass
class _Bucket:
    config: RateLimitConfig
    timestamps: deque = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    acquired: int = 0
    waits: int = 0
    rejected: int = 0

    def prune(self, now: float) -> None:
        window = self.config.window_seconds
        while self.timestamps and now - self.timestamps[0] >= window:
            self.timestamps.popleft()


# ============================================================
# RATE LIMITER
# ============================================================

class RateLimiter:
    """Sliding-window rate limiter keyed by provider id."""

    def __init__(
        self,
        limits: Optional[dict[str, RateLimitConfig]] = None,
        default_limit: Optional[RateLimitConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._default_limit = default_limit or RateLimitConfig(max_requests=60)
        self._buckets: dict[str, _Bucket] = {}
        for provider_id, config in (limits if limits is not None else DEFAULT_RATE_LIMITS).items():
            self._buckets[provider_id] = _Bucket(config=config)

    def configure(self, provider_id: str, config: RateLimitConfig) -> None:
        """Replace a provider's budget. Recorded requests are kept."""
        bucket = self._buckets.get(provider_id)
        if bucket is None:
            self._buckets[provider_id] = _Bucket(config=config)
        else:
            bucket.config = config

    def _bucket(self, provider_id: str) -> _Bucket:
        bucket = self._buckets.get(provider_id)
        if bucket is None:
            bucket = _Bucket(config=self._default_limit)
            self._buckets[provider_id] = bucket
        return bucket

    async def acquire(self, provider_id: str) -> None:
        """
        Take one request slot for ``provider_id``.

        Raises:
            RateLimited: if the wait for a slot exceeds max_wait_seconds
        """
        bucket = self._bucket(provider_id)

        async with bucket.lock:
            while True:
                now = self._clock.monotonic()
                bucket.prune(now)

                if len(bucket.timestamps) < bucket.config.max_requests:
                    bucket.timestamps.append(now)
                    bucket.acquired += 1
                    return

                wait = bucket.timestamps[0] + bucket.config.window_seconds - now
                max_wait = bucket.config.max_wait_seconds
                if max_wait is not None and wait > max_wait:
                    bucket.rejected += 1
                    raise RateLimited(
                        message=f"Budget exhausted, next slot in {wait:.2f}s",
                        provider_name=provider_id,
                        retry_after_seconds=wait,
                    )

                bucket.waits += 1
                logger.debug(f"[{provider_id}] Rate limit reached, waiting {wait:.2f}s")
                await self._clock.sleep(wait)

    def get_state(self, provider_id: str) -> RateLimitState:
        """Get the current window for a provider."""
        bucket = self._bucket(provider_id)
        now = self._clock.monotonic()
        bucket.prune(now)
        return RateLimitState(
            provider=provider_id,
            window_start=bucket.timestamps[0] if bucket.timestamps else now,
            request_count=len(bucket.timestamps),
            max_requests=bucket.config.max_requests,
            window_seconds=bucket.config.window_seconds,
            total_acquired=bucket.acquired,
            total_waits=bucket.waits,
            total_rejected=bucket.rejected,
        )

    def get_all_states(self) -> dict[str, dict[str, Any]]:
        return {pid: self.get_state(pid).to_dict() for pid in self._buckets}

    def reset(self, provider_id: Optional[str] = None) -> None:
        """Forget recorded requests for one provider or all of them."""
        targets = [provider_id] if provider_id else list(self._buckets)
        for pid in targets:
            bucket = self._buckets.get(pid)
            if bucket is not None:
                bucket.timestamps.clear()


__all__ = [
    "DEFAULT_RATE_LIMITS",
    "RateLimitConfig",
    "RateLimitState",
    "RateLimiter",
    "RetryPolicy",
]
