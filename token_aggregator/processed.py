"""
Aggregator - Processed Set.

Bounded record of recently analyzed addresses. An address stays "seen"
for ``ttl_seconds``; when full, the least recently marked address is
evicted first. Only the scheduler's run loop mutates it.
"""

import logging
from collections import OrderedDict
from typing import Dict, Optional

from core.clock import ClockProtocol, SystemClock
from token_aggregator.models import TokenCandidate


logger = logging.getLogger(__name__)


class ProcessedSet:
    """TTL + LRU set of TokenCandidates keyed by address."""

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_size: int = 10000,
        clock: Optional[ClockProtocol] = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock or SystemClock()
        # address -> (candidate, monotonic time marked)
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self._evictions = 0

    def contains(self, address: str) -> bool:
        """True if the address was marked within the TTL."""
        entry = self._entries.get(address)
        if entry is None:
            return False
        _, marked_at = entry
        if self._clock.monotonic() - marked_at >= self.ttl_seconds:
            del self._entries[address]
            return False
        return True

    __contains__ = contains

    def mark(self, address: str) -> TokenCandidate:
        """Record an address as processed now."""
        existing = self._entries.pop(address, None)
        candidate = existing[0] if existing else TokenCandidate(
            address=address,
            first_seen_at=self._clock.now(),
        )
        self._entries[address] = (candidate, self._clock.monotonic())

        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug(f"[processed] Evicted {evicted}")

        return candidate

    def get(self, address: str) -> Optional[TokenCandidate]:
        if not self.contains(address):
            return None
        return self._entries[address][0]

    def discard(self, address: str) -> bool:
        return self._entries.pop(address, None) is not None

    def cleanup(self) -> int:
        """Drop expired addresses."""
        now = self._clock.monotonic()
        expired = [a for a, (_, t) in self._entries.items() if now - t >= self.ttl_seconds]
        for address in expired:
            del self._entries[address]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def reconfigure(self, ttl_seconds: float, max_size: int) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self._evictions += 1

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, float]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
            "evictions": self._evictions,
        }


__all__ = ["ProcessedSet"]
