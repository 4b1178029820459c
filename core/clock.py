"""
Core Module - System Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a unified, testable clock abstraction for the aggregator.

- Wall-clock time (UTC) for timestamps on results and runs
- Monotonic time for windows, TTLs and elapsed-time math
- An awaitable sleep so waits can be simulated in tests

============================================================
DESIGN PRINCIPLES
============================================================
- UTC only for wall-clock values
- Window and TTL arithmetic never uses wall-clock time
- Mockable for testing
- Thread-safe

============================================================
"""

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for system clock."""
    
    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass
    
    @abstractmethod
    def monotonic(self) -> float:
        """Get monotonic seconds (only differences are meaningful)."""
        pass
    
    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for the given number of seconds."""
        pass
    
    def timestamp(self) -> float:
        """Get current Unix timestamp."""
        return self.now().timestamp()
    
    def elapsed_ms(self, started: float) -> float:
        """Milliseconds elapsed since a monotonic reading."""
        return (self.monotonic() - started) * 1000.0


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """
    Production clock using actual system time.
    
    All wall-clock times are in UTC.
    """
    
    def now(self) -> datetime:
        """Get current UTC datetime."""
        return datetime.now(timezone.utc)
    
    def monotonic(self) -> float:
        return time.monotonic()
    
    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.
    
    Allows time manipulation for deterministic tests. ``sleep`` does not
    block; it advances both the wall clock and the monotonic reading, then
    yields control to the event loop once.
    """
    
    def __init__(
        self,
        initial_time: Optional[datetime] = None,
        initial_monotonic: float = 1000.0,
    ):
        """
        Initialize mock clock.
        
        Args:
            initial_time: Starting wall-clock time (defaults to current UTC)
            initial_monotonic: Starting monotonic reading
        """
        self._time = initial_time or datetime.now(timezone.utc)
        self._monotonic = initial_monotonic
        self._lock = threading.Lock()
        self.sleeps: list[float] = []
    
    def now(self) -> datetime:
        """Get current (mocked) datetime."""
        with self._lock:
            return self._time
    
    def monotonic(self) -> float:
        with self._lock:
            return self._monotonic
    
    async def sleep(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)
    
    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.
        
        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        delta = timedelta(seconds=seconds, **kwargs)
        with self._lock:
            self._time = self._time + delta
            self._monotonic += delta.total_seconds()


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
]
