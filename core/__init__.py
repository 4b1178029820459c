"""
Core Module Package.

Infrastructure shared by the provider, pipeline and aggregator packages.

Components:
- clock: Unified, mockable time abstraction
"""

from core.clock import ClockProtocol, MockClock, SystemClock

__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
]

__version__ = "1.0.0"
