"""
Provider Health - Aggregated health of all provider clients.

============================================================
HEALTH STATES
============================================================
- HEALTHY: every provider healthy (or not yet exercised)
- DEGRADED: at least one provider degraded or unavailable
- UNHEALTHY: half or more of the providers unavailable

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Sequence

from core.clock import ClockProtocol, SystemClock
from token_providers.base import BaseProviderClient
from token_providers.models import ProviderHealth, ProviderStatus


logger = logging.getLogger(__name__)


class HealthState(Enum):
    """Overall health across providers."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthReport:
    """Per-provider health plus the overall state."""
    state: HealthState
    checked_at: datetime
    providers: dict[str, ProviderHealth] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.state.value,
            "checked_at": self.checked_at.isoformat(),
            "providers": {name: h.to_dict() for name, h in self.providers.items()},
        }


def overall_state(healths: Sequence[ProviderHealth]) -> HealthState:
    """Fold provider statuses into one state."""
    if not healths:
        return HealthState.HEALTHY

    unavailable = sum(1 for h in healths if h.status == ProviderStatus.UNAVAILABLE)
    if unavailable * 2 >= len(healths):
        return HealthState.UNHEALTHY

    if any(h.status in (ProviderStatus.DEGRADED, ProviderStatus.UNAVAILABLE) for h in healths):
        return HealthState.DEGRADED

    return HealthState.HEALTHY


class ProviderHealthMonitor:
    """Probes provider clients and reports their health."""

    def __init__(
        self,
        providers: Sequence[BaseProviderClient],
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._providers = list(providers)
        self._clock = clock or SystemClock()
        self._last_report: Optional[HealthReport] = None

    def snapshot(self) -> HealthReport:
        """Current health from passive tracking, no network calls."""
        healths = {p.name: p.get_health() for p in self._providers}
        return HealthReport(
            state=overall_state(list(healths.values())),
            checked_at=self._clock.now(),
            providers=healths,
        )

    async def check_all(self) -> HealthReport:
        """Actively probe every provider concurrently."""
        results = await asyncio.gather(
            *(p.health_check() for p in self._providers),
            return_exceptions=True,
        )

        healths: dict[str, ProviderHealth] = {}
        for provider, result in zip(self._providers, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"[{provider.name}] Health check crashed: {result}",
                    exc_info=result,
                )
                health = provider.get_health()
                health.last_error = str(result)
            else:
                health = result
            healths[provider.name] = health

        report = HealthReport(
            state=overall_state(list(healths.values())),
            checked_at=self._clock.now(),
            providers=healths,
        )
        if report.state != HealthState.HEALTHY:
            logger.warning(f"Provider health {report.state.value}")
        self._last_report = report
        return report

    @property
    def last_report(self) -> Optional[HealthReport]:
        return self._last_report


__all__ = [
    "HealthReport",
    "HealthState",
    "ProviderHealthMonitor",
    "overall_state",
]
