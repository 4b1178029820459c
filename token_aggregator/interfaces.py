"""
Aggregator - Collaborator Interfaces.

The scheduler consumes these; concrete implementations live in
``discovery`` and ``storage`` or are supplied by the host application.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from token_pipeline.events import Event
from token_pipeline.models import CombinedAnalysis


class DiscoveryFeed(ABC):
    """Source of newly listed token addresses."""

    @abstractmethod
    async def get_candidate_addresses(self, limit: int) -> List[str]:
        """Return up to ``limit`` candidate addresses, newest first."""
        pass

    async def close(self) -> None:
        pass


class AnalysisStore(ABC):
    """Persistence for passing analyses."""

    @abstractmethod
    async def store_analysis(self, analysis: CombinedAnalysis) -> None:
        """
        Persist one analysis.

        Raises:
            PersistenceError: if the write fails
        """
        pass

    @abstractmethod
    async def get_latest_analysis(self, address: str) -> Optional[CombinedAnalysis]:
        pass

    async def close(self) -> None:
        pass


class EventPublisher(ABC):
    """Outbound event sink (broadcast, message bus, ...)."""

    @abstractmethod
    async def publish(self, event: Event) -> None:
        pass


__all__ = [
    "AnalysisStore",
    "DiscoveryFeed",
    "EventPublisher",
]
