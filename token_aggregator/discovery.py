"""
Aggregator - Discovery Feeds.

- DexScreenerDiscoveryFeed: latest token profiles from DexScreener
- StaticDiscoveryFeed: a fixed address list (manual runs, tests)
"""

import logging
from typing import Iterable, List

from token_providers.providers.dexscreener import DexScreenerClient
from token_aggregator.interfaces import DiscoveryFeed


logger = logging.getLogger(__name__)


class DexScreenerDiscoveryFeed(DiscoveryFeed):
    """Candidates from DexScreener's latest token profiles."""

    def __init__(self, client: DexScreenerClient, owns_client: bool = False):
        self._client = client
        self._owns_client = owns_client

    async def get_candidate_addresses(self, limit: int) -> List[str]:
        addresses = await self._client.get_latest_token_addresses(limit)
        logger.debug(f"[discovery] DexScreener returned {len(addresses)} candidates")
        return addresses

    async def close(self) -> None:
        if self._owns_client:
            await self._client.close()


class StaticDiscoveryFeed(DiscoveryFeed):
    """Returns the same addresses every run."""

    def __init__(self, addresses: Iterable[str]):
        self.addresses = list(addresses)

    async def get_candidate_addresses(self, limit: int) -> List[str]:
        return self.addresses[:limit]


__all__ = [
    "DexScreenerDiscoveryFeed",
    "StaticDiscoveryFeed",
]
