"""
DexScreener Provider - Market data adapter.

Implements pair-level market metrics from the DexScreener public API.
No authentication required.
"""

import logging
from typing import Any, Optional

from token_providers.base import BaseProviderClient, to_float
from token_providers.criteria import FilterCriteria, market_filter_reasons
from token_providers.exceptions import NormalizationError
from token_providers.models import MarketData


logger = logging.getLogger(__name__)


class DexScreenerClient(BaseProviderClient[MarketData]):
    """
    DexScreener public API.

    Endpoints used:
    - /latest/dex/tokens/{address} - All pairs for a token
    - /token-profiles/latest/v1 - Recently listed token profiles

    Rate limits:
    - 300 requests/minute
    """

    BASE_URL = "https://api.dexscreener.com/latest/dex"
    PROFILES_URL = "https://api.dexscreener.com/token-profiles/latest/v1"
    CACHE_TTL_SECONDS = 60.0
    NEW_TOKEN_CACHE_TTL_SECONDS = 30.0
    NEW_TOKEN_AGE_HOURS = 1.0
    # Rough estimate when the API reports no market cap
    MARKET_CAP_LIQUIDITY_MULTIPLE = 10.0

    def __init__(self, *args: Any, chain: str = "solana", **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._chain = chain

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "dexscreener"

    async def fetch_raw(self, address: str) -> dict[str, Any]:
        """Fetch every pair trading this token."""
        data = await self._get_json(f"/tokens/{address}")
        if not isinstance(data, dict):
            raise NormalizationError(
                message="Expected an object with a 'pairs' list",
                provider_name=self.name,
                raw_data=data,
            )
        return data

    def _select_pair(self, raw: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Deepest-liquidity pair on our chain."""
        pairs = [
            p for p in (raw.get("pairs") or [])
            if isinstance(p, dict)
            and str(p.get("chainId", self._chain)).lower() == self._chain
        ]
        if not pairs:
            return None
        return max(pairs, key=lambda p: to_float((p.get("liquidity") or {}).get("usd")))

    def missing_required(self, raw: dict[str, Any]) -> list[str]:
        pair = self._select_pair(raw)
        if pair is None:
            return ["No DEXScreener data found"]

        missing = []
        if (pair.get("liquidity") or {}).get("usd") is None:
            missing.append("Missing liquidity data")
        if pair.get("pairCreatedAt") is None:
            missing.append("Missing pair creation time")
        return missing

    def normalize(self, address: str, raw: dict[str, Any]) -> MarketData:
        """Map the best pair onto MarketData."""
        pair = self._select_pair(raw)
        if pair is None:
            return MarketData(address=address)

        base_token = pair.get("baseToken") or {}
        price = to_float(pair.get("priceUsd"))
        liquidity = to_float((pair.get("liquidity") or {}).get("usd"))

        market_cap = to_float(pair.get("marketCap")) or to_float(pair.get("fdv"))
        if not market_cap and price > 0:
            market_cap = liquidity * self.MARKET_CAP_LIQUIDITY_MULTIPLE

        created_ms = pair.get("pairCreatedAt")
        age_hours = 0.0
        if created_ms is not None:
            now_ms = self._clock.now().timestamp() * 1000
            age_hours = max(0.0, (now_ms - int(created_ms)) / 3_600_000)

        return MarketData(
            address=address,
            symbol=str(base_token.get("symbol", "")),
            name=str(base_token.get("name", "")),
            price_usd=price,
            liquidity_usd=liquidity,
            volume_24h=to_float((pair.get("volume") or {}).get("h24")),
            market_cap=market_cap,
            price_change_24h=to_float((pair.get("priceChange") or {}).get("h24")),
            age_hours=age_hours,
            pair_address=str(pair.get("pairAddress", "")),
            dex_id=str(pair.get("dexId", "")),
            launch_timestamp_ms=int(created_ms) if created_ms is not None else None,
        )

    def filter_reasons(self, data: MarketData, criteria: FilterCriteria) -> list[str]:
        return market_filter_reasons(data, criteria)

    def cache_ttl(self, data: MarketData) -> float:
        # New tokens move fast
        if data.age_hours < self.NEW_TOKEN_AGE_HOURS:
            return self.NEW_TOKEN_CACHE_TTL_SECONDS
        return self.CACHE_TTL_SECONDS

    async def get_latest_token_addresses(self, limit: int) -> list[str]:
        """
        Recently listed token addresses on our chain, newest first.

        Raises:
            ProviderError: if the profiles endpoint fails
        """
        raw = await self._get_json(self.PROFILES_URL)
        if not isinstance(raw, list):
            raise NormalizationError(
                message="Expected a list of token profiles",
                provider_name=self.name,
                raw_data=raw,
            )

        addresses: list[str] = []
        seen: set[str] = set()
        for profile in raw:
            if not isinstance(profile, dict):
                continue
            if str(profile.get("chainId", "")).lower() != self._chain:
                continue
            token_address = profile.get("tokenAddress")
            if not token_address or token_address in seen:
                continue
            seen.add(token_address)
            addresses.append(token_address)
            if len(addresses) >= limit:
                break
        return addresses

