"""
Jupiter Provider - Swap routing adapter.

Asks for a $500 USDC -> token quote. A quote means the token is routable;
its price impact is used as the slippage estimate.
"""

import asyncio
import logging
from typing import Any, Optional

from token_providers.base import SOL_MINT, USDC_MINT, BaseProviderClient, to_float
from token_providers.criteria import FilterCriteria, routing_filter_reasons
from token_providers.exceptions import ProviderError, ProviderPermanentError
from token_providers.models import RoutingData


logger = logging.getLogger(__name__)


class JupiterClient(BaseProviderClient[RoutingData]):
    """
    Jupiter aggregator API.

    Endpoints used:
    - /v6/quote - Best route for a swap
    - token list - Tags used to detect blacklisted tokens

    Rate limits:
    - 600 requests/minute
    """

    BASE_URL = "https://quote-api.jup.ag/v6"
    TOKEN_LIST_URL = "https://token.jup.ag/all"
    CACHE_TTL_SECONDS = 120.0

    QUOTE_AMOUNT_USDC = 500
    USDC_DECIMALS = 6
    SLIPPAGE_BPS = 300
    BLACKLIST_TAGS = frozenset({"blacklisted", "community-blacklisted"})
    BLACKLIST_TTL_SECONDS = 3600.0
    BLACKLIST_RETRY_SECONDS = 300.0

    def __init__(
        self,
        *args: Any,
        token_list_url: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._token_list_url = token_list_url or self.TOKEN_LIST_URL
        self._blacklist: set[str] = set()
        self._blacklist_expires_at: Optional[float] = None
        self._blacklist_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "jupiter"

    async def fetch_raw(self, address: str) -> dict[str, Any]:
        """Quote plus blacklist membership."""
        quote = await self._fetch_quote(address)
        blacklist = await self._get_blacklist()
        return {"quote": quote, "blacklisted": address in blacklist}

    async def _fetch_quote(self, address: str) -> Optional[dict[str, Any]]:
        """Returns None when Jupiter has no route for the pair."""
        params = {
            "inputMint": USDC_MINT,
            "outputMint": address,
            "amount": str(self.QUOTE_AMOUNT_USDC * 10 ** self.USDC_DECIMALS),
            "slippageBps": self.SLIPPAGE_BPS,
            "onlyDirectRoutes": "false",
        }
        try:
            quote = await self._get_json("/quote", params=params)
        except ProviderPermanentError as e:
            # 400/404 from /quote means no route, not an outage
            if e.status_code in (400, 404):
                logger.debug(f"[{self.name}] No route for {address}: HTTP {e.status_code}")
                return None
            raise
        return quote if isinstance(quote, dict) else None

    async def _get_blacklist(self) -> set[str]:
        async with self._blacklist_lock:
            now = self._clock.monotonic()
            if self._blacklist_expires_at is not None and now < self._blacklist_expires_at:
                return self._blacklist

            try:
                tokens = await self._get_json(self._token_list_url)
            except ProviderError as e:
                logger.warning(f"[{self.name}] Failed to load token blacklist: {e}")
                self._blacklist_expires_at = now + self.BLACKLIST_RETRY_SECONDS
                return self._blacklist

            self._blacklist = {
                token["address"]
                for token in (tokens if isinstance(tokens, list) else [])
                if isinstance(token, dict)
                and token.get("address")
                and self.BLACKLIST_TAGS.intersection(token.get("tags") or [])
            }
            self._blacklist_expires_at = now + self.BLACKLIST_TTL_SECONDS
            logger.info(f"[{self.name}] Loaded {len(self._blacklist)} blacklisted tokens")
            return self._blacklist

    def normalize(self, address: str, raw: dict[str, Any]) -> RoutingData:
        quote = raw.get("quote")
        blacklisted = bool(raw.get("blacklisted", False))

        if not quote:
            return RoutingData(address=address, blacklisted=blacklisted)

        return RoutingData(
            address=address,
            routing_available=True,
            route_count=len(quote.get("routePlan") or []),
            slippage_estimate=abs(to_float(quote.get("priceImpactPct"))),
            blacklisted=blacklisted,
            out_amount=int(to_float(quote.get("outAmount"))),
        )

    def filter_reasons(self, data: RoutingData, criteria: FilterCriteria) -> list[str]:
        return routing_filter_reasons(data, criteria)

    async def ping(self) -> None:
        await self._get_json(
            "/quote",
            params={
                "inputMint": USDC_MINT,
                "outputMint": SOL_MINT,
                "amount": str(10 ** self.USDC_DECIMALS),
                "slippageBps": self.SLIPPAGE_BPS,
            },
        )
