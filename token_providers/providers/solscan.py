"""
Solscan Provider - Holder and creator analytics adapter.

Computes top-3 holder concentration, classifies the funding pattern and
estimates the creator's rug history.

A creator's earlier token counts as rugged when the creator no longer
holds any of it (full exit). Creator history is best-effort: if that
lookup fails the token is still analyzed with an unknown creator.
"""

import asyncio
import logging
import re
from typing import Any, Optional

from token_providers.base import BaseProviderClient, to_float
from token_providers.criteria import FilterCriteria, holder_filter_reasons
from token_providers.exceptions import ProviderError
from token_providers.models import CreatorInfo, FundingPattern, HolderData, HolderEntry


logger = logging.getLogger(__name__)


class SolscanClient(BaseProviderClient[HolderData]):
    """
    Solscan public API.

    Endpoints used:
    - /token/meta - Token metadata (supply, creator)
    - /token/holders - Top 50 holders
    - /account/tokens - Token balances of the creator wallet

    Rate limits:
    - 200 requests/minute
    """

    BASE_URL = "https://public-api.solscan.io"
    CACHE_TTL_SECONDS = 600.0

    HOLDER_LIMIT = 50
    TOP_HOLDERS = 3
    MIN_ORGANIC_HOLDERS = 10
    MAX_SINGLE_HOLDER_SHARE = 0.5
    COORDINATED_SHARE = 0.3

    SUSPICIOUS_WALLET_PATTERNS = (
        re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I),
        re.compile(r"^test", re.I),
        re.compile(r"^temp", re.I),
        re.compile(r"^fake", re.I),
    )

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "solscan"

    async def fetch_raw(self, address: str) -> dict[str, Any]:
        meta, holders = await asyncio.gather(
            self._get_json("/token/meta", params={"tokenAddress": address}),
            self._get_json(
                "/token/holders",
                params={"tokenAddress": address, "limit": self.HOLDER_LIMIT, "offset": 0},
            ),
        )
        meta = meta if isinstance(meta, dict) else {}

        creator_tokens = None
        creator = meta.get("creator")
        if creator:
            creator_tokens = await self._fetch_creator_tokens(str(creator))

        return {"meta": meta, "holders": holders, "creator_tokens": creator_tokens}

    async def _fetch_creator_tokens(self, creator: str) -> Optional[list[Any]]:
        try:
            tokens = await self._get_json("/account/tokens", params={"account": creator})
        except ProviderError as e:
            logger.warning(f"[{self.name}] Creator history unavailable for {creator}: {e}")
            return None
        return tokens if isinstance(tokens, list) else None

    def missing_required(self, raw: dict[str, Any]) -> list[str]:
        holders = raw.get("holders")
        if not isinstance(holders, dict) or not isinstance(holders.get("data"), list):
            return ["Holder list unavailable"]
        return []

    def normalize(self, address: str, raw: dict[str, Any]) -> HolderData:
        meta = raw.get("meta") or {}
        holders_raw = raw.get("holders")
        rows = holders_raw.get("data") if isinstance(holders_raw, dict) else None
        rows = [r for r in (rows or []) if isinstance(r, dict)]

        amounts = [to_float(r.get("amount")) for r in rows]
        listed_total = sum(amounts)
        supply = to_float(meta.get("supply"))
        total = supply if supply > 0 else listed_total

        ranked = sorted(zip(rows, amounts), key=lambda pair: pair[1], reverse=True)
        top = tuple(
            HolderEntry(
                address=str(row.get("owner") or row.get("address") or ""),
                amount=amount,
                percentage=(amount / total * 100) if total > 0 else 0.0,
                rank=rank,
            )
            for rank, (row, amount) in enumerate(ranked[: self.TOP_HOLDERS], start=1)
        )
        top_pct = sum(h.percentage for h in top) if total > 0 else 100.0

        holder_count = len(rows)
        if isinstance(holders_raw, dict) and holders_raw.get("total") is not None:
            holder_count = int(to_float(holders_raw.get("total")))

        return HolderData(
            address=address,
            creator=self._creator_info(address, meta.get("creator"), raw.get("creator_tokens")),
            top_holders=top,
            top_holders_percentage=min(100.0, top_pct),
            holder_count=holder_count,
            funding_pattern=self._funding_pattern(rows, amounts),
        )

    def filter_reasons(self, data: HolderData, criteria: FilterCriteria) -> list[str]:
        return holder_filter_reasons(data, criteria)

    def _creator_info(
        self,
        address: str,
        creator: Optional[str],
        tokens: Optional[list[Any]],
    ) -> CreatorInfo:
        if not creator:
            return CreatorInfo()
        if tokens is None:
            return CreatorInfo(address=str(creator))

        previous = [
            t for t in tokens
            if isinstance(t, dict) and t.get("tokenAddress") and t.get("tokenAddress") != address
        ]
        rugged = sum(
            1 for t in previous
            if to_float((t.get("tokenAmount") or {}).get("uiAmount")) == 0
        )
        return CreatorInfo(
            address=str(creator),
            created_tokens=len(previous),
            rugged_tokens=rugged,
        )

    def _funding_pattern(
        self,
        rows: list[dict[str, Any]],
        amounts: list[float],
    ) -> FundingPattern:
        if len(rows) < self.MIN_ORGANIC_HOLDERS:
            return FundingPattern.SUSPICIOUS

        total = sum(amounts)
        if total <= 0 or max(amounts) / total > self.MAX_SINGLE_HOLDER_SHARE:
            return FundingPattern.SUSPICIOUS

        suspicious = sum(
            1 for row in rows
            if any(p.search(str(row.get("address", ""))) for p in self.SUSPICIOUS_WALLET_PATTERNS)
        )
        if suspicious > len(rows) * self.COORDINATED_SHARE:
            return FundingPattern.COORDINATED

        return FundingPattern.ORGANIC
