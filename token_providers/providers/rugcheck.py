"""
RugCheck Provider - Token security adapter.

Turns the RugCheck report into a 0-10 safety score plus honeypot flag.

Safety score starts at 10 and loses points for:
- mint authority not renounced (-2)
- freeze authority not renounced (-2)
- top-10 holder concentration > 60% (-3), or > 40% (-1)
- liquidity not locked (-3)
- suspicious name or symbol (-1)
"""

import logging
from typing import Any

from token_providers.base import BaseProviderClient, to_float
from token_providers.criteria import FilterCriteria, security_filter_reasons
from token_providers.exceptions import NormalizationError
from token_providers.models import SecurityData


logger = logging.getLogger(__name__)


class RugCheckClient(BaseProviderClient[SecurityData]):
    """
    RugCheck public API.

    Endpoints used:
    - /v1/tokens/{address}/report - Full token report

    Rate limits:
    - 100 requests/minute
    """

    BASE_URL = "https://api.rugcheck.xyz/v1"
    CACHE_TTL_SECONDS = 300.0

    LP_LOCKED_THRESHOLD_PCT = 50.0
    HIGH_CONCENTRATION_PCT = 60.0
    MODERATE_CONCENTRATION_PCT = 40.0
    HONEYPOT_CONCENTRATION_PCT = 90.0
    HONEYPOT_MIN_HOLDERS = 5

    SUSPICIOUS_PATTERNS = ("scam", "fake", "copy", "duplicate", "💎", "🚀")
    HONEYPOT_INDICATORS = ("selfdestruct", "blocktransfer", "maxsell", "blacklist")

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "rugcheck"

    async def fetch_raw(self, address: str) -> dict[str, Any]:
        data = await self._get_json(f"/tokens/{address}/report")
        if not isinstance(data, dict):
            raise NormalizationError(
                message="Expected a report object",
                provider_name=self.name,
                raw_data=data,
            )
        return data

    def missing_required(self, raw: dict[str, Any]) -> list[str]:
        # Authorities may be null (renounced) but the keys must be present
        return [
            f"Missing security field: {key}"
            for key in ("mintAuthority", "freezeAuthority")
            if key not in raw
        ]

    def normalize(self, address: str, raw: dict[str, Any]) -> SecurityData:
        """Score the report."""
        risks: list[str] = []
        warnings: list[str] = []
        score = 10.0

        # A missing key counts as not renounced
        mint_authority = raw.get("mintAuthority", "") is not None
        freeze_authority = raw.get("freezeAuthority", "") is not None

        if mint_authority:
            risks.append("Mint authority not renounced - unlimited minting possible")
            score -= 2
        if freeze_authority:
            risks.append("Freeze authority not renounced - accounts can be frozen")
            score -= 2

        top_holders = [h for h in (raw.get("topHolders") or []) if isinstance(h, dict)]
        concentration = self._holder_concentration(top_holders)
        if concentration > self.HIGH_CONCENTRATION_PCT:
            risks.append(f"High holder concentration: {concentration:.1f}%")
            score -= 3
        elif concentration > self.MODERATE_CONCENTRATION_PCT:
            warnings.append(f"Moderate holder concentration: {concentration:.1f}%")
            score -= 1

        liquidity_locked = self._liquidity_locked(raw.get("markets") or [])
        if not liquidity_locked:
            risks.append("Liquidity not locked - rug pull risk")
            score -= 3

        meta = raw.get("tokenMeta") or {}
        token_name = str(meta.get("name") or "")
        token_symbol = str(meta.get("symbol") or "")
        if self._is_suspicious_name(token_name, token_symbol):
            warnings.append("Suspicious token name pattern detected")
            score -= 1

        for risk in raw.get("risks") or []:
            if not isinstance(risk, dict) or not risk.get("name"):
                continue
            if risk.get("level") == "danger":
                risks.append(str(risk["name"]))
            else:
                warnings.append(str(risk["name"]))

        if raw.get("rugged"):
            risks.append("Token reported as rugged")
            score = 0

        holder_count = int(raw.get("totalHolders") or len(top_holders))
        honeypot = (
            holder_count < self.HONEYPOT_MIN_HOLDERS
            or concentration > self.HONEYPOT_CONCENTRATION_PCT
            or any(i in token_name.lower() for i in self.HONEYPOT_INDICATORS)
        )

        return SecurityData(
            address=address,
            safety_score=max(0.0, score),
            honeypot_risk=honeypot,
            mint_authority=mint_authority,
            freeze_authority=freeze_authority,
            liquidity_locked=liquidity_locked,
            holder_concentration=concentration,
            holder_count=holder_count,
            risks=tuple(risks),
            warnings=tuple(warnings),
        )

    def filter_reasons(self, data: SecurityData, criteria: FilterCriteria) -> list[str]:
        return security_filter_reasons(data, criteria)

    def _holder_concentration(self, top_holders: list[dict[str, Any]]) -> float:
        """Percent of supply held by the top 10 holders."""
        if not top_holders:
            return 100.0  # assume worst case
        pcts = sorted((to_float(h.get("pct")) for h in top_holders), reverse=True)
        return min(100.0, sum(pcts[:10]))

    def _liquidity_locked(self, markets: list[Any]) -> bool:
        locked = [
            to_float((m.get("lp") or {}).get("lpLockedPct"))
            for m in markets
            if isinstance(m, dict)
        ]
        return bool(locked) and max(locked) >= self.LP_LOCKED_THRESHOLD_PCT

    def _is_suspicious_name(self, name: str, symbol: str) -> bool:
        text = f"{name} {symbol}".lower()
        return any(pattern in text for pattern in self.SUSPICIOUS_PATTERNS)
