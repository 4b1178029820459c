"""
Scoring Engine.

============================================================
PURPOSE
============================================================
Deterministic weighted-point score (0-100) plus human-readable
recommendations.

BUCKETS:
- liquidity        0-30
- volume           0-25
- security         0-25, minus a penalty for medium/high risk
- momentum         0-20 (positive 24h price change)

Missing data earns zero points in the affected buckets. Missing
security data also counts as high risk. Missing routing or holder data
costs ``missing_stage_penalty`` each.

The tier boundaries are heuristics and live in ScoringConfig.

============================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from token_providers.models import (
    HolderData,
    MarketData,
    RiskLevel,
    RoutingData,
    SecurityData,
)


logger = logging.getLogger(__name__)


Tiers = Tuple[Tuple[float, float], ...]


@dataclass(frozen=True)
class ScoringConfig:
    """Tier boundaries as (strictly greater than, points), highest first."""
    liquidity_tiers: Tiers = ((100_000, 30), (50_000, 20), (10_000, 10))
    volume_tiers: Tiers = ((500_000, 25), (100_000, 20), (50_000, 15), (10_000, 10))
    momentum_tiers: Tiers = ((50, 20), (20, 15), (10, 10), (5, 5))

    renounced_points: float = 9.0
    liquidity_locked_points: float = 8.0
    clean_contract_points: float = 8.0

    risk_penalties: Dict[RiskLevel, float] = field(
        default_factory=lambda: {
            RiskLevel.LOW: 0.0,
            RiskLevel.MEDIUM: 10.0,
            RiskLevel.HIGH: 20.0,
        }
    )
    missing_stage_penalty: float = 5.0

    low_liquidity_usd: float = 10_000.0
    extreme_move_percent: float = 100.0


@dataclass(frozen=True)
class ScoreBreakdown:
    """Points per bucket and the clamped total."""
    liquidity: float = 0.0
    volume: float = 0.0
    security: float = 0.0
    momentum: float = 0.0
    penalty: float = 0.0
    total: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "liquidity": self.liquidity,
            "volume": self.volume,
            "security": self.security,
            "momentum": self.momentum,
            "penalty": self.penalty,
            "total": self.total,
        }


def _tier_points(value: float, tiers: Tiers) -> float:
    for threshold, points in tiers:
        if value > threshold:
            return points
    return 0.0


class ScoringEngine:
    """Maps normalized provider data to a 0-100 score."""

    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self.config = config or ScoringConfig()

    def score(
        self,
        market: Optional[MarketData],
        security: Optional[SecurityData],
        routing: Optional[RoutingData] = None,
        holders: Optional[HolderData] = None,
    ) -> ScoreBreakdown:
        cfg = self.config

        liquidity = volume = momentum = 0.0
        if market is not None:
            liquidity = _tier_points(market.liquidity_usd, cfg.liquidity_tiers)
            volume = _tier_points(market.volume_24h, cfg.volume_tiers)
            momentum = _tier_points(market.price_change_24h, cfg.momentum_tiers)

        security_points = 0.0
        risk = RiskLevel.HIGH
        if security is not None:
            if not security.mint_authority and not security.freeze_authority:
                security_points += cfg.renounced_points
            if security.liquidity_locked:
                security_points += cfg.liquidity_locked_points
            if not security.honeypot_risk and security.risk_level == RiskLevel.LOW:
                security_points += cfg.clean_contract_points
            risk = security.risk_level

        penalty = cfg.risk_penalties.get(risk, 0.0)
        penalty += cfg.missing_stage_penalty * sum(1 for d in (routing, holders) if d is None)

        raw_total = liquidity + volume + security_points + momentum - penalty
        total = max(0.0, min(100.0, raw_total))

        return ScoreBreakdown(
            liquidity=liquidity,
            volume=volume,
            security=security_points,
            momentum=momentum,
            penalty=penalty,
            total=round(total, 2),
        )

    def recommendations(
        self,
        score: float,
        market: Optional[MarketData],
        security: Optional[SecurityData],
    ) -> List[str]:
        """Human-readable notes for a scored token."""
        cfg = self.config
        notes = []

        if score >= 80:
            notes.append("High-quality token with strong fundamentals")
        elif score >= 60:
            notes.append("Moderate potential, monitor closely")
        elif score >= 40:
            notes.append("High risk, proceed with caution")
        else:
            notes.append("Very high risk, avoid investment")

        if market is not None:
            if market.liquidity_usd < cfg.low_liquidity_usd:
                notes.append("Low liquidity - high slippage risk")
            if abs(market.price_change_24h) > cfg.extreme_move_percent:
                notes.append("Extreme price movement - potential pump and dump")

        if security is None:
            notes.append("Security data unavailable")
        elif security.honeypot_risk:
            notes.append("High honeypot risk detected")

        return notes


def describe(breakdown: ScoreBreakdown, absent: Sequence[str] = ()) -> str:
    """One-line summary for logs."""
    parts = [f"score={breakdown.total:.1f}", f"penalty={breakdown.penalty:.0f}"]
    if absent:
        parts.append(f"absent={','.join(absent)}")
    return " ".join(parts)


__all__ = [
    "ScoreBreakdown",
    "ScoringConfig",
    "ScoringEngine",
    "describe",
]
