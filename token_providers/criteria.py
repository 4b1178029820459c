"""
Admission Criteria - Filter configuration and per-provider filter rules.

============================================================
EVALUATION ORDER
============================================================
Rules are evaluated in this fixed order and never short-circuit:

  market    : min_age, max_age, min_liquidity, min_volume
  security  : min_safety_score, allow_honeypot
  routing   : require_routing, max_slippage, allow_blacklisted
  holders   : max_creator_rugs, max_top_holders_percentage

A criterion set to None is disabled.

============================================================
"""

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Optional

from token_providers.models import HolderData, MarketData, RoutingData, SecurityData


@dataclass(frozen=True)
class FilterCriteria:
    """
    Immutable admission filter.

    Ages are in hours, money in USD, percentages in 0-100 and the safety
    score on RugCheck's 0-10 scale.
    """
    min_age: Optional[float] = 0.5
    max_age: Optional[float] = 24.0
    min_liquidity: Optional[float] = 5000.0
    min_volume: Optional[float] = 1000.0
    min_safety_score: Optional[float] = 6.0
    allow_honeypot: bool = False
    max_slippage: Optional[float] = 10.0
    require_routing: bool = True
    allow_blacklisted: bool = False
    max_creator_rugs: Optional[int] = 2
    max_top_holders_percentage: Optional[float] = 60.0

    def __post_init__(self) -> None:
        for name in (
            "min_age",
            "max_age",
            "min_liquidity",
            "min_volume",
            "max_slippage",
            "max_creator_rugs",
        ):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} cannot be negative")

        if (
            self.min_age is not None
            and self.max_age is not None
            and self.min_age > self.max_age
        ):
            raise ValueError("min_age cannot exceed max_age")

        if self.min_safety_score is not None and not 0 <= self.min_safety_score <= 10:
            raise ValueError("min_safety_score must be between 0 and 10")

        if (
            self.max_top_holders_percentage is not None
            and not 0 <= self.max_top_holders_percentage <= 100
        ):
            raise ValueError("max_top_holders_percentage must be between 0 and 100")

    def with_updates(self, **changes: Any) -> "FilterCriteria":
        """Return a validated copy with some fields replaced."""
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ValueError(f"Unknown filter fields: {sorted(unknown)}")
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FilterCriteria":
        """Create from dictionary, rejecting unknown keys."""
        return cls().with_updates(**data)


# ============================================================
# PER-PROVIDER RULES
# ============================================================

def market_filter_reasons(data: MarketData, criteria: FilterCriteria) -> list[str]:
    """Age, liquidity and volume checks."""
    reasons = []

    if criteria.min_age is not None and data.age_hours < criteria.min_age:
        reasons.append(f"Token too young: {data.age_hours:.1f}h < {criteria.min_age:g}h")

    if criteria.max_age is not None and data.age_hours > criteria.max_age:
        reasons.append(f"Token too old: {data.age_hours:.1f}h > {criteria.max_age:g}h")

    if criteria.min_liquidity is not None and data.liquidity_usd < criteria.min_liquidity:
        reasons.append(
            f"Insufficient liquidity: ${data.liquidity_usd:,.0f} < ${criteria.min_liquidity:,.0f}"
        )

    if criteria.min_volume is not None and data.volume_24h < criteria.min_volume:
        reasons.append(
            f"Insufficient volume: ${data.volume_24h:,.0f} < ${criteria.min_volume:,.0f}"
        )

    return reasons


def security_filter_reasons(data: SecurityData, criteria: FilterCriteria) -> list[str]:
    """Safety score and honeypot checks."""
    reasons = []

    if criteria.min_safety_score is not None and data.safety_score < criteria.min_safety_score:
        reasons.append(
            f"Safety score too low: {data.safety_score:g} < {criteria.min_safety_score:g}"
        )

    if not criteria.allow_honeypot and data.honeypot_risk:
        reasons.append("Honeypot risk detected")

    return reasons


def routing_filter_reasons(data: RoutingData, criteria: FilterCriteria) -> list[str]:
    """Route availability, slippage and blacklist checks."""
    reasons = []

    if criteria.require_routing and not data.routing_available:
        reasons.append("No routing available through Jupiter")

    if (
        criteria.max_slippage is not None
        and data.routing_available
        and data.slippage_estimate > criteria.max_slippage
    ):
        reasons.append(
            f"Slippage too high: {data.slippage_estimate:.2f}% > {criteria.max_slippage:g}%"
        )

    if not criteria.allow_blacklisted and data.blacklisted:
        reasons.append("Token is blacklisted on Jupiter")

    return reasons


def holder_filter_reasons(data: HolderData, criteria: FilterCriteria) -> list[str]:
    """Creator history and holder concentration checks."""
    reasons = []

    if (
        criteria.max_creator_rugs is not None
        and data.creator.rugged_tokens > criteria.max_creator_rugs
    ):
        reasons.append(
            f"Creator has too many rugs: {data.creator.rugged_tokens} > {criteria.max_creator_rugs}"
        )

    if (
        criteria.max_top_holders_percentage is not None
        and data.top_holders_percentage > criteria.max_top_holders_percentage
    ):
        reasons.append(
            f"Top holders concentration too high: "
            f"{data.top_holders_percentage:.1f}% > {criteria.max_top_holders_percentage:g}%"
        )

    return reasons


__all__ = [
    "FilterCriteria",
    "market_filter_reasons",
    "security_filter_reasons",
    "routing_filter_reasons",
    "holder_filter_reasons",
]
