"""
Pipeline Models.

============================================================
PURPOSE
============================================================
Data structures produced by the analysis pipeline.

- StageName: the four provider stages and their reason prefixes
- CombinedAnalysis: merged, scored and filtered result for one token
- PipelineConfig: tunables of the pipeline itself

============================================================
INVARIANTS
============================================================
- passed == (len(failed_filters) == 0)
- 0 <= overall_score <= 100
- every stage is either present or listed in absent_stages

============================================================
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from token_providers.criteria import FilterCriteria
from token_providers.models import (
    HolderData,
    MarketData,
    RiskLevel,
    RoutingData,
    SecurityData,
)
from token_pipeline.exceptions import ValidationError


_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def validate_address(address: Any) -> str:
    """
    Check a Solana base58 address.

    Raises:
        ValidationError: if the value is not a plausible address
    """
    if not isinstance(address, str):
        raise ValidationError(
            f"Address must be a string, got {type(address).__name__}",
            field_name="address",
            value=address,
        )
    candidate = address.strip()
    if not _ADDRESS_RE.match(candidate):
        raise ValidationError(
            f"Invalid token address: {address!r}",
            field_name="address",
            value=address,
        )
    return candidate


# ============================================================
# STAGES
# ============================================================

class StageName(Enum):
    """Analysis stages in fixed evaluation order."""
    MARKET = "market"
    SECURITY = "security"
    ROUTING = "routing"
    HOLDERS = "holders"

    @property
    def prefix(self) -> str:
        """Prefix used on failed-filter reasons."""
        return _STAGE_PREFIXES[self]


_STAGE_PREFIXES = {
    StageName.MARKET: "DEX",
    StageName.SECURITY: "Security",
    StageName.ROUTING: "Routing",
    StageName.HOLDERS: "Creator",
}

STAGE_ORDER: Tuple[StageName, ...] = (
    StageName.MARKET,
    StageName.SECURITY,
    StageName.ROUTING,
    StageName.HOLDERS,
)


# ============================================================
# COMBINED ANALYSIS
# ============================================================

@dataclass(frozen=True)
class CombinedAnalysis:
    """
    The unit of truth handed to persistence and broadcast.

    A stage whose provider produced nothing is None here and named in
    ``absent_stages``.
    """
    address: str
    market: Optional[MarketData]
    security: Optional[SecurityData]
    routing: Optional[RoutingData]
    holders: Optional[HolderData]
    overall_score: float
    passed: bool
    failed_filters: Tuple[str, ...]
    timestamp: datetime
    absent_stages: Tuple[str, ...] = ()
    score_breakdown: Dict[str, float] = field(default_factory=dict)
    recommendations: Tuple[str, ...] = ()
    stages: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.passed != (len(self.failed_filters) == 0):
            raise ValueError("passed must be True exactly when failed_filters is empty")
        if not 0 <= self.overall_score <= 100:
            raise ValueError(f"overall_score out of range: {self.overall_score}")
        for stage in StageName:
            present = getattr(self, stage.value) is not None
            if present == (stage.value in self.absent_stages):
                raise ValueError(f"Stage {stage.value} must be present or listed as absent")

    @property
    def risk_level(self) -> RiskLevel:
        """Unknown security counts as high risk."""
        if self.security is None:
            return RiskLevel.HIGH
        return self.security.risk_level

    @property
    def symbol(self) -> str:
        return self.market.symbol if self.market else ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "address": self.address,
            "market": self.market.to_dict() if self.market else None,
            "security": self.security.to_dict() if self.security else None,
            "routing": self.routing.to_dict() if self.routing else None,
            "holders": self.holders.to_dict() if self.holders else None,
            "overall_score": self.overall_score,
            "passed": self.passed,
            "failed_filters": list(self.failed_filters),
            "timestamp": self.timestamp.isoformat(),
            "absent_stages": list(self.absent_stages),
            "score_breakdown": dict(self.score_breakdown),
            "recommendations": list(self.recommendations),
            "risk_level": self.risk_level.value,
            "stages": {k: dict(v) for k, v in self.stages.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CombinedAnalysis":
        """Create from dictionary."""
        return cls(
            address=data["address"],
            market=MarketData.from_dict(data["market"]) if data.get("market") else None,
            security=SecurityData.from_dict(data["security"]) if data.get("security") else None,
            routing=RoutingData.from_dict(data["routing"]) if data.get("routing") else None,
            holders=HolderData.from_dict(data["holders"]) if data.get("holders") else None,
            overall_score=data["overall_score"],
            passed=data["passed"],
            failed_filters=tuple(data.get("failed_filters", ())),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            absent_stages=tuple(data.get("absent_stages", ())),
            score_breakdown=dict(data.get("score_breakdown", {})),
            recommendations=tuple(data.get("recommendations", ())),
            stages=dict(data.get("stages", {})),
        )


# ============================================================
# CONFIG
# ============================================================

@dataclass
class PipelineConfig:
    """Tunables of the analysis pipeline."""

    # Freshness window for merged analyses (about one scheduler interval)
    analysis_cache_ttl_seconds: float = 300.0

    # Per-stage wall-clock limit on top of the clients' own HTTP timeouts
    stage_timeout_seconds: float = 60.0

    # Absent stages fail the token with "<Prefix>: data unavailable"
    strict_stages: bool = False

    default_max_concurrent: int = 5

    def validate(self) -> List[str]:
        """Return a list of validation errors (empty when valid)."""
        errors = []
        if self.analysis_cache_ttl_seconds <= 0:
            errors.append("analysis_cache_ttl_seconds must be positive")
        if self.stage_timeout_seconds <= 0:
            errors.append("stage_timeout_seconds must be positive")
        if self.default_max_concurrent < 1:
            errors.append("default_max_concurrent must be at least 1")
        return errors


__all__ = [
    "CombinedAnalysis",
    "FilterCriteria",
    "PipelineConfig",
    "STAGE_ORDER",
    "StageName",
    "validate_address",
]
