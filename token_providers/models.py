"""
Provider Models - Canonical per-provider data shapes.

Every provider adapter maps its raw JSON into one of these dataclasses.
Downstream code (scoring, filtering, persistence) only ever sees these.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


class ProviderStatus(Enum):
    """Health status of a provider."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class RiskLevel(Enum):
    """Overall security risk class of a token."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_safety_score(cls, safety_score: float) -> "RiskLevel":
        """Map a 0-10 safety score onto a risk class."""
        if safety_score >= 7:
            return cls.LOW
        if safety_score >= 4:
            return cls.MEDIUM
        return cls.HIGH


class FundingPattern(Enum):
    """How a token's supply appears to have been distributed."""
    ORGANIC = "organic"
    SUSPICIOUS = "suspicious"
    COORDINATED = "coordinated"


# ============================================================
# MARKET (DexScreener)
# ============================================================

@dataclass(frozen=True)
class MarketData:
    """Pair-level market metrics for a token."""
    address: str
    symbol: str = ""
    name: str = ""
    price_usd: float = 0.0
    liquidity_usd: float = 0.0
    volume_24h: float = 0.0
    market_cap: float = 0.0
    price_change_24h: float = 0.0
    age_hours: float = 0.0
    pair_address: str = ""
    dex_id: str = ""
    launch_timestamp_ms: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "address": self.address,
            "symbol": self.symbol,
            "name": self.name,
            "price_usd": self.price_usd,
            "liquidity_usd": self.liquidity_usd,
            "volume_24h": self.volume_24h,
            "market_cap": self.market_cap,
            "price_change_24h": self.price_change_24h,
            "age_hours": self.age_hours,
            "pair_address": self.pair_address,
            "dex_id": self.dex_id,
            "launch_timestamp_ms": self.launch_timestamp_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MarketData":
        """Create from dictionary."""
        return cls(**data)


# ============================================================
# SECURITY (RugCheck)
# ============================================================

@dataclass(frozen=True)
class SecurityData:
    """Contract and liquidity safety checks for a token."""
    address: str
    safety_score: float = 0.0
    honeypot_risk: bool = False
    mint_authority: bool = False
    freeze_authority: bool = False
    liquidity_locked: bool = False
    holder_concentration: float = 100.0
    holder_count: int = 0
    risks: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def risk_level(self) -> RiskLevel:
        """Overall risk class, honeypots are always high."""
        if self.honeypot_risk:
            return RiskLevel.HIGH
        return RiskLevel.from_safety_score(self.safety_score)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "address": self.address,
            "safety_score": self.safety_score,
            "honeypot_risk": self.honeypot_risk,
            "mint_authority": self.mint_authority,
            "freeze_authority": self.freeze_authority,
            "liquidity_locked": self.liquidity_locked,
            "holder_concentration": self.holder_concentration,
            "holder_count": self.holder_count,
            "risks": list(self.risks),
            "warnings": list(self.warnings),
            "risk_level": self.risk_level.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SecurityData":
        """Create from dictionary."""
        data = {k: v for k, v in data.items() if k != "risk_level"}
        data["risks"] = tuple(data.get("risks", ()))
        data["warnings"] = tuple(data.get("warnings", ()))
        return cls(**data)


# ============================================================
# ROUTING (Jupiter)
# ============================================================

@dataclass(frozen=True)
class RoutingData:
    """Swap routing availability and slippage for a token."""
    address: str
    routing_available: bool = False
    route_count: int = 0
    slippage_estimate: float = 0.0
    blacklisted: bool = False
    out_amount: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "address": self.address,
            "routing_available": self.routing_available,
            "route_count": self.route_count,
            "slippage_estimate": self.slippage_estimate,
            "blacklisted": self.blacklisted,
            "out_amount": self.out_amount,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RoutingData":
        """Create from dictionary."""
        return cls(**data)


# ============================================================
# HOLDERS (Solscan)
# ============================================================

@dataclass(frozen=True)
class HolderEntry:
    """One entry of the top-holder list."""
    address: str
    amount: float
    percentage: float
    rank: int


@dataclass(frozen=True)
class CreatorInfo:
    """Track record of the wallet that created the token."""
    address: str = "unknown"
    created_tokens: int = 0
    rugged_tokens: int = 0

    @property
    def success_rate(self) -> float:
        if self.created_tokens == 0:
            return 0.0
        return (self.created_tokens - self.rugged_tokens) / self.created_tokens * 100.0


@dataclass(frozen=True)
class HolderData:
    """Holder distribution and creator analytics for a token."""
    address: str
    creator: CreatorInfo = field(default_factory=CreatorInfo)
    top_holders: tuple[HolderEntry, ...] = ()
    top_holders_percentage: float = 100.0
    holder_count: int = 0
    funding_pattern: FundingPattern = FundingPattern.SUSPICIOUS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "address": self.address,
            "creator": {
                "address": self.creator.address,
                "created_tokens": self.creator.created_tokens,
                "rugged_tokens": self.creator.rugged_tokens,
                "success_rate": self.creator.success_rate,
            },
            "top_holders": [
                {
                    "address": h.address,
                    "amount": h.amount,
                    "percentage": h.percentage,
                    "rank": h.rank,
                }
                for h in self.top_holders
            ],
            "top_holders_percentage": self.top_holders_percentage,
            "holder_count": self.holder_count,
            "funding_pattern": self.funding_pattern.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HolderData":
        """Create from dictionary."""
        creator = data.get("creator") or {}
        return cls(
            address=data["address"],
            creator=CreatorInfo(
                address=creator.get("address", "unknown"),
                created_tokens=creator.get("created_tokens", 0),
                rugged_tokens=creator.get("rugged_tokens", 0),
            ),
            top_holders=tuple(HolderEntry(**h) for h in data.get("top_holders", [])),
            top_holders_percentage=data.get("top_holders_percentage", 100.0),
            holder_count=data.get("holder_count", 0),
            funding_pattern=FundingPattern(data.get("funding_pattern", "suspicious")),
        )


# ============================================================
# PROVIDER RESULT
# ============================================================

@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    """
    One provider's contribution to a token analysis.

    ``absent`` means the provider produced no data (outage, 4xx, retries
    exhausted). ``filter_reasons`` lists every one of this provider's own
    filter rules that the data fails, in evaluation order.
    """
    provider: str
    data: Optional[T] = None
    filter_reasons: tuple[str, ...] = ()
    absent: bool = False
    error: Optional[str] = None
    latency_ms: float = 0.0
    from_cache: bool = False

    @property
    def success(self) -> bool:
        return not self.absent and self.data is not None

    @property
    def filtered(self) -> bool:
        return bool(self.filter_reasons)

    @property
    def filter_reason(self) -> Optional[str]:
        """First failing rule, if any."""
        return self.filter_reasons[0] if self.filter_reasons else None

    @classmethod
    def missing(
        cls,
        provider: str,
        error: str,
        latency_ms: float = 0.0,
    ) -> "ProviderResult[T]":
        """Build an explicit absent result."""
        return cls(
            provider=provider,
            data=None,
            absent=True,
            error=error,
            latency_ms=latency_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (payload excluded)."""
        return {
            "provider": self.provider,
            "success": self.success,
            "filtered": self.filtered,
            "filter_reasons": list(self.filter_reasons),
            "absent": self.absent,
            "error": self.error,
            "latency_ms": round(self.latency_ms, 2),
            "from_cache": self.from_cache,
        }


# ============================================================
# HEALTH
# ============================================================

@dataclass
class ProviderHealth:
    """Rolling health of a provider client."""
    provider: str
    status: ProviderStatus = ProviderStatus.UNKNOWN
    endpoint: str = ""
    last_check: Optional[datetime] = None
    latency_ms: Optional[float] = None
    request_count: int = 0
    error_count: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None

    @property
    def error_rate(self) -> float:
        """Fraction of requests that failed (0.0 - 1.0)."""
        if self.request_count == 0:
            return 0.0
        return self.error_count / self.request_count

    @property
    def healthy(self) -> bool:
        return self.status == ProviderStatus.HEALTHY

    def is_usable(self) -> bool:
        """Check if provider can still be used (healthy or degraded)."""
        return self.status in (
            ProviderStatus.HEALTHY,
            ProviderStatus.DEGRADED,
            ProviderStatus.UNKNOWN,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "provider": self.provider,
            "status": self.status.value,
            "healthy": self.healthy,
            "endpoint": self.endpoint,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "latency_ms": self.latency_ms,
            "request_count": self.request_count,
            "error_count": self.error_count,
            "error_rate": round(self.error_rate, 4),
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
        }
