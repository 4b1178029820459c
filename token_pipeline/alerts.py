"""
Token Alert Rules.

============================================================
PURPOSE
============================================================
Deterministic alert rules evaluated against a CombinedAnalysis.

PRINCIPLES:
- All thresholds are explicit and configurable
- Each rule is evaluable on its own
- Alerts are emitted, never delivered, from here

RULES:
- new_token: token younger than ``new_token_age_hours``
- price_spike: 24h change above ``price_spike_percent``; severity high
  above ``price_spike_high_percent``
- volume_spike: 24h volume above ``volume_spike_multiple`` x market cap
- security_risk: overall risk classified high

============================================================
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from core.clock import ClockProtocol, SystemClock
from token_providers.models import RiskLevel
from token_pipeline.models import CombinedAnalysis


logger = logging.getLogger(__name__)


class AlertType(Enum):
    NEW_TOKEN = "new_token"
    PRICE_SPIKE = "price_spike"
    VOLUME_SPIKE = "volume_spike"
    SECURITY_RISK = "security_risk"


class AlertSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class AlertThresholds:
    """Configurable alert thresholds."""
    new_token_age_hours: float = 24.0
    price_spike_percent: float = 50.0
    price_spike_high_percent: float = 100.0
    volume_spike_multiple: float = 1.0

    def __post_init__(self) -> None:
        if self.new_token_age_hours < 0:
            raise ValueError("new_token_age_hours cannot be negative")
        if self.price_spike_high_percent < self.price_spike_percent:
            raise ValueError("price_spike_high_percent must be >= price_spike_percent")
        if self.volume_spike_multiple <= 0:
            raise ValueError("volume_spike_multiple must be positive")

    def with_updates(self, **changes: Any) -> "AlertThresholds":
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ValueError(f"Unknown alert fields: {sorted(unknown)}")
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Alert:
    """Self-contained alert value."""
    id: str
    token_address: str
    type: AlertType
    severity: AlertSeverity
    message: str
    timestamp: datetime
    data: Dict[str, Any] = field(default_factory=dict)
    acknowledged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "token_address": self.token_address,
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "acknowledged": self.acknowledged,
        }


# ============================================================
# RULES
# ============================================================

class AlertRule(ABC):
    """
    Base class for alert rules.

    All rules MUST be deterministic.
    """

    alert_type: AlertType

    def __init__(self, thresholds: AlertThresholds, clock: ClockProtocol):
        self.thresholds = thresholds
        self._clock = clock

    @abstractmethod
    def evaluate(self, analysis: CombinedAnalysis) -> Optional[Alert]:
        """Returns Alert if triggered, None otherwise."""
        pass

    def trigger(
        self,
        analysis: CombinedAnalysis,
        severity: AlertSeverity,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        return Alert(
            id=f"{self.alert_type.value}_{analysis.address}_{uuid.uuid4().hex[:8]}",
            token_address=analysis.address,
            type=self.alert_type,
            severity=severity,
            message=message,
            timestamp=self._clock.now(),
            data=data or {},
            acknowledged=False,
        )


class NewTokenRule(AlertRule):
    alert_type = AlertType.NEW_TOKEN

    def evaluate(self, analysis: CombinedAnalysis) -> Optional[Alert]:
        market = analysis.market
        if market is None or market.launch_timestamp_ms is None:
            return None
        if market.age_hours >= self.thresholds.new_token_age_hours:
            return None
        return self.trigger(
            analysis,
            AlertSeverity.MEDIUM,
            f"New token detected: {market.symbol} ({market.name})",
            {"age_hours": round(market.age_hours, 2)},
        )


class PriceSpikeRule(AlertRule):
    alert_type = AlertType.PRICE_SPIKE

    def evaluate(self, analysis: CombinedAnalysis) -> Optional[Alert]:
        market = analysis.market
        if market is None or market.price_change_24h <= self.thresholds.price_spike_percent:
            return None
        severity = (
            AlertSeverity.HIGH
            if market.price_change_24h > self.thresholds.price_spike_high_percent
            else AlertSeverity.MEDIUM
        )
        return self.trigger(
            analysis,
            severity,
            f"Price spike: {market.price_change_24h:.2f}% in 24h",
            {"price_change_24h": market.price_change_24h, "price_usd": market.price_usd},
        )


class VolumeSpikeRule(AlertRule):
    alert_type = AlertType.VOLUME_SPIKE

    def evaluate(self, analysis: CombinedAnalysis) -> Optional[Alert]:
        market = analysis.market
        if market is None or market.market_cap <= 0:
            return None
        if market.volume_24h <= self.thresholds.volume_spike_multiple * market.market_cap:
            return None
        return self.trigger(
            analysis,
            AlertSeverity.MEDIUM,
            f"High volume detected: ${market.volume_24h:,.0f}",
            {"volume_24h": market.volume_24h, "market_cap": market.market_cap},
        )


class SecurityRiskRule(AlertRule):
    alert_type = AlertType.SECURITY_RISK

    def evaluate(self, analysis: CombinedAnalysis) -> Optional[Alert]:
        # Absent security data is not an alert, only a score penalty
        security = analysis.security
        if security is None or security.risk_level != RiskLevel.HIGH:
            return None
        return self.trigger(
            analysis,
            AlertSeverity.HIGH,
            f"High security risk detected for {analysis.symbol or analysis.address}",
            {
                "honeypot_risk": security.honeypot_risk,
                "safety_score": security.safety_score,
                "risks": list(security.risks),
            },
        )


# ============================================================
# ENGINE + HISTORY
# ============================================================

class AlertHistory:
    """Bounded alert history."""

    def __init__(self, max_history: int = 1000):
        self._alerts: List[Alert] = []
        self._max_history = max_history
        self._alerts_by_id: Dict[str, Alert] = {}

    def add(self, alert: Alert) -> None:
        """Add alert to history."""
        self._alerts.append(alert)
        self._alerts_by_id[alert.id] = alert

        if len(self._alerts) > self._max_history:
            removed = self._alerts[:-self._max_history]
            self._alerts = self._alerts[-self._max_history:]
            for old in removed:
                self._alerts_by_id.pop(old.id, None)

    def get(self, alert_id: str) -> Optional[Alert]:
        return self._alerts_by_id.get(alert_id)

    def get_recent(self, limit: int = 100) -> List[Alert]:
        """Get recent alerts."""
        if limit <= 0:
            return []
        return self._alerts[-limit:][::-1]  # Newest first

    def get_unacknowledged(self) -> List[Alert]:
        return [a for a in self._alerts if not a.acknowledged]

    def acknowledge(self, alert_id: str) -> bool:
        alert = self._alerts_by_id.get(alert_id)
        if alert is None:
            return False
        alert.acknowledged = True
        return True

    def __len__(self) -> int:
        return len(self._alerts)


class AlertEngine:
    """Runs every rule against an analysis."""

    def __init__(
        self,
        thresholds: Optional[AlertThresholds] = None,
        clock: Optional[ClockProtocol] = None,
        history: Optional[AlertHistory] = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self.history = history or AlertHistory()
        self.set_thresholds(thresholds or AlertThresholds())

    def set_thresholds(self, thresholds: AlertThresholds) -> None:
        self.thresholds = thresholds
        self._rules: List[AlertRule] = [
            NewTokenRule(thresholds, self._clock),
            PriceSpikeRule(thresholds, self._clock),
            VolumeSpikeRule(thresholds, self._clock),
            SecurityRiskRule(thresholds, self._clock),
        ]

    def evaluate(self, analysis: CombinedAnalysis) -> List[Alert]:
        alerts = []
        for rule in self._rules:
            alert = rule.evaluate(analysis)
            if alert is not None:
                self.history.add(alert)
                alerts.append(alert)
        if alerts:
            logger.info(
                f"{analysis.address}: {len(alerts)} alert(s) "
                f"{[a.type.value for a in alerts]}"
            )
        return alerts


__all__ = [
    "Alert",
    "AlertEngine",
    "AlertHistory",
    "AlertRule",
    "AlertSeverity",
    "AlertThresholds",
    "AlertType",
    "NewTokenRule",
    "PriceSpikeRule",
    "SecurityRiskRule",
    "VolumeSpikeRule",
]
