"""
Admission Filter Evaluation.

Evaluates every FilterCriteria rule against merged stage data in the
fixed order DEX -> Security -> Routing -> Creator. Evaluation does not
short-circuit: the caller sees every failing reason, each prefixed with
its stage.
"""

from typing import Callable, Dict, List, Mapping, Optional

from token_providers.criteria import (
    FilterCriteria,
    holder_filter_reasons,
    market_filter_reasons,
    routing_filter_reasons,
    security_filter_reasons,
)
from token_providers.models import (
    HolderData,
    MarketData,
    ProviderResult,
    RoutingData,
    SecurityData,
)
from token_pipeline.models import STAGE_ORDER, StageName


_RULES: Dict[StageName, Callable] = {
    StageName.MARKET: market_filter_reasons,
    StageName.SECURITY: security_filter_reasons,
    StageName.ROUTING: routing_filter_reasons,
    StageName.HOLDERS: holder_filter_reasons,
}


class FilterEvaluator:
    """Collects failed-filter reasons across all stages."""

    def __init__(self, strict_stages: bool = False) -> None:
        self.strict_stages = strict_stages

    def evaluate(
        self,
        criteria: FilterCriteria,
        market: Optional[MarketData] = None,
        security: Optional[SecurityData] = None,
        routing: Optional[RoutingData] = None,
        holders: Optional[HolderData] = None,
    ) -> List[str]:
        """Evaluate criteria against already-normalized stage data."""
        data = {
            StageName.MARKET: market,
            StageName.SECURITY: security,
            StageName.ROUTING: routing,
            StageName.HOLDERS: holders,
        }
        reasons = []
        for stage in STAGE_ORDER:
            stage_data = data[stage]
            if stage_data is None:
                if self.strict_stages:
                    reasons.append(f"{stage.prefix}: data unavailable")
                continue
            reasons.extend(f"{stage.prefix}: {r}" for r in _RULES[stage](stage_data, criteria))
        return reasons

    def evaluate_results(
        self,
        results: Mapping[StageName, ProviderResult],
    ) -> List[str]:
        """
        Collect reasons from provider results.

        Provider results already carry their own rule outcomes plus any
        missing-field reasons, so only prefixing and absence handling
        happen here.
        """
        reasons = []
        for stage in STAGE_ORDER:
            result = results.get(stage)
            if result is None or result.absent:
                if self.strict_stages:
                    reasons.append(f"{stage.prefix}: data unavailable")
                continue
            reasons.extend(f"{stage.prefix}: {r}" for r in result.filter_reasons)
        return reasons


__all__ = [
    "FilterEvaluator",
]
