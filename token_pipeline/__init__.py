"""
Token Pipeline Package - Multi-provider token analysis.

Combines the four provider stages into one scored, filtered
CombinedAnalysis per token.

Components:
- models: CombinedAnalysis, StageName, PipelineConfig
- events: EventBus with typed events and a "*" wildcard
- scoring: Deterministic 0-100 score and recommendations
- filters: Non-short-circuiting admission filter
- alerts: New-token, spike and security-risk alert rules
- pipeline: AnalysisPipeline (analyze, process_batch)

Usage:
    from token_pipeline import AnalysisPipeline, FilterCriteria

    pipeline = AnalysisPipeline(providers, cache)
    analysis = await pipeline.analyze(address, FilterCriteria())
    if analysis.passed:
        ...
"""

from token_pipeline.alerts import (
    Alert,
    AlertEngine,
    AlertHistory,
    AlertSeverity,
    AlertThresholds,
    AlertType,
)
from token_pipeline.events import WILDCARD, Event, EventBus, EventType
from token_pipeline.exceptions import PipelineError, ValidationError
from token_pipeline.filters import FilterEvaluator
from token_pipeline.models import (
    STAGE_ORDER,
    CombinedAnalysis,
    FilterCriteria,
    PipelineConfig,
    StageName,
    validate_address,
)
from token_pipeline.pipeline import (
    ANALYSIS_CACHE_PREFIX,
    AnalysisPipeline,
    PipelineStats,
)
from token_pipeline.scoring import ScoreBreakdown, ScoringConfig, ScoringEngine

__all__ = [
    # Alerts
    "Alert",
    "AlertEngine",
    "AlertHistory",
    "AlertSeverity",
    "AlertThresholds",
    "AlertType",
    # Events
    "Event",
    "EventBus",
    "EventType",
    "WILDCARD",
    # Exceptions
    "PipelineError",
    "ValidationError",
    # Filters
    "FilterEvaluator",
    # Models
    "CombinedAnalysis",
    "FilterCriteria",
    "PipelineConfig",
    "STAGE_ORDER",
    "StageName",
    "validate_address",
    # Pipeline
    "ANALYSIS_CACHE_PREFIX",
    "AnalysisPipeline",
    "PipelineStats",
    # Scoring
    "ScoreBreakdown",
    "ScoringConfig",
    "ScoringEngine",
]

__version__ = "1.0.0"
