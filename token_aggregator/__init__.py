"""
Token Aggregator Package - Scheduled discovery and analysis of new tokens.

Runs the analysis pipeline on a fixed interval, persists tokens that
pass the admission filter and keeps run history, statistics and a
blacklist.

Components:
- config: AggregatorConfig (env, YAML, partial updates)
- models: AggregationRun, AggregatorStats, BlacklistEntry
- interfaces: DiscoveryFeed, AnalysisStore, EventPublisher
- discovery: DexScreener and static discovery feeds
- processed: TTL + LRU processed-set
- storage: SQLAlchemy and in-memory analysis stores
- scheduler: AggregatorScheduler
- cli: token-aggregator command

Usage:
    scheduler = AggregatorScheduler(pipeline, discovery, store, config)
    run = await scheduler.run_once()
    print(run.to_dict())
"""

from token_aggregator.config import AggregatorConfig
from token_aggregator.discovery import DexScreenerDiscoveryFeed, StaticDiscoveryFeed
from token_aggregator.exceptions import (
    AggregatorError,
    ConfigurationError,
    PersistenceError,
    RunTimeout,
)
from token_aggregator.interfaces import AnalysisStore, DiscoveryFeed, EventPublisher
from token_aggregator.models import (
    AggregationRun,
    AggregatorStats,
    BlacklistEntry,
    RunStatus,
    TokenCandidate,
)
from token_aggregator.processed import ProcessedSet
from token_aggregator.scheduler import AggregatorScheduler
from token_aggregator.storage import (
    InMemoryAnalysisStore,
    SqlAlchemyAnalysisStore,
    TokenAnalysisRecord,
)

__all__ = [
    # Config
    "AggregatorConfig",
    # Discovery
    "DexScreenerDiscoveryFeed",
    "StaticDiscoveryFeed",
    # Exceptions
    "AggregatorError",
    "ConfigurationError",
    "PersistenceError",
    "RunTimeout",
    # Interfaces
    "AnalysisStore",
    "DiscoveryFeed",
    "EventPublisher",
    # Models
    "AggregationRun",
    "AggregatorStats",
    "BlacklistEntry",
    "RunStatus",
    "TokenCandidate",
    # Processed set
    "ProcessedSet",
    # Scheduler
    "AggregatorScheduler",
    # Storage
    "InMemoryAnalysisStore",
    "SqlAlchemyAnalysisStore",
    "TokenAnalysisRecord",
]

__version__ = "1.0.0"
