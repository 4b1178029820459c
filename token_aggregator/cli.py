"""
Aggregator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line entry point for the token aggregator.

- Provides argparse-based CLI
- Loads configuration from YAML, environment and CLI flags
- Wires providers, pipeline, storage and scheduler
- Handles SIGINT/SIGTERM with a graceful stop

============================================================
USAGE
============================================================
token-aggregator                               # run on the configured interval
token-aggregator --once --dry-run              # one run, in-memory storage
token-aggregator --config aggregator.yaml --database-url sqlite:///tokens.db

============================================================
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional

from core.clock import SystemClock
from token_providers.cache import CacheStore
from token_providers.providers import (
    DexScreenerClient,
    JupiterClient,
    RugCheckClient,
    SolscanClient,
)
from token_providers.rate_limiter import RateLimiter
from token_pipeline.events import EventBus
from token_pipeline.models import StageName
from token_pipeline.pipeline import AnalysisPipeline
from token_aggregator.config import AggregatorConfig
from token_aggregator.discovery import DexScreenerDiscoveryFeed
from token_aggregator.exceptions import AggregatorError
from token_aggregator.interfaces import AnalysisStore
from token_aggregator.models import RunStatus
from token_aggregator.scheduler import AggregatorScheduler
from token_aggregator.storage import InMemoryAnalysisStore, SqlAlchemyAnalysisStore


DEFAULT_DATABASE_URL = "sqlite:///token_aggregator.db"


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "json") -> logging.Logger:
    """
    Set up structured logging on the root logger.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        The aggregator logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("token_aggregator")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="token-aggregator",
        description="Discover, analyze and store newly listed Solana tokens",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                  # Run on the configured interval
  %(prog)s --once                           # Single run, then exit
  %(prog)s --once --dry-run                 # Single run without a database
  %(prog)s --config aggregator.yaml --interval 120
        """
    )

    # --------------------------------------------------------
    # Configuration
    # --------------------------------------------------------
    config_group = parser.add_argument_group("Configuration")

    config_group.add_argument(
        "--config", "-c",
        type=str,
        metavar="FILE",
        help="YAML configuration file (environment variables apply when omitted)",
    )

    # --------------------------------------------------------
    # Execution Options
    # --------------------------------------------------------
    execution_group = parser.add_argument_group("Execution Options")

    execution_group.add_argument(
        "--once",
        action="store_true",
        help="Run a single aggregation and exit (no loop)",
    )

    execution_group.add_argument(
        "--interval",
        type=float,
        metavar="SECONDS",
        help="Seconds between runs (default: 300)",
    )

    execution_group.add_argument(
        "--max-tokens",
        type=int,
        metavar="N",
        help="Maximum candidates per run (default: 100)",
    )

    execution_group.add_argument(
        "--max-concurrent",
        type=int,
        metavar="N",
        help="Tokens analyzed concurrently (default: 5)",
    )

    # --------------------------------------------------------
    # Storage Options
    # --------------------------------------------------------
    storage_group = parser.add_argument_group("Storage Options")

    storage_group.add_argument(
        "--database-url",
        type=str,
        metavar="URL",
        help=f"SQLAlchemy database URL (default: {DEFAULT_DATABASE_URL})",
    )

    storage_group.add_argument(
        "--dry-run",
        action="store_true",
        help="Keep passing tokens in memory instead of a database",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="json",
        help="Logging format (default: json)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    return parser


# ============================================================
# CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> AggregatorConfig:
    """
    Build configuration: YAML or environment first, then CLI overrides.

    Raises:
        ConfigurationError: if any source is invalid
    """
    config = AggregatorConfig.from_yaml(args.config) if args.config else AggregatorConfig.from_env()

    overrides = {}
    if args.interval is not None:
        overrides["interval_seconds"] = args.interval
    if args.max_tokens is not None:
        overrides["max_tokens_per_run"] = args.max_tokens
    if args.max_concurrent is not None:
        overrides["max_concurrent"] = args.max_concurrent
    if args.database_url is not None:
        overrides["database_url"] = args.database_url

    return config.with_updates(overrides) if overrides else config


def build_scheduler(config: AggregatorConfig, store: AnalysisStore) -> AggregatorScheduler:
    """Wire the production object graph."""
    clock = SystemClock()
    rate_limiter = RateLimiter(limits=config.rate_limit_configs(), clock=clock)
    provider_cache = CacheStore(name="providers", clock=clock)
    analysis_cache = CacheStore(
        default_ttl=config.analysis_cache_ttl_seconds,
        name="analyses",
        clock=clock,
    )

    dexscreener = DexScreenerClient(rate_limiter, cache=provider_cache, clock=clock)
    providers = {
        StageName.MARKET: dexscreener,
        StageName.SECURITY: RugCheckClient(rate_limiter, cache=provider_cache, clock=clock),
        StageName.ROUTING: JupiterClient(rate_limiter, cache=provider_cache, clock=clock),
        StageName.HOLDERS: SolscanClient(rate_limiter, cache=provider_cache, clock=clock),
    }

    pipeline = AnalysisPipeline(
        providers,
        analysis_cache,
        events=EventBus(clock=clock),
        config=config.pipeline_config(),
        clock=clock,
    )

    return AggregatorScheduler(
        pipeline=pipeline,
        discovery=DexScreenerDiscoveryFeed(dexscreener),
        store=store,
        config=config,
        rate_limiter=rate_limiter,
        cache=analysis_cache,
        clock=clock,
    )


def build_store(config: AggregatorConfig, dry_run: bool) -> AnalysisStore:
    if dry_run:
        return InMemoryAnalysisStore()
    return SqlAlchemyAnalysisStore(config.database_url or DEFAULT_DATABASE_URL)


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def install_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set ``stop_event`` on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))


async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    logger = logging.getLogger("token_aggregator")

    try:
        config = build_config(args)
        store = build_store(config, args.dry_run)
        scheduler = build_scheduler(config, store)
    except AggregatorError as e:
        logger.error(f"Startup failed: {e.message}")
        return 1

    logger.info(f"Configuration: {scheduler.config.to_dict()}")

    try:
        if args.once:
            run = await scheduler.run_once(trigger="manual")
            return 0 if run is not None and run.status == RunStatus.COMPLETED else 1

        stop_event = asyncio.Event()
        install_signal_handlers(stop_event)
        await scheduler.start()
        await stop_event.wait()
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        await scheduler.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level, args.log_format)

    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
