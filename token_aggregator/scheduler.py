"""
Aggregator - Scheduler.

============================================================
RESPONSIBILITY
============================================================
Drives aggregation runs on a fixed interval.

- Discover candidates and cap them per run
- Skip blacklisted and recently processed addresses
- Analyze the batch under a per-run timeout
- Persist passing tokens, emit events and alerts
- Keep blacklist, statistics and bounded run history

============================================================
RUN LIFECYCLE
============================================================
pending -> running -> completed | failed

A run that hits its timeout keeps every analysis that finished before
the deadline, records each unfinished address as an error and ends
``failed`` with ``partial_timeout=True``.

A tick that fires while a run is in progress is skipped, never queued.

============================================================
STATE OWNERSHIP
============================================================
The processed-set and the blacklist are mutated only here, from the
sequential run loop or the query surface, never from pipeline workers.

Configuration and filters are swapped between runs only: an update
received mid-run is applied when that run finishes.

============================================================
"""

import asyncio
import logging
from collections import deque
from datetime import timedelta
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

from core.clock import ClockProtocol, SystemClock
from token_providers.cache import CacheStore
from token_providers.criteria import FilterCriteria
from token_providers.health import ProviderHealthMonitor
from token_providers.rate_limiter import RateLimiter
from token_pipeline.alerts import AlertEngine
from token_pipeline.events import WILDCARD, EventType
from token_pipeline.exceptions import ValidationError
from token_pipeline.models import CombinedAnalysis, validate_address
from token_pipeline.pipeline import AnalysisPipeline
from token_aggregator.config import AggregatorConfig
from token_aggregator.exceptions import ConfigurationError, PersistenceError, RunTimeout
from token_aggregator.interfaces import AnalysisStore, DiscoveryFeed, EventPublisher
from token_aggregator.models import (
    AggregationRun,
    AggregatorStats,
    BlacklistEntry,
    RunStatus,
)
from token_aggregator.processed import ProcessedSet


logger = logging.getLogger(__name__)


class AggregatorScheduler:
    """
    Owns the aggregation loop and its state.

    The query surface (get_stats, get_run_history, get_system_status,
    get_health_status, update_config, add_to_blacklist,
    remove_from_blacklist) is synchronous and safe to call at any time.
    """

    def __init__(
        self,
        pipeline: AnalysisPipeline,
        discovery: DiscoveryFeed,
        store: AnalysisStore,
        config: Optional[AggregatorConfig] = None,
        alerts: Optional[AlertEngine] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[CacheStore] = None,
        health_monitor: Optional[ProviderHealthMonitor] = None,
        publishers: Sequence[EventPublisher] = (),
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            pipeline: Analysis pipeline (its event bus is shared)
            discovery: Source of candidate addresses
            store: Persistence for passing analyses
            config: Aggregator configuration
            alerts: Alert engine (built from config when omitted)
            rate_limiter: Shared limiter, reconfigured from config
            cache: Analysis cache, swept while the loop runs
            health_monitor: Provider health (built from pipeline when omitted)
            publishers: Outbound sinks attached to every event
            clock: Time source

        Raises:
            ConfigurationError: if the configuration is invalid
        """
        config = config or AggregatorConfig()
        errors = config.validate()
        if errors:
            raise ConfigurationError(
                f"Invalid configuration: {', '.join(errors)}",
                context={"errors": errors},
            )

        self._clock = clock or SystemClock()
        self.pipeline = pipeline
        self.events = pipeline.events
        self._discovery = discovery
        self._store = store
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._alerts = alerts or AlertEngine(config.alerts, clock=self._clock)
        self._health = health_monitor or ProviderHealthMonitor(
            list(pipeline.providers.values()),
            clock=self._clock,
        )

        self._config = config
        self._pending_config: Optional[AggregatorConfig] = None
        self._processed = ProcessedSet(
            ttl_seconds=config.processed_ttl_seconds,
            max_size=config.processed_max_size,
            clock=self._clock,
        )
        self._blacklist: Dict[str, BlacklistEntry] = {}
        self._history: Deque[AggregationRun] = deque(maxlen=config.run_history_size)
        self._stats = AggregatorStats()
        self._skipped_ticks = 0

        self._current_run: Optional[AggregationRun] = None
        self._run_in_progress = False
        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        self._apply_config(config, previous=None)

        for publisher in publishers:
            self.attach_publisher(publisher)

        logger.info(
            f"[scheduler] Initialized | interval={config.interval_seconds}s "
            f"max_tokens={config.max_tokens_per_run} max_concurrent={config.max_concurrent}"
        )

    # ─────────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────────

    @property
    def config(self) -> AggregatorConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        """A run is in progress."""
        return self._run_in_progress

    @property
    def is_started(self) -> bool:
        """The interval loop is active."""
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def processed(self) -> ProcessedSet:
        return self._processed

    def attach_publisher(self, publisher: EventPublisher) -> Callable[[], bool]:
        """Forward every event to an outbound publisher."""
        return self.events.subscribe(WILDCARD, publisher.publish)

    # ─────────────────────────────────────────────────────────────
    # Runs
    # ─────────────────────────────────────────────────────────────

    async def run_once(self, trigger: str = "scheduled") -> Optional[AggregationRun]:
        """
        Execute one aggregation run.

        Returns:
            The finalized run, or None if another run was in progress
        """
        if self._run_in_progress:
            self._skipped_ticks += 1
            current = self._current_run.id if self._current_run else "?"
            logger.warning(f"[scheduler] Run {current} still in progress, skipping {trigger} tick")
            return None

        self._run_in_progress = True
        try:
            return await self._execute_run(trigger)
        finally:
            self._run_in_progress = False
            self._current_run = None
            if self._pending_config is not None:
                pending, self._pending_config = self._pending_config, None
                self._apply_config(pending, previous=self._applied_config)

    async def trigger_run(self) -> Optional[AggregationRun]:
        """Start a manual run, subject to the overlap guard."""
        return await self.run_once(trigger="manual")

    async def _execute_run(self, trigger: str) -> AggregationRun:
        # Snapshot: this run uses these settings even if config changes mid-run
        config = self._applied_config
        criteria = config.filters

        run = AggregationRun.new(self._clock.now(), trigger=trigger)
        self._current_run = run
        run.mark_running()

        logger.info(f"[scheduler] Run {run.id} START ({trigger})")
        self.events.publish(EventType.RUN_START, {
            "run_id": run.id,
            "trigger": trigger,
            "start_time": run.start_time.isoformat(),
        })

        try:
            candidates = await self._discover(run, config)
            analyses = await self._analyze(run, candidates, criteria, config) if candidates else []
            for analysis in analyses:
                await self._handle_analysis(run, analysis, config)
            status = RunStatus.FAILED if run.partial_timeout else RunStatus.COMPLETED
        except Exception as e:
            logger.error(f"[scheduler] Run {run.id} ERROR: {type(e).__name__}: {e}", exc_info=True)
            run.record_error(None, str(e), type(e).__name__)
            status = RunStatus.FAILED

        run.finalize(status, self._clock.now())
        self._history.appendleft(run)
        self._stats.record(run)

        logger.info(
            f"[scheduler] Run {run.id} {status.value.upper()} | "
            f"discovered={run.tokens_discovered} processed={run.tokens_processed} "
            f"passed={run.tokens_passed} stored={run.tokens_stored} "
            f"errors={len(run.errors)} ({run.duration_ms:.0f}ms)"
        )
        self.events.publish(EventType.RUN_COMPLETE, run.to_dict())
        return run

    async def _discover(self, run: AggregationRun, config: AggregatorConfig) -> List[str]:
        raw = await self._discovery.get_candidate_addresses(config.max_tokens_per_run)
        run.tokens_discovered = len(raw)

        selected: List[str] = []
        seen = set()
        skipped_blacklisted = skipped_processed = 0
        for address in raw[:config.max_tokens_per_run]:
            if not isinstance(address, str):
                run.record_error(None, f"Discovery returned non-string address: {address!r}", "ValidationError")
                continue
            address = address.strip()
            if address in seen:
                continue
            seen.add(address)
            if address in self._blacklist:
                skipped_blacklisted += 1
                continue
            if self._processed.contains(address):
                skipped_processed += 1
                continue
            selected.append(address)
            self.events.publish(EventType.TOKEN_DISCOVERED, {"run_id": run.id, "address": address})

        run.tokens_skipped = skipped_blacklisted + skipped_processed
        logger.info(
            f"[scheduler] Run {run.id}: {len(raw)} discovered, {len(selected)} selected "
            f"(blacklisted={skipped_blacklisted}, recently_processed={skipped_processed})"
        )
        return selected

    async def _analyze(
        self,
        run: AggregationRun,
        candidates: List[str],
        criteria: FilterCriteria,
        config: AggregatorConfig,
    ) -> List[CombinedAnalysis]:
        """Run the batch under the run timeout, keeping finished results."""
        completed: Dict[str, CombinedAnalysis] = {}
        failed: Dict[str, Exception] = {}

        def on_complete(analysis: CombinedAnalysis) -> None:
            completed[analysis.address] = analysis

        def on_error(address: str, error: Exception) -> None:
            failed[address] = error

        try:
            await asyncio.wait_for(
                self.pipeline.process_batch(
                    candidates,
                    criteria,
                    max_concurrent=config.max_concurrent,
                    on_complete=on_complete,
                    on_error=on_error,
                ),
                timeout=config.run_timeout_seconds,
            )
        except asyncio.TimeoutError:
            unfinished = [a for a in candidates if a not in completed and a not in failed]
            timeout = RunTimeout(run.id, config.run_timeout_seconds, len(unfinished))
            logger.warning(f"[scheduler] {timeout.message}")
            run.partial_timeout = True
            for address in unfinished:
                run.record_error(address, timeout.message, "RunTimeout")

        for address, error in failed.items():
            message = error.message if isinstance(error, ValidationError) else str(error)
            run.record_error(address, message, type(error).__name__)
            self._processed.mark(address)

        run.tokens_processed = len(completed)
        return [completed[a] for a in candidates if a in completed]

    async def _handle_analysis(
        self,
        run: AggregationRun,
        analysis: CombinedAnalysis,
        config: AggregatorConfig,
    ) -> None:
        address = analysis.address
        self._processed.mark(address)

        # Blacklisted while the analysis was in flight
        if address in self._blacklist:
            run.tokens_skipped += 1
            logger.info(f"[scheduler] Skipping {address}: blacklisted during run {run.id}")
            return

        if not analysis.passed:
            security = analysis.security
            if config.auto_blacklist_honeypots and security is not None and security.honeypot_risk:
                self._blacklist_address(address, "Honeypot detected", source="auto")
                run.tokens_blacklisted += 1
            return

        run.tokens_passed += 1
        self.events.publish(EventType.TOKEN_PASSED, {
            "run_id": run.id,
            "address": address,
            "symbol": analysis.symbol,
            "overall_score": analysis.overall_score,
        })

        try:
            await self._store.store_analysis(analysis)
        except PersistenceError as e:
            logger.error(f"[scheduler] Failed to store {address}: {e.message}")
            run.record_error(address, e.message, "PersistenceError")
        except Exception as e:
            logger.error(f"[scheduler] Unexpected store error for {address}: {e}", exc_info=True)
            run.record_error(address, str(e), type(e).__name__)
        else:
            run.tokens_stored += 1
            self.events.publish(EventType.TOKEN_STORED, {
                "run_id": run.id,
                "address": address,
                "overall_score": analysis.overall_score,
            })

        for alert in self._alerts.evaluate(analysis):
            self.events.publish(EventType.ALERT, alert.to_dict())

    # ─────────────────────────────────────────────────────────────
    # Interval loop
    # ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the interval loop (first run fires immediately)."""
        if not self._config.enabled:
            logger.warning("[scheduler] Disabled by configuration, not starting")
            return
        if self.is_started:
            logger.warning("[scheduler] Already started")
            return

        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop())
        if self._cache is not None:
            self._cache.start_cleanup(self._config.interval_seconds)
        logger.info(f"[scheduler] Started (interval={self._config.interval_seconds}s)")

    async def _run_loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            await self.run_once()

            interval = self._applied_config.interval_seconds
            self._stats.next_run_at = self._clock.now() + timedelta(seconds=interval)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop the loop, letting an in-progress run finish up to ``timeout``."""
        if self._loop_task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()

        try:
            await asyncio.wait_for(asyncio.shield(self._loop_task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[scheduler] Run did not finish within {timeout}s, cancelling")
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)

        self._loop_task = None
        self._stats.next_run_at = None
        if self._cache is not None:
            await self._cache.stop_cleanup()
        await self.events.drain()
        logger.info("[scheduler] Stopped")

    async def close(self) -> None:
        """Stop and release every collaborator."""
        await self.stop()
        await self.pipeline.close()
        await self._discovery.close()
        await self._store.close()

    # ─────────────────────────────────────────────────────────────
    # Configuration
    # ─────────────────────────────────────────────────────────────

    def update_config(self, partial: Mapping[str, Any]) -> AggregatorConfig:
        """
        Apply a partial configuration update.

        Raises:
            ConfigurationError: if the result is invalid (nothing changes)
        """
        updated = self._config.with_updates(partial)
        self._config = updated

        if self._run_in_progress:
            self._pending_config = updated
            logger.info("[scheduler] Config updated, applying after the current run")
        else:
            self._apply_config(updated, previous=self._applied_config)

        self.events.publish(EventType.CONFIG_UPDATED, {
            "changes": sorted(partial),
            "config": updated.to_dict(),
        })
        return updated

    def _apply_config(
        self,
        config: AggregatorConfig,
        previous: Optional[AggregatorConfig],
    ) -> None:
        self.pipeline.configure(config.pipeline_config())
        self._alerts.set_thresholds(config.alerts)
        self._processed.reconfigure(config.processed_ttl_seconds, config.processed_max_size)

        if self._history.maxlen != config.run_history_size:
            self._history = deque(self._history, maxlen=config.run_history_size)

        if self._rate_limiter is not None:
            for name, limit in config.rate_limit_configs().items():
                self._rate_limiter.configure(name, limit)

        # Cached analyses were filtered under the old criteria
        if previous is not None and (
            previous.filters != config.filters
            or previous.strict_stages != config.strict_stages
        ):
            self.pipeline.invalidate_cache()

        self._applied_config = config

    # ─────────────────────────────────────────────────────────────
    # Blacklist
    # ─────────────────────────────────────────────────────────────

    def add_to_blacklist(self, address: str, reason: str) -> BlacklistEntry:
        """
        Exclude an address from future runs.

        Raises:
            ValidationError: if the address is malformed
        """
        address = validate_address(address)
        return self._blacklist_address(address, reason, source="manual")

    def _blacklist_address(self, address: str, reason: str, source: str) -> BlacklistEntry:
        entry = BlacklistEntry(
            address=address,
            reason=reason,
            added_at=self._clock.now(),
            source=source,
        )
        self._blacklist[address] = entry
        self.pipeline.invalidate_cache(address)
        logger.info(f"[scheduler] Blacklisted {address}: {reason} ({source})")
        self.events.publish(EventType.TOKEN_BLACKLISTED, entry.to_dict())
        return entry

    def remove_from_blacklist(self, address: str) -> bool:
        entry = self._blacklist.pop(address.strip(), None)
        if entry is None:
            return False
        logger.info(f"[scheduler] Removed {entry.address} from blacklist")
        self.events.publish(EventType.TOKEN_UNBLACKLISTED, {"address": entry.address})
        return True

    def is_blacklisted(self, address: str) -> bool:
        return address.strip() in self._blacklist

    def get_blacklist(self) -> List[BlacklistEntry]:
        return list(self._blacklist.values())

    # ─────────────────────────────────────────────────────────────
    # Query surface
    # ─────────────────────────────────────────────────────────────

    def get_stats(self) -> Dict[str, Any]:
        stats = self._stats.to_dict()
        stats.update({
            "is_running": self._run_in_progress,
            "current_run_id": self._current_run.id if self._current_run else None,
            "skipped_ticks": self._skipped_ticks,
        })
        return stats

    def get_run_history(self, n: int = 10) -> List[AggregationRun]:
        """Most recent runs, newest first."""
        if n <= 0:
            return []
        return list(self._history)[:n]

    def get_system_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "scheduler": {
                "enabled": self._config.enabled,
                "started": self.is_started,
                "is_running": self._run_in_progress,
                "current_run": self._current_run.to_dict() if self._current_run else None,
                "interval_seconds": self._config.interval_seconds,
                "config_pending": self._pending_config is not None,
            },
            "stats": self.get_stats(),
            "pipeline": self.pipeline.get_stats(),
            "blacklist_size": len(self._blacklist),
            "processed": self._processed.stats(),
            "events": self.events.stats(),
            "config": self._config.to_dict(),
        }
        if self._cache is not None:
            status["cache"] = self._cache.get_stats()
        if self._rate_limiter is not None:
            status["rate_limits"] = self._rate_limiter.get_all_states()
        return status

    def get_health_status(self) -> Dict[str, Any]:
        """Per-provider health from passive tracking (no network calls)."""
        return self._health.snapshot().to_dict()

    async def check_health(self) -> Dict[str, Any]:
        """Actively probe every provider."""
        report = await self._health.check_all()
        return report.to_dict()

    def reset_stats(self) -> None:
        next_run_at = self._stats.next_run_at
        self._stats = AggregatorStats(next_run_at=next_run_at)
        self._skipped_ticks = 0
        self.pipeline.reset_stats()
        logger.info("[scheduler] Statistics reset")
        self.events.publish(EventType.STATS_RESET, {"reset_at": self._clock.now().isoformat()})


__all__ = ["AggregatorScheduler"]
