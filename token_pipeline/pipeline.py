"""
Analysis Pipeline.

============================================================
RESPONSIBILITY
============================================================
Turns one token address into a CombinedAnalysis.

- Validate the address before any network call
- Serve fresh analyses from cache
- Fan out to the four providers concurrently
- Merge, score, filter and annotate the result
- Process batches with bounded concurrency and per-token isolation

Provider failures never raise out of the pipeline: a stage that cannot
produce data is recorded as absent and costs score points.

============================================================
EVENTS
============================================================
stage:start     {address, stage}
stage:complete  {address, stage, success, filtered, absent, latency_ms, ...}
token:complete  {address, passed, overall_score, failed_filters, ...}

For one token every stage:start precedes its stage:complete, and
token:complete follows all of them.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from core.clock import ClockProtocol, SystemClock
from token_providers.base import BaseProviderClient
from token_providers.cache import CacheStore
from token_providers.criteria import FilterCriteria
from token_providers.models import ProviderResult
from token_pipeline.events import EventBus, EventType
from token_pipeline.exceptions import ValidationError
from token_pipeline.filters import FilterEvaluator
from token_pipeline.models import (
    STAGE_ORDER,
    CombinedAnalysis,
    PipelineConfig,
    StageName,
    validate_address,
)
from token_pipeline.scoring import ScoringEngine, describe


logger = logging.getLogger(__name__)


ANALYSIS_CACHE_PREFIX = "pipeline:analysis:"

CompletionCallback = Callable[[CombinedAnalysis], Any]
ErrorCallback = Callable[[str, Exception], Any]


# ============================================================
# STATISTICS
# ============================================================

@dataclass
class PipelineStats:
    """Counters over the pipeline's lifetime."""
    tokens_processed: int = 0
    tokens_passed: int = 0
    tokens_filtered: int = 0
    error_count: int = 0
    cache_hits: int = 0
    total_processing_ms: float = 0.0

    @property
    def average_processing_time_ms(self) -> float:
        if self.tokens_processed == 0:
            return 0.0
        return self.total_processing_ms / self.tokens_processed

    @property
    def success_rate(self) -> float:
        """Percentage of attempted tokens that produced an analysis."""
        attempted = self.tokens_processed + self.error_count
        if attempted == 0:
            return 100.0
        return self.tokens_processed / attempted * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokens_processed": self.tokens_processed,
            "tokens_passed": self.tokens_passed,
            "tokens_filtered": self.tokens_filtered,
            "error_count": self.error_count,
            "cache_hits": self.cache_hits,
            "success_rate": round(self.success_rate, 2),
            "average_processing_time_ms": round(self.average_processing_time_ms, 2),
        }


# ============================================================
# PIPELINE
# ============================================================

class AnalysisPipeline:
    """
    Orchestrates provider clients into a single token analysis.

    The pipeline holds no per-token state; it is safe to run many
    analyze() calls concurrently.
    """

    def __init__(
        self,
        providers: Mapping[StageName, BaseProviderClient],
        cache: CacheStore,
        events: Optional[EventBus] = None,
        scoring: Optional[ScoringEngine] = None,
        config: Optional[PipelineConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            providers: One client per stage; a missing stage is always absent
            cache: Shared cache for merged analyses
            events: Bus for stage and token events
            scoring: Scoring engine (defaults to standard tiers)
            config: Pipeline tunables
            clock: Time source
        """
        self._providers: Dict[StageName, BaseProviderClient] = dict(providers)
        self._cache = cache
        self._clock = clock or SystemClock()
        self.events = events or EventBus(clock=self._clock)
        self.scoring = scoring or ScoringEngine()
        self.configure(config or PipelineConfig())
        self._stats = PipelineStats()

    def configure(self, config: PipelineConfig) -> None:
        """Swap pipeline tunables. Only call between runs."""
        errors = config.validate()
        if errors:
            raise ValueError(f"Invalid pipeline config: {errors}")
        self.config = config
        self._filters = FilterEvaluator(strict_stages=config.strict_stages)

    @property
    def providers(self) -> Dict[StageName, BaseProviderClient]:
        return dict(self._providers)

    # ─────────────────────────────────────────────────────────────
    # Single token
    # ─────────────────────────────────────────────────────────────

    async def analyze(
        self,
        address: str,
        criteria: FilterCriteria,
    ) -> CombinedAnalysis:
        """
        Analyze one token.

        Raises:
            ValidationError: if the address is malformed
        """
        address = validate_address(address)
        key = cache_key(address)

        cached = self._cache.get(key)
        if cached is not None:
            self._stats.cache_hits += 1
            logger.debug(f"[pipeline] Cache hit for {address}")
            return cached

        started = self._clock.monotonic()

        results = await asyncio.gather(
            *(self._run_stage(stage, address, criteria) for stage in STAGE_ORDER)
        )
        by_stage: Dict[StageName, ProviderResult] = dict(zip(STAGE_ORDER, results))

        data = {stage: (r.data if not r.absent else None) for stage, r in by_stage.items()}
        absent = tuple(stage.value for stage in STAGE_ORDER if data[stage] is None)

        breakdown = self.scoring.score(
            data[StageName.MARKET],
            data[StageName.SECURITY],
            data[StageName.ROUTING],
            data[StageName.HOLDERS],
        )
        failed = self._filters.evaluate_results(by_stage)
        recommendations = self.scoring.recommendations(
            breakdown.total,
            data[StageName.MARKET],
            data[StageName.SECURITY],
        )

        analysis = CombinedAnalysis(
            address=address,
            market=data[StageName.MARKET],
            security=data[StageName.SECURITY],
            routing=data[StageName.ROUTING],
            holders=data[StageName.HOLDERS],
            overall_score=breakdown.total,
            passed=not failed,
            failed_filters=tuple(failed),
            timestamp=self._clock.now(),
            absent_stages=absent,
            score_breakdown=breakdown.to_dict(),
            recommendations=tuple(recommendations),
            stages={stage.value: r.to_dict() for stage, r in by_stage.items()},
        )

        elapsed_ms = self._clock.elapsed_ms(started)
        self._record(analysis, elapsed_ms)
        self._cache.set(key, analysis, self.config.analysis_cache_ttl_seconds)

        logger.info(
            f"[pipeline] {address} {'PASSED' if analysis.passed else 'FILTERED'} "
            f"{describe(breakdown, absent)} ({elapsed_ms:.0f}ms)"
        )

        self.events.publish(EventType.TOKEN_COMPLETE, {
            "address": address,
            "symbol": analysis.symbol,
            "passed": analysis.passed,
            "overall_score": analysis.overall_score,
            "failed_filters": list(analysis.failed_filters),
            "absent_stages": list(absent),
            "processing_time_ms": round(elapsed_ms, 2),
        })

        return analysis

    async def _run_stage(
        self,
        stage: StageName,
        address: str,
        criteria: FilterCriteria,
    ) -> ProviderResult:
        """Run one provider; every failure becomes an absent result."""
        self.events.publish(EventType.STAGE_START, {"address": address, "stage": stage.value})
        logger.debug(f"[pipeline] Stage {stage.value} START: {address}")

        started = self._clock.monotonic()
        provider = self._providers.get(stage)
        timeout = self.config.stage_timeout_seconds

        if provider is None:
            result = ProviderResult.missing(stage.value, "No provider configured")
        else:
            try:
                result = await asyncio.wait_for(
                    provider.analyze(address, criteria),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"[pipeline] Stage {stage.value} TIMEOUT: {address} (>{timeout}s)"
                )
                result = ProviderResult.missing(
                    provider.name,
                    f"Stage timeout after {timeout}s",
                    self._clock.elapsed_ms(started),
                )
            except Exception as e:
                logger.error(
                    f"[pipeline] Stage {stage.value} ERROR: {address} - {type(e).__name__}: {e}",
                    exc_info=True,
                )
                result = ProviderResult.missing(
                    provider.name,
                    f"{type(e).__name__}: {e}",
                    self._clock.elapsed_ms(started),
                )

        logger.debug(
            f"[pipeline] Stage {stage.value} COMPLETE: {address} "
            f"absent={result.absent} filtered={result.filtered}"
        )
        self.events.publish(EventType.STAGE_COMPLETE, {
            "address": address,
            "stage": stage.value,
            "success": result.success,
            "filtered": result.filtered,
            "filter_reasons": list(result.filter_reasons),
            "absent": result.absent,
            "error": result.error,
            "latency_ms": round(result.latency_ms, 2),
            "from_cache": result.from_cache,
        })
        return result

    def _record(self, analysis: CombinedAnalysis, elapsed_ms: float) -> None:
        self._stats.tokens_processed += 1
        self._stats.total_processing_ms += elapsed_ms
        if analysis.passed:
            self._stats.tokens_passed += 1
        else:
            self._stats.tokens_filtered += 1

    # ─────────────────────────────────────────────────────────────
    # Batch
    # ─────────────────────────────────────────────────────────────

    async def process_batch(
        self,
        addresses: Sequence[str],
        criteria: FilterCriteria,
        max_concurrent: Optional[int] = None,
        on_complete: Optional[CompletionCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> List[CombinedAnalysis]:
        """
        Analyze many tokens with bounded concurrency.

        A failing address is logged and skipped; it never affects the
        others. Successful analyses are returned in input order.

        Args:
            addresses: Token addresses
            criteria: Filter criteria applied to every token
            max_concurrent: Concurrency bound (defaults to config)
            on_complete: Called with each analysis as soon as it finishes
            on_error: Called with (address, exception) for skipped addresses
        """
        limit = self.config.default_max_concurrent if max_concurrent is None else max_concurrent
        if limit < 1:
            raise ValueError("max_concurrent must be at least 1")
        semaphore = asyncio.Semaphore(limit)

        async def _one(address: str) -> Optional[CombinedAnalysis]:
            async with semaphore:
                try:
                    analysis = await self.analyze(address, criteria)
                except ValidationError as e:
                    self._stats.error_count += 1
                    logger.warning(f"[pipeline] Skipping {address!r}: {e.message}")
                    if on_error is not None:
                        on_error(address, e)
                    return None
                except Exception as e:
                    self._stats.error_count += 1
                    logger.error(
                        f"[pipeline] Unexpected error for {address}: {type(e).__name__}: {e}",
                        exc_info=True,
                    )
                    if on_error is not None:
                        on_error(address, e)
                    return None

            if on_complete is not None:
                on_complete(analysis)
            return analysis

        logger.info(f"[pipeline] Processing batch of {len(addresses)} (max_concurrent={limit})")
        results = await asyncio.gather(*(_one(a) for a in addresses))
        return [r for r in results if r is not None]

    # ─────────────────────────────────────────────────────────────
    # Cache and stats
    # ─────────────────────────────────────────────────────────────

    def invalidate_cache(self, address: Optional[str] = None) -> int:
        """Drop cached analyses for one address, or all of them."""
        if address is not None:
            return 1 if self._cache.delete(cache_key(address)) else 0
        removed = self._cache.delete_prefix(ANALYSIS_CACHE_PREFIX)
        logger.info(f"[pipeline] Invalidated {removed} cached analyses")
        return removed

    def get_stats(self) -> Dict[str, Any]:
        return self._stats.to_dict()

    def reset_stats(self) -> None:
        self._stats = PipelineStats()

    async def close(self) -> None:
        """Close every provider client."""
        await asyncio.gather(
            *(p.close() for p in self._providers.values()),
            return_exceptions=True,
        )


def cache_key(address: str) -> str:
    return f"{ANALYSIS_CACHE_PREFIX}{address}"


__all__ = [
    "ANALYSIS_CACHE_PREFIX",
    "AnalysisPipeline",
    "PipelineStats",
    "cache_key",
]
