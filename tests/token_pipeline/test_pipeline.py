"""
Tests for the Analysis Pipeline.

============================================================
PURPOSE
============================================================
Verify that one address becomes one CombinedAnalysis, and that batches
isolate failures.

TEST PRINCIPLES:
- Providers are stubs, no network
- A provider failure is an absent stage, never an exception
- Cached analyses are returned unchanged
- Event ordering holds per token

============================================================
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from core.clock import MockClock
from token_providers.cache import CacheStore
from token_providers.criteria import FilterCriteria
from token_providers.models import RiskLevel
from token_pipeline.events import WILDCARD, EventType
from token_pipeline.exceptions import ValidationError
from token_pipeline.models import PipelineConfig, StageName
from token_pipeline.pipeline import AnalysisPipeline, PipelineStats, cache_key

from tests.samples import address, stub_provider, stub_providers


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    """Deterministic clock."""
    return MockClock()


@pytest.fixture
def cache(clock):
    """Analysis cache."""
    return CacheStore(clock=clock, name="analyses")


def make_pipeline(cache, clock, providers=None, **config):
    return AnalysisPipeline(
        providers if providers is not None else stub_providers(),
        cache,
        config=PipelineConfig(**config),
        clock=clock,
    )


@pytest.fixture
def pipeline(cache, clock):
    """Pipeline with four healthy stub providers."""
    return make_pipeline(cache, clock)


@pytest.fixture
def recorder(pipeline):
    """Every event published on the pipeline's bus."""
    events = []
    pipeline.events.subscribe(WILDCARD, events.append)
    return events


# ============================================================
# SINGLE TOKEN
# ============================================================

class TestAnalyze:
    """Merging, scoring and filtering one token."""

    @pytest.mark.asyncio
    async def test_all_stages_present_and_passing(self, pipeline):
        analysis = await pipeline.analyze(address(1), FilterCriteria())

        assert analysis.passed
        assert analysis.failed_filters == ()
        assert analysis.absent_stages == ()
        assert analysis.overall_score == 100
        assert analysis.symbol == "GOOD"
        assert analysis.risk_level == RiskLevel.LOW
        assert set(analysis.stages) == {"market", "security", "routing", "holders"}
        assert analysis.recommendations[0] == "High-quality token with strong fundamentals"

    @pytest.mark.asyncio
    async def test_address_whitespace_stripped(self, pipeline):
        analysis = await pipeline.analyze(f"  {address(1)} ", FilterCriteria())
        assert analysis.address == address(1)

    @pytest.mark.asyncio
    async def test_invalid_address_makes_no_calls(self, cache, clock):
        providers = stub_providers()
        pipeline = make_pipeline(cache, clock, providers)

        with pytest.raises(ValidationError):
            await pipeline.analyze("0xNotSolana", FilterCriteria())

        for provider in providers.values():
            provider.analyze.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_filters_ordered_by_stage(self, cache, clock):
        addr = address(2)
        providers = stub_providers(
            market={"overrides": {addr: {"liquidity_usd": 1_000.0}}},
            holders={"overrides": {addr: {"top_holders_percentage": 85.0}}},
            routing={"overrides": {addr: {"slippage_estimate": 25.0}}},
        )
        pipeline = make_pipeline(cache, clock, providers)

        analysis = await pipeline.analyze(addr, FilterCriteria())

        assert not analysis.passed
        assert analysis.failed_filters == (
            "DEX: Insufficient liquidity: $1,000 < $5,000",
            "Routing: Slippage too high: 25.00% > 10%",
            "Creator: Top holders concentration too high: 85.0% > 60%",
        )

    @pytest.mark.asyncio
    async def test_absent_stage_is_tolerated_with_penalty(self, cache, clock):
        addr = address(3)
        pipeline = make_pipeline(cache, clock, stub_providers(security={"fail": (addr,)}))

        analysis = await pipeline.analyze(addr, FilterCriteria())

        assert analysis.security is None
        assert analysis.absent_stages == ("security",)
        assert analysis.passed
        assert analysis.risk_level == RiskLevel.HIGH
        # 75 market points minus the high-risk penalty
        assert analysis.overall_score == 55
        assert "Security data unavailable" in analysis.recommendations
        assert analysis.stages["security"]["absent"] is True

    @pytest.mark.asyncio
    async def test_strict_stages_fail_absent_data(self, cache, clock):
        addr = address(4)
        pipeline = make_pipeline(
            cache, clock, stub_providers(routing={"fail": (addr,)}), strict_stages=True
        )

        analysis = await pipeline.analyze(addr, FilterCriteria())

        assert not analysis.passed
        assert analysis.failed_filters == ("Routing: data unavailable",)

    @pytest.mark.asyncio
    async def test_provider_exception_becomes_absent(self, cache, clock):
        providers = stub_providers()
        providers[StageName.HOLDERS].analyze = AsyncMock(side_effect=RuntimeError("boom"))
        pipeline = make_pipeline(cache, clock, providers)

        analysis = await pipeline.analyze(address(5), FilterCriteria())

        assert analysis.absent_stages == ("holders",)
        assert "RuntimeError: boom" in analysis.stages["holders"]["error"]

    @pytest.mark.asyncio
    async def test_stage_timeout_becomes_absent(self, cache, clock):
        providers = stub_providers()
        providers[StageName.SECURITY] = stub_provider(StageName.SECURITY, delay=1.0)
        pipeline = make_pipeline(cache, clock, providers, stage_timeout_seconds=0.05)

        analysis = await pipeline.analyze(address(6), FilterCriteria())

        assert analysis.absent_stages == ("security",)
        assert "Stage timeout" in analysis.stages["security"]["error"]

    @pytest.mark.asyncio
    async def test_missing_provider_is_absent(self, cache, clock):
        providers = stub_providers()
        del providers[StageName.ROUTING]
        pipeline = make_pipeline(cache, clock, providers)

        analysis = await pipeline.analyze(address(7), FilterCriteria())

        assert analysis.absent_stages == ("routing",)
        assert analysis.stages["routing"]["error"] == "No provider configured"

    @pytest.mark.asyncio
    async def test_all_stages_absent(self, cache, clock):
        addr = address(8)
        pipeline = make_pipeline(cache, clock, stub_providers(
            market={"fail": (addr,)},
            security={"fail": (addr,)},
            routing={"fail": (addr,)},
            holders={"fail": (addr,)},
        ))

        analysis = await pipeline.analyze(addr, FilterCriteria())

        assert analysis.absent_stages == ("market", "security", "routing", "holders")
        assert analysis.overall_score == 0
        assert analysis.passed


# ============================================================
# CACHE
# ============================================================

class TestAnalysisCache:
    """Fresh analyses are served from cache."""

    @pytest.mark.asyncio
    async def test_second_call_is_cached(self, cache, clock):
        providers = stub_providers()
        pipeline = make_pipeline(cache, clock, providers)

        first = await pipeline.analyze(address(1), FilterCriteria())
        second = await pipeline.analyze(address(1), FilterCriteria())

        assert second is first
        for provider in providers.values():
            assert provider.analyze.await_count == 1
        assert pipeline.get_stats()["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_cache_expires(self, cache, clock):
        providers = stub_providers()
        pipeline = make_pipeline(cache, clock, providers, analysis_cache_ttl_seconds=30)

        await pipeline.analyze(address(1), FilterCriteria())
        clock.advance(30)
        await pipeline.analyze(address(1), FilterCriteria())

        assert providers[StageName.MARKET].analyze.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_single_and_all(self, pipeline, cache):
        await pipeline.analyze(address(1), FilterCriteria())
        await pipeline.analyze(address(2), FilterCriteria())
        cache.set("provider:dexscreener:x", "kept")

        assert pipeline.invalidate_cache(address(1)) == 1
        assert pipeline.invalidate_cache(address(1)) == 0
        assert pipeline.invalidate_cache() == 1
        assert cache.get(cache_key(address(2))) is None
        assert cache.get("provider:dexscreener:x") == "kept"


# ============================================================
# EVENTS
# ============================================================

class TestPipelineEvents:
    """Per-token event ordering."""

    @pytest.mark.asyncio
    async def test_stage_events_precede_token_complete(self, pipeline, recorder):
        addr = address(1)
        await pipeline.analyze(addr, FilterCriteria())

        types = [(e.type, e.payload.get("stage")) for e in recorder]
        for stage in ("market", "security", "routing", "holders"):
            assert types.index(("stage:start", stage)) < types.index(("stage:complete", stage))
        assert types[-1] == ("token:complete", None)
        assert len(recorder) == 9

        complete = recorder[-1].payload
        assert complete["address"] == addr
        assert complete["passed"] is True
        assert complete["absent_stages"] == []

    @pytest.mark.asyncio
    async def test_cache_hit_publishes_nothing(self, pipeline, recorder):
        await pipeline.analyze(address(1), FilterCriteria())
        count = len(recorder)
        await pipeline.analyze(address(1), FilterCriteria())
        assert len(recorder) == count

    @pytest.mark.asyncio
    async def test_stage_complete_payload(self, cache, clock):
        addr = address(2)
        pipeline = make_pipeline(cache, clock, stub_providers(security={"fail": (addr,)}))
        completes = []
        pipeline.events.subscribe(EventType.STAGE_COMPLETE, completes.append)

        await pipeline.analyze(addr, FilterCriteria())

        security = next(e.payload for e in completes if e.payload["stage"] == "security")
        assert security["absent"] is True
        assert security["success"] is False
        assert security["error"] == "HTTP 503"


# ============================================================
# BATCH
# ============================================================

class TestProcessBatch:
    """Bounded concurrency and per-token isolation."""

    @pytest.mark.asyncio
    async def test_results_in_input_order(self, pipeline):
        addresses = [address(i) for i in range(1, 6)]
        results = await pipeline.process_batch(addresses, FilterCriteria())
        assert [r.address for r in results] == addresses

    @pytest.mark.asyncio
    async def test_invalid_address_skipped(self, pipeline):
        completed, errors = [], []
        addresses = [address(1), "bad address", address(2)]

        results = await pipeline.process_batch(
            addresses,
            FilterCriteria(),
            on_complete=completed.append,
            on_error=lambda a, e: errors.append((a, e)),
        )

        assert [r.address for r in results] == [address(1), address(2)]
        assert len(completed) == 2
        assert errors[0][0] == "bad address"
        assert isinstance(errors[0][1], ValidationError)

        stats = pipeline.get_stats()
        assert stats["tokens_processed"] == 2
        assert stats["error_count"] == 1
        assert stats["success_rate"] == pytest.approx(66.67)

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, cache, clock):
        providers = stub_providers(market={"delay": 0.01})
        inner = providers[StageName.MARKET].analyze.side_effect
        active = peak = 0

        async def tracked(addr, criteria):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            try:
                return await inner(addr, criteria)
            finally:
                active -= 1

        providers[StageName.MARKET].analyze.side_effect = tracked
        pipeline = make_pipeline(cache, clock, providers)

        results = await pipeline.process_batch(
            [address(i) for i in range(1, 7)],
            FilterCriteria(),
            max_concurrent=2,
        )

        assert len(results) == 6
        assert peak == 2

    @pytest.mark.asyncio
    async def test_invalid_concurrency(self, pipeline):
        with pytest.raises(ValueError):
            await pipeline.process_batch([address(1)], FilterCriteria(), max_concurrent=0)

    @pytest.mark.asyncio
    async def test_empty_batch(self, pipeline):
        assert await pipeline.process_batch([], FilterCriteria()) == []


# ============================================================
# LIFECYCLE
# ============================================================

class TestLifecycle:
    """Config, stats and close."""

    def test_invalid_config_rejected(self, pipeline):
        with pytest.raises(ValueError):
            pipeline.configure(PipelineConfig(stage_timeout_seconds=0))

    def test_stats_defaults(self):
        stats = PipelineStats()
        assert stats.success_rate == 100.0
        assert stats.average_processing_time_ms == 0.0

    @pytest.mark.asyncio
    async def test_reset_stats(self, pipeline):
        await pipeline.analyze(address(1), FilterCriteria())
        pipeline.reset_stats()
        assert pipeline.get_stats()["tokens_processed"] == 0

    @pytest.mark.asyncio
    async def test_close_closes_providers(self, cache, clock):
        providers = stub_providers()
        providers[StageName.MARKET].close = AsyncMock(side_effect=RuntimeError("already closed"))
        pipeline = make_pipeline(cache, clock, providers)

        await pipeline.close()

        for provider in providers.values():
            provider.close.assert_awaited_once()


def test_stage_timeout_leaves_no_pending_tasks():
    """A timed-out stage leaves no pending task behind."""
    async def scenario():
        cache = CacheStore(clock=MockClock())
        providers = stub_providers()
        providers[StageName.HOLDERS] = stub_provider(StageName.HOLDERS, delay=5)
        pipeline = make_pipeline(cache, MockClock(), providers, stage_timeout_seconds=0.01)
        await pipeline.analyze(address(9), FilterCriteria())
        current = asyncio.current_task()
        return [t for t in asyncio.all_tasks() if t is not current]

    assert asyncio.run(scenario()) == []
