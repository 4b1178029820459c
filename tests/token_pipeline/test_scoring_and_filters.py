"""
Tests for scoring and admission filters.

============================================================
PURPOSE
============================================================
Verify the weighted-point score and the ordered, non-short-circuiting
filter evaluation.

TEST PRINCIPLES:
- Scores are always within 0-100
- Missing data earns nothing and never raises
- Every failing reason is reported, in stage order

============================================================
"""

import pytest

from token_providers.criteria import FilterCriteria
from token_providers.models import CreatorInfo, ProviderResult, RiskLevel
from token_pipeline.filters import FilterEvaluator
from token_pipeline.models import StageName
from token_pipeline.scoring import ScoringConfig, ScoringEngine, describe

from tests.samples import good_holders, good_market, good_routing, good_security


ADDR = "So11111111111111111111111111111111111111112"


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def engine():
    """Scoring engine with standard tiers."""
    return ScoringEngine()


# ============================================================
# SCORING
# ============================================================

class TestScoring:
    """Bucket points and penalties."""

    def test_best_case_is_100(self, engine):
        breakdown = engine.score(
            good_market(ADDR), good_security(ADDR), good_routing(ADDR), good_holders(ADDR)
        )
        assert breakdown.liquidity == 30
        assert breakdown.volume == 25
        assert breakdown.momentum == 20
        assert breakdown.security == 25
        assert breakdown.penalty == 0
        assert breakdown.total == 100

    def test_nothing_known_clamps_to_zero(self, engine):
        breakdown = engine.score(None, None, None, None)
        assert breakdown.penalty == 30
        assert breakdown.total == 0

    @pytest.mark.parametrize("liquidity,points", [
        (100_000, 20),
        (100_001, 30),
        (50_001, 20),
        (10_000, 0),
        (10_001, 10),
    ])
    def test_liquidity_tiers_are_strict(self, engine, liquidity, points):
        market = good_market(ADDR, liquidity_usd=liquidity)
        assert engine.score(market, good_security(ADDR)).liquidity == points

    def test_negative_momentum_earns_nothing(self, engine):
        market = good_market(ADDR, price_change_24h=-80.0)
        assert engine.score(market, good_security(ADDR), good_routing(ADDR), good_holders(ADDR)).momentum == 0

    def test_medium_risk_penalty(self, engine):
        security = good_security(ADDR, safety_score=5.0, liquidity_locked=False)
        breakdown = engine.score(good_market(ADDR), security, good_routing(ADDR), good_holders(ADDR))
        # renounced only, no clean-contract points
        assert breakdown.security == 9
        assert breakdown.penalty == 10
        assert breakdown.total == 74

    def test_honeypot_is_high_risk(self, engine):
        security = good_security(ADDR, honeypot_risk=True)
        assert security.risk_level == RiskLevel.HIGH
        breakdown = engine.score(good_market(ADDR), security, good_routing(ADDR), good_holders(ADDR))
        assert breakdown.penalty == 20
        assert breakdown.security == 17

    def test_missing_routing_and_holders_penalised(self, engine):
        breakdown = engine.score(good_market(ADDR), good_security(ADDR))
        assert breakdown.penalty == 10
        assert breakdown.total == 90

    def test_custom_config(self):
        engine = ScoringEngine(ScoringConfig(missing_stage_penalty=0))
        assert engine.score(good_market(ADDR), good_security(ADDR)).total == 100

    def test_describe(self, engine):
        breakdown = engine.score(good_market(ADDR), None)
        assert describe(breakdown, ("security",)) == "score=45.0 penalty=30 absent=security"


class TestRecommendations:
    """Human-readable notes."""

    @pytest.mark.parametrize("score,expected", [
        (85, "High-quality token with strong fundamentals"),
        (65, "Moderate potential, monitor closely"),
        (45, "High risk, proceed with caution"),
        (10, "Very high risk, avoid investment"),
    ])
    def test_tier_note(self, engine, score, expected):
        notes = engine.recommendations(score, good_market(ADDR), good_security(ADDR))
        assert notes[0] == expected

    def test_warnings(self, engine):
        market = good_market(ADDR, liquidity_usd=2_000.0, price_change_24h=-150.0)
        security = good_security(ADDR, honeypot_risk=True)
        notes = engine.recommendations(20, market, security)
        assert "Low liquidity - high slippage risk" in notes
        assert "Extreme price movement - potential pump and dump" in notes
        assert "High honeypot risk detected" in notes


# ============================================================
# FILTERS
# ============================================================

class TestFilterCriteria:
    """Criteria validation."""

    def test_min_age_above_max_age_rejected(self):
        with pytest.raises(ValueError):
            FilterCriteria(min_age=10, max_age=5)

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            FilterCriteria(min_liquidity=-1)

    def test_unknown_update_rejected(self):
        with pytest.raises(ValueError):
            FilterCriteria().with_updates(min_marketcap=5)

    def test_from_dict(self):
        criteria = FilterCriteria.from_dict({"min_liquidity": 20_000, "max_age": None})
        assert criteria.min_liquidity == 20_000
        assert criteria.max_age is None


class TestFilterEvaluator:
    """Ordered, complete reason lists."""

    def test_all_pass(self):
        reasons = FilterEvaluator().evaluate(
            FilterCriteria(),
            good_market(ADDR), good_security(ADDR), good_routing(ADDR), good_holders(ADDR),
        )
        assert reasons == []

    def test_every_failure_reported_in_order(self):
        reasons = FilterEvaluator().evaluate(
            FilterCriteria(),
            market=good_market(ADDR, age_hours=0.1, volume_24h=10.0),
            security=good_security(ADDR, safety_score=3.0, honeypot_risk=True),
            routing=good_routing(ADDR, routing_available=False, blacklisted=True),
            holders=good_holders(ADDR, top_holders_percentage=70.0),
        )
        assert reasons == [
            "DEX: Token too young: 0.1h < 0.5h",
            "DEX: Insufficient volume: $10 < $1,000",
            "Security: Safety score too low: 3 < 6",
            "Security: Honeypot risk detected",
            "Routing: No routing available through Jupiter",
            "Routing: Token is blacklisted on Jupiter",
            "Creator: Top holders concentration too high: 70.0% > 60%",
        ]

    def test_disabled_criteria_skipped(self):
        criteria = FilterCriteria(min_age=None, max_age=None, min_liquidity=None, min_volume=None)
        market = good_market(ADDR, age_hours=100.0, liquidity_usd=1.0, volume_24h=0.0)
        assert FilterEvaluator().evaluate(criteria, market=market) == []

    def test_creator_rugs(self):
        holders = good_holders(ADDR, creator=CreatorInfo(address="C", created_tokens=5, rugged_tokens=3))
        reasons = FilterEvaluator().evaluate(FilterCriteria(max_creator_rugs=2), holders=holders)
        assert reasons == ["Creator: Creator has too many rugs: 3 > 2"]

    def test_admission_criteria_met(self):
        criteria = FilterCriteria(
            min_liquidity=5000, min_volume=1000, min_safety_score=6,
            max_slippage=10, max_creator_rugs=2, max_top_holders_percentage=60,
        )
        reasons = FilterEvaluator().evaluate(
            criteria,
            market=good_market(ADDR, liquidity_usd=6000.0, volume_24h=1500.0),
            security=good_security(ADDR, safety_score=7.0),
            routing=good_routing(ADDR, slippage_estimate=4.0),
            holders=good_holders(
                ADDR,
                creator=CreatorInfo(address="C", created_tokens=4, rugged_tokens=1),
                top_holders_percentage=45.0,
            ),
        )
        assert reasons == []

    def test_low_liquidity_and_concentration(self):
        criteria = FilterCriteria(
            min_liquidity=5000, min_volume=1000, min_safety_score=6,
            max_slippage=10, max_creator_rugs=2, max_top_holders_percentage=60,
        )
        reasons = FilterEvaluator().evaluate(
            criteria,
            market=good_market(ADDR, liquidity_usd=3000.0, volume_24h=1500.0),
            security=good_security(ADDR, safety_score=7.0),
            routing=good_routing(ADDR, slippage_estimate=4.0),
            holders=good_holders(
                ADDR,
                creator=CreatorInfo(address="C", created_tokens=4, rugged_tokens=1),
                top_holders_percentage=70.0,
            ),
        )
        assert reasons == [
            "DEX: Insufficient liquidity: $3,000 < $5,000",
            "Creator: Top holders concentration too high: 70.0% > 60%",
        ]

    def test_absent_data_only_fails_in_strict_mode(self):
        assert FilterEvaluator().evaluate(FilterCriteria()) == []
        assert FilterEvaluator(strict_stages=True).evaluate(FilterCriteria()) == [
            "DEX: data unavailable",
            "Security: data unavailable",
            "Routing: data unavailable",
            "Creator: data unavailable",
        ]

    def test_evaluate_results_prefixes_provider_reasons(self):
        results = {
            StageName.MARKET: ProviderResult("dexscreener", data=object(), filter_reasons=("Missing liquidity data",)),
            StageName.SECURITY: ProviderResult.missing("rugcheck", "HTTP 500"),
            StageName.ROUTING: ProviderResult("jupiter", data=object()),
        }
        assert FilterEvaluator().evaluate_results(results) == ["DEX: Missing liquidity data"]
        assert FilterEvaluator(strict_stages=True).evaluate_results(results) == [
            "DEX: Missing liquidity data",
            "Security: data unavailable",
            "Creator: data unavailable",
        ]
