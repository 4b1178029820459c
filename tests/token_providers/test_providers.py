"""
Tests for the four provider adapters.

============================================================
PURPOSE
============================================================
Verify that each adapter maps realistic raw payloads onto the canonical
data shapes and applies its own filter rules.

TEST PRINCIPLES:
- _get_json is replaced with canned payloads routed by path
- Missing optional fields never raise
- Missing required fields become filter reasons, not absence

============================================================
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from core.clock import MockClock
from token_providers.criteria import FilterCriteria
from token_providers.exceptions import ProviderPermanentError, ProviderTransientError
from token_providers.models import FundingPattern, RiskLevel
from token_providers.providers import (
    DexScreenerClient,
    JupiterClient,
    RugCheckClient,
    SolscanClient,
)
from token_providers.rate_limiter import RateLimiter


ADDRESS = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    """Clock fixed at NOW."""
    return MockClock(initial_time=NOW)


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock)


def routed(routes):
    """AsyncMock for _get_json that answers by path prefix."""
    async def _get_json(path, params=None):
        for prefix, answer in routes.items():
            if path.startswith(prefix):
                if isinstance(answer, Exception):
                    raise answer
                return answer
        raise AssertionError(f"unexpected path {path}")
    return AsyncMock(side_effect=_get_json)


def created_ms(hours_ago):
    return int((NOW - timedelta(hours=hours_ago)).timestamp() * 1000)


# ============================================================
# DEXSCREENER
# ============================================================

class TestDexScreener:
    """Market data adapter."""

    @pytest.fixture
    def client(self, limiter, clock):
        return DexScreenerClient(limiter, clock=clock)

    @pytest.mark.asyncio
    async def test_picks_deepest_solana_pair(self, client):
        raw = {
            "pairs": [
                {"chainId": "solana", "liquidity": {"usd": 10_000}, "pairAddress": "shallow",
                 "pairCreatedAt": created_ms(3)},
                {"chainId": "ethereum", "liquidity": {"usd": 900_000}, "pairAddress": "other-chain",
                 "pairCreatedAt": created_ms(3)},
                {"chainId": "solana", "liquidity": {"usd": 80_000}, "pairAddress": "deep",
                 "pairCreatedAt": created_ms(3), "baseToken": {"symbol": "DEEP", "name": "Deep"},
                 "priceUsd": "0.5", "volume": {"h24": "12000"}, "priceChange": {"h24": -4.2},
                 "marketCap": 400_000, "dexId": "orca"},
            ]
        }
        with patch.object(client, "_get_json", routed({"/tokens/": raw})):
            result = await client.analyze(ADDRESS, FilterCriteria())

        market = result.data
        assert market.pair_address == "deep"
        assert market.symbol == "DEEP"
        assert market.liquidity_usd == 80_000
        assert market.volume_24h == 12_000
        assert market.price_change_24h == -4.2
        assert market.market_cap == 400_000
        assert market.dex_id == "orca"
        assert market.age_hours == pytest.approx(3.0)
        assert result.filter_reasons == ()

    def test_market_cap_falls_back_to_fdv_then_liquidity(self, client):
        base = {"chainId": "solana", "liquidity": {"usd": 20_000}, "pairCreatedAt": created_ms(1)}
        with_fdv = client.normalize(ADDRESS, {"pairs": [dict(base, fdv=123_000, priceUsd="1")]})
        estimated = client.normalize(ADDRESS, {"pairs": [dict(base, priceUsd="1")]})
        no_price = client.normalize(ADDRESS, {"pairs": [dict(base)]})

        assert with_fdv.market_cap == 123_000
        assert estimated.market_cap == 200_000
        assert no_price.market_cap == 0

    @pytest.mark.asyncio
    async def test_no_pairs_is_a_filter_reason(self, client):
        with patch.object(client, "_get_json", routed({"/tokens/": {"pairs": None}})):
            result = await client.analyze(ADDRESS, FilterCriteria())

        assert not result.absent
        assert result.filter_reasons[0] == "No DEXScreener data found"

    def test_missing_required_fields(self, client):
        raw = {"pairs": [{"chainId": "solana", "liquidity": {}}]}
        assert client.missing_required(raw) == [
            "Missing liquidity data",
            "Missing pair creation time",
        ]

    @pytest.mark.asyncio
    async def test_non_object_payload_is_absent(self, client):
        with patch.object(client, "_get_json", routed({"/tokens/": ["unexpected"]})):
            result = await client.analyze(ADDRESS, FilterCriteria())

        assert result.absent
        assert "Expected an object" in result.error

    def test_young_tokens_cached_briefly(self, client):
        young = client.normalize(ADDRESS, {"pairs": [{"chainId": "solana", "pairCreatedAt": created_ms(0.5)}]})
        older = client.normalize(ADDRESS, {"pairs": [{"chainId": "solana", "pairCreatedAt": created_ms(5)}]})
        assert client.cache_ttl(young) == 30
        assert client.cache_ttl(older) == 60

    @pytest.mark.asyncio
    async def test_latest_token_addresses(self, client):
        profiles = [
            {"chainId": "solana", "tokenAddress": "A1"},
            {"chainId": "ethereum", "tokenAddress": "E1"},
            {"chainId": "solana", "tokenAddress": "A1"},
            {"chainId": "solana", "tokenAddress": "A2"},
            {"chainId": "solana", "tokenAddress": "A3"},
        ]
        with patch.object(client, "_get_json", routed({"https://": profiles})):
            addresses = await client.get_latest_token_addresses(limit=2)

        assert addresses == ["A1", "A2"]


# ============================================================
# RUGCHECK
# ============================================================

def rugcheck_report(**overrides):
    report = {
        "mintAuthority": None,
        "freezeAuthority": None,
        "topHolders": [{"pct": 3.0} for _ in range(12)],
        "totalHolders": 850,
        "markets": [{"lp": {"lpLockedPct": 99.5}}],
        "tokenMeta": {"name": "Solid", "symbol": "SLD"},
        "risks": [],
    }
    report.update(overrides)
    return report


class TestRugCheck:
    """Security adapter scoring."""

    @pytest.fixture
    def client(self, limiter, clock):
        return RugCheckClient(limiter, clock=clock)

    def test_clean_report_scores_ten(self, client):
        security = client.normalize(ADDRESS, rugcheck_report())
        assert security.safety_score == 10
        assert security.holder_concentration == pytest.approx(30.0)
        assert security.liquidity_locked
        assert not security.honeypot_risk
        assert security.risk_level == RiskLevel.LOW
        assert security.risks == ()

    def test_risky_report(self, client):
        security = client.normalize(ADDRESS, rugcheck_report(
            mintAuthority="MintAuth",
            freezeAuthority="FreezeAuth",
            topHolders=[{"pct": 70.0}],
            totalHolders=None,
            markets=[],
        ))
        # 10 - 2 (mint) - 2 (freeze) - 3 (concentration) - 3 (unlocked LP)
        assert security.safety_score == 0
        assert security.mint_authority and security.freeze_authority
        assert security.holder_count == 1
        assert security.honeypot_risk
        assert security.risk_level == RiskLevel.HIGH
        assert "Liquidity not locked - rug pull risk" in security.risks

    def test_moderate_concentration_is_a_warning(self, client):
        security = client.normalize(ADDRESS, rugcheck_report(topHolders=[{"pct": 5.0} for _ in range(10)]))
        assert security.safety_score == 9
        assert security.warnings == ("Moderate holder concentration: 50.0%",)

    def test_reported_risks_split_by_level(self, client):
        security = client.normalize(ADDRESS, rugcheck_report(risks=[
            {"name": "Copycat token", "level": "danger"},
            {"name": "Low LP providers", "level": "warn"},
            {"level": "danger"},
        ]))
        assert "Copycat token" in security.risks
        assert "Low LP providers" in security.warnings

    def test_rugged_forces_zero(self, client):
        security = client.normalize(ADDRESS, rugcheck_report(rugged=True))
        assert security.safety_score == 0
        assert "Token reported as rugged" in security.risks

    def test_suspicious_name_and_honeypot_indicator(self, client):
        security = client.normalize(
            ADDRESS,
            rugcheck_report(tokenMeta={"name": "MaxSell Moon 🚀", "symbol": "MOON"}),
        )
        assert security.safety_score == 9
        assert security.honeypot_risk

    @pytest.mark.asyncio
    async def test_missing_authority_fields_are_reasons(self, client):
        raw = rugcheck_report()
        del raw["mintAuthority"]
        with patch.object(client, "_get_json", routed({"/tokens/": raw})):
            result = await client.analyze(ADDRESS, FilterCriteria())

        assert result.filter_reasons[0] == "Missing security field: mintAuthority"
        # a missing key counts as not renounced
        assert result.data.mint_authority

    def test_security_filter_reasons(self, client):
        security = client.normalize(ADDRESS, rugcheck_report(markets=[], topHolders=[{"pct": 95.0}]))
        reasons = client.filter_reasons(security, FilterCriteria(min_safety_score=6))
        assert reasons == [
            "Safety score too low: 4 < 6",
            "Honeypot risk detected",
        ]


# ============================================================
# JUPITER
# ============================================================

class TestJupiter:
    """Routing adapter."""

    @pytest.fixture
    def client(self, limiter, clock):
        return JupiterClient(limiter, clock=clock)

    QUOTE = {
        "outAmount": "123456789",
        "priceImpactPct": "-2.5",
        "routePlan": [{"swapInfo": {}}, {"swapInfo": {}}],
    }

    @pytest.mark.asyncio
    async def test_quote_maps_to_routing(self, client):
        with patch.object(client, "_get_json", routed({"/quote": self.QUOTE, "https://token.jup.ag": []})):
            result = await client.analyze(ADDRESS, FilterCriteria())

        routing = result.data
        assert routing.routing_available
        assert routing.route_count == 2
        assert routing.slippage_estimate == 2.5
        assert routing.out_amount == 123456789
        assert not routing.blacklisted
        assert result.filter_reasons == ()

    @pytest.mark.asyncio
    async def test_no_route_is_data_not_absence(self, client):
        no_route = ProviderPermanentError("HTTP 400", provider_name="jupiter", status_code=400)
        with patch.object(client, "_get_json", routed({"/quote": no_route, "https://token.jup.ag": []})):
            result = await client.analyze(ADDRESS, FilterCriteria())

        assert not result.absent
        assert not result.data.routing_available
        assert result.filter_reasons == ("No routing available through Jupiter",)

    @pytest.mark.asyncio
    async def test_other_permanent_errors_are_absent(self, client):
        forbidden = ProviderPermanentError("HTTP 403", provider_name="jupiter", status_code=403)
        with patch.object(client, "_get_json", routed({"/quote": forbidden})):
            result = await client.analyze(ADDRESS, FilterCriteria())

        assert result.absent

    @pytest.mark.asyncio
    async def test_blacklist_loaded_once(self, client, clock):
        token_list = [
            {"address": ADDRESS, "tags": ["community-blacklisted"]},
            {"address": "Other", "tags": ["verified"]},
        ]
        get_json = routed({"/quote": self.QUOTE, "https://token.jup.ag": token_list})
        with patch.object(client, "_get_json", get_json):
            first = await client.fetch_raw(ADDRESS)
            second = await client.fetch_raw("Other")

        assert first["blacklisted"] is True
        assert second["blacklisted"] is False
        list_calls = [c for c in get_json.await_args_list if c.args[0].startswith("https://")]
        assert len(list_calls) == 1

    @pytest.mark.asyncio
    async def test_blacklist_failure_is_tolerated(self, client):
        outage = ProviderTransientError("Failed after 4 attempts", provider_name="jupiter")
        with patch.object(client, "_get_json", routed({"/quote": self.QUOTE, "https://token.jup.ag": outage})):
            result = await client.analyze(ADDRESS, FilterCriteria())

        assert result.success
        assert not result.data.blacklisted

    def test_slippage_filter(self, client):
        routing = client.normalize(ADDRESS, {"quote": dict(self.QUOTE, priceImpactPct="12.0")})
        reasons = client.filter_reasons(routing, FilterCriteria(max_slippage=10))
        assert reasons == ["Slippage too high: 12.00% > 10%"]


# ============================================================
# SOLSCAN
# ============================================================

def holder_rows(count, amount=100.0):
    return [{"owner": f"Holder{i}", "address": f"Acct{i}", "amount": amount} for i in range(count)]


class TestSolscan:
    """Holder and creator adapter."""

    @pytest.fixture
    def client(self, limiter, clock):
        return SolscanClient(limiter, clock=clock)

    @pytest.mark.asyncio
    async def test_organic_distribution_and_creator_history(self, client):
        creator_tokens = [
            {"tokenAddress": ADDRESS, "tokenAmount": {"uiAmount": 1000}},
            {"tokenAddress": "Prev1", "tokenAmount": {"uiAmount": 0}},
            {"tokenAddress": "Prev2", "tokenAmount": {"uiAmount": 15.5}},
            {"tokenAddress": "Prev3", "tokenAmount": {"uiAmount": 0}},
        ]
        routes = {
            "/token/meta": {"supply": "10000", "creator": "CreatorWallet"},
            "/token/holders": {"data": holder_rows(20), "total": 345},
            "/account/tokens": creator_tokens,
        }
        with patch.object(client, "_get_json", routed(routes)):
            result = await client.analyze(ADDRESS, FilterCriteria())

        holders = result.data
        assert holders.holder_count == 345
        assert len(holders.top_holders) == 3
        assert holders.top_holders[0].rank == 1
        assert holders.top_holders_percentage == pytest.approx(3.0)
        assert holders.funding_pattern == FundingPattern.ORGANIC
        assert holders.creator.address == "CreatorWallet"
        assert holders.creator.created_tokens == 3
        assert holders.creator.rugged_tokens == 2
        assert result.filter_reasons == ()

    @pytest.mark.asyncio
    async def test_creator_lookup_failure_keeps_token(self, client):
        routes = {
            "/token/meta": {"supply": "10000", "creator": "CreatorWallet"},
            "/token/holders": {"data": holder_rows(20)},
            "/account/tokens": ProviderTransientError("Failed after 4 attempts"),
        }
        with patch.object(client, "_get_json", routed(routes)):
            result = await client.analyze(ADDRESS, FilterCriteria())

        assert result.success
        assert result.data.creator.address == "CreatorWallet"
        assert result.data.creator.rugged_tokens == 0

    def test_few_holders_are_suspicious(self, client):
        holders = client.normalize(ADDRESS, {"meta": {}, "holders": {"data": holder_rows(4)}})
        assert holders.funding_pattern == FundingPattern.SUSPICIOUS

    def test_dominant_holder_is_suspicious(self, client):
        rows = holder_rows(12, amount=10.0) + [{"owner": "Whale", "amount": 1000.0}]
        holders = client.normalize(ADDRESS, {"meta": {}, "holders": {"data": rows}})
        assert holders.funding_pattern == FundingPattern.SUSPICIOUS
        assert holders.top_holders[0].address == "Whale"

    def test_test_wallets_are_coordinated(self, client):
        rows = [{"address": f"test{i}", "amount": 10.0} for i in range(6)] + holder_rows(8, amount=10.0)
        holders = client.normalize(ADDRESS, {"meta": {}, "holders": {"data": rows}})
        assert holders.funding_pattern == FundingPattern.COORDINATED

    def test_missing_holder_list(self, client):
        raw = {"meta": {}, "holders": None, "creator_tokens": None}
        assert client.missing_required(raw) == ["Holder list unavailable"]
        holders = client.normalize(ADDRESS, raw)
        assert holders.top_holders_percentage == 100.0
        assert holders.creator.address == "unknown"

    def test_holder_filters(self, client):
        rows = [{"owner": "Big", "amount": 700.0}] + holder_rows(10, amount=30.0)
        holders = client.normalize(ADDRESS, {"meta": {"supply": 1000}, "holders": {"data": rows}})
        reasons = client.filter_reasons(holders, FilterCriteria(max_top_holders_percentage=60))
        assert reasons == ["Top holders concentration too high: 76.0% > 60%"]
