"""
Token Providers Package - Rate-limited, cached clients for token data APIs.

Provides fail-safe access to the four external sources a token analysis
draws on:

- DexScreener: market metrics (liquidity, volume, price action, age)
- RugCheck: contract security and honeypot checks
- Jupiter: swap routing and slippage
- Solscan: holder distribution and creator history

Features:
- Per-provider sliding-window rate limiting
- Exponential backoff retry on transient failures
- TTL cache for normalized responses
- Health tracking per provider
- Outages become absent results, never exceptions

Quick Start:
    from token_providers import CacheStore, RateLimiter, DexScreenerClient, FilterCriteria

    async def check(address):
        async with DexScreenerClient(RateLimiter(), CacheStore()) as client:
            result = await client.analyze(address, FilterCriteria())
            print(result.data, result.filter_reasons)
"""

from token_providers.base import BaseProviderClient, SOL_MINT, USDC_MINT
from token_providers.cache import CacheEntry, CacheStore
from token_providers.criteria import FilterCriteria
from token_providers.exceptions import (
    NormalizationError,
    ProviderError,
    ProviderPermanentError,
    ProviderRequestError,
    ProviderTransientError,
    RateLimited,
)
from token_providers.health import HealthReport, HealthState, ProviderHealthMonitor
from token_providers.models import (
    CreatorInfo,
    FundingPattern,
    HolderData,
    HolderEntry,
    MarketData,
    ProviderHealth,
    ProviderResult,
    ProviderStatus,
    RiskLevel,
    RoutingData,
    SecurityData,
)
from token_providers.providers import (
    DexScreenerClient,
    JupiterClient,
    RugCheckClient,
    SolscanClient,
)
from token_providers.rate_limiter import (
    DEFAULT_RATE_LIMITS,
    RateLimitConfig,
    RateLimiter,
    RateLimitState,
    RetryPolicy,
)

__all__ = [
    # Base
    "BaseProviderClient",
    "SOL_MINT",
    "USDC_MINT",
    # Infrastructure
    "CacheEntry",
    "CacheStore",
    "DEFAULT_RATE_LIMITS",
    "RateLimitConfig",
    "RateLimiter",
    "RateLimitState",
    "RetryPolicy",
    # Criteria
    "FilterCriteria",
    # Exceptions
    "NormalizationError",
    "ProviderError",
    "ProviderPermanentError",
    "ProviderRequestError",
    "ProviderTransientError",
    "RateLimited",
    # Health
    "HealthReport",
    "HealthState",
    "ProviderHealthMonitor",
    # Models
    "CreatorInfo",
    "FundingPattern",
    "HolderData",
    "HolderEntry",
    "MarketData",
    "ProviderHealth",
    "ProviderResult",
    "ProviderStatus",
    "RiskLevel",
    "RoutingData",
    "SecurityData",
    # Providers
    "DexScreenerClient",
    "JupiterClient",
    "RugCheckClient",
    "SolscanClient",
]

__version__ = "1.0.0"
