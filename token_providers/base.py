"""
Base Provider Client - Abstract interface for all token data providers.

All providers MUST implement this interface to ensure:
- Isolation
- Replaceability
- Fail-safety

A provider outage degrades one stage of one analysis. It never raises
out of ``analyze``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar

import aiohttp

from core.clock import ClockProtocol, SystemClock
from token_providers.cache import CacheStore
from token_providers.criteria import FilterCriteria
from token_providers.exceptions import (
    NormalizationError,
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    RateLimited,
)
from token_providers.models import ProviderHealth, ProviderResult, ProviderStatus
from token_providers.rate_limiter import RateLimiter, RetryPolicy


logger = logging.getLogger(__name__)

T = TypeVar("T")

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


class BaseProviderClient(ABC, Generic[T]):
    """
    Abstract base class for all provider clients.

    Each provider implementation must:
    1. Implement fetch_raw() - Get raw JSON from the provider
    2. Implement normalize() - Convert it to the canonical dataclass
    3. Implement filter_reasons() - Apply this provider's filter rules

    Features:
    - Rate limiter slot taken before every HTTP attempt
    - Exponential backoff retry on transient failures
    - Normalized data cached per (provider, address)
    - Health tracking
    """

    BASE_URL = ""
    DEFAULT_TIMEOUT = 15.0
    CACHE_TTL_SECONDS = 60.0
    HEALTH_CHECK_ADDRESS = SOL_MINT
    DEGRADED_THRESHOLD = 3  # consecutive failures before degraded
    UNAVAILABLE_THRESHOLD = 5  # consecutive failures before unavailable

    def __init__(
        self,
        rate_limiter: RateLimiter,
        cache: Optional[CacheStore] = None,
        clock: Optional[ClockProtocol] = None,
        timeout: float = DEFAULT_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._clock = clock or SystemClock()
        self._timeout = timeout
        self._retry_policy = retry_policy or RetryPolicy()
        self._session = session
        self._owns_session = session is None
        self._base_url = (base_url or self.BASE_URL).rstrip("/")

        self._health = ProviderHealth(provider=self.name, endpoint=self._base_url)
        self._success_count = 0

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier, also the rate-limiter key."""
        pass

    @property
    def endpoint(self) -> str:
        return self._base_url

    @abstractmethod
    async def fetch_raw(self, address: str) -> Any:
        """
        Fetch raw data for a token.

        Raises:
            ProviderError: on any failure (after retries where applicable)
        """
        pass

    @abstractmethod
    def normalize(self, address: str, raw: Any) -> T:
        """
        Map raw provider JSON onto the canonical dataclass.

        Must tolerate missing optional fields and unknown extra fields.

        Raises:
            NormalizationError: if the payload is unusable
        """
        pass

    @abstractmethod
    def filter_reasons(self, data: T, criteria: FilterCriteria) -> list[str]:
        """Apply this provider's rules. Empty list means pass."""
        pass

    def missing_required(self, raw: Any) -> list[str]:
        """Reasons for required fields the raw payload lacks."""
        return []

    def cache_ttl(self, data: T) -> float:
        """TTL for normalized data of this provider."""
        return self.CACHE_TTL_SECONDS

    def cache_key(self, address: str) -> str:
        return f"provider:{self.name}:{address}"

    # ─────────────────────────────────────────────────────────────
    # Main entry point
    # ─────────────────────────────────────────────────────────────

    async def analyze(
        self,
        address: str,
        criteria: FilterCriteria,
    ) -> ProviderResult[T]:
        """
        Fetch, normalize and filter (main entry point).

        Note:
            Never raises for provider failures - returns an absent result
        """
        started = self._clock.monotonic()
        key = self.cache_key(address)

        cached = self._cache.get(key) if self._cache is not None else None
        if cached is not None:
            data, missing = cached
            logger.debug(f"[{self.name}] Cache hit for {address}")
            return ProviderResult(
                provider=self.name,
                data=data,
                filter_reasons=tuple(missing + self.filter_reasons(data, criteria)),
                latency_ms=self._clock.elapsed_ms(started),
                from_cache=True,
            )

        try:
            raw = await self.fetch_raw(address)
            missing = self.missing_required(raw)
            data = self.normalize(address, raw)
        except ProviderError as e:
            latency_ms = self._clock.elapsed_ms(started)
            self._on_error(e)
            return ProviderResult.missing(self.name, str(e), latency_ms)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            latency_ms = self._clock.elapsed_ms(started)
            error = NormalizationError(
                message=f"Unusable payload: {e}",
                provider_name=self.name,
                original_error=e,
            )
            self._on_error(error)
            return ProviderResult.missing(self.name, str(error), latency_ms)

        latency_ms = self._clock.elapsed_ms(started)
        self._on_success(latency_ms)

        if self._cache is not None:
            self._cache.set(key, (data, missing), self.cache_ttl(data))

        if missing:
            logger.warning(f"[{self.name}] {address}: missing required fields {missing}")

        return ProviderResult(
            provider=self.name,
            data=data,
            filter_reasons=tuple(missing + self.filter_reasons(data, criteria)),
            latency_ms=latency_ms,
        )

    # ─────────────────────────────────────────────────────────────
    # HTTP
    # ─────────────────────────────────────────────────────────────

    async def _get_json(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        GET with rate limiting and exponential backoff retry.
        
        ``path`` is appended to the base URL unless it is absolute.
        """
        url = path if path.startswith("http") else f"{self._base_url}{path}"
        policy = self._retry_policy
        last_error: Optional[ProviderError] = None

        for attempt in range(policy.max_attempts):
            try:
                await self._rate_limiter.acquire(self.name)
                return await self._request_once("GET", url, params=params)

            except RateLimited as e:
                if not e.remote:
                    raise
                last_error = e
                wait_time = e.retry_after_seconds
                if wait_time is None:
                    wait_time = policy.compute_delay(attempt)
                wait_time = min(wait_time, policy.max_delay)

            except ProviderTransientError as e:
                last_error = e
                wait_time = policy.compute_delay(attempt)

            if attempt + 1 < policy.max_attempts:
                logger.warning(
                    f"[{self.name}] {last_error.message}, retrying in {wait_time:.2f}s "
                    f"(attempt {attempt + 1}/{policy.max_attempts})"
                )
                await self._clock.sleep(wait_time)

        raise ProviderTransientError(
            message=f"Failed after {policy.max_attempts} attempts",
            provider_name=self.name,
            request_url=url,
            original_error=last_error,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        """Get default HTTP headers."""
        return {
            "Accept": "application/json",
            "User-Agent": "token-aggregator/1.0",
        }

    async def _request_once(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """One HTTP attempt, classifying every failure."""
        session = await self._get_session()

        try:
            async with session.request(method, url, params=params) as response:
                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimited(
                        message="Rate limit exceeded (HTTP 429)",
                        provider_name=self.name,
                        retry_after_seconds=_parse_retry_after(retry_after),
                        remote=True,
                    )

                if response.status >= 400:
                    body = await response.text()
                    error_cls = (
                        ProviderTransientError
                        if response.status >= 500
                        else ProviderPermanentError
                    )
                    raise error_cls(
                        message=f"HTTP {response.status}",
                        provider_name=self.name,
                        status_code=response.status,
                        response_body=body[:1000],
                        request_url=url,
                    )

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise ProviderPermanentError(
                        message="Response is not valid JSON",
                        provider_name=self.name,
                        status_code=response.status,
                        request_url=url,
                        original_error=e,
                    )

        except asyncio.TimeoutError as e:
            raise ProviderTransientError(
                message=f"Timed out after {self._timeout}s",
                provider_name=self.name,
                request_url=url,
                original_error=e,
            )
        except aiohttp.ClientError as e:
            raise ProviderTransientError(
                message=f"Connection error: {e}",
                provider_name=self.name,
                request_url=url,
                original_error=e,
            )

    # ─────────────────────────────────────────────────────────────
    # Health
    # ─────────────────────────────────────────────────────────────

    def _on_success(self, latency_ms: float) -> None:
        """Handle successful request."""
        health = self._health
        health.request_count += 1
        health.consecutive_failures = 0
        self._success_count += 1

        if health.latency_ms is None:
            health.latency_ms = latency_ms
        else:
            health.latency_ms = health.latency_ms * 0.8 + latency_ms * 0.2

        if health.status != ProviderStatus.HEALTHY:
            if health.status != ProviderStatus.UNKNOWN:
                logger.info(f"[{self.name}] Recovered to HEALTHY status")
            health.status = ProviderStatus.HEALTHY

    def _on_error(self, error: ProviderError) -> None:
        """Handle request error."""
        health = self._health
        health.request_count += 1
        health.error_count += 1
        health.consecutive_failures += 1
        health.last_error = str(error)

        if health.consecutive_failures >= self.UNAVAILABLE_THRESHOLD:
            if health.status != ProviderStatus.UNAVAILABLE:
                health.status = ProviderStatus.UNAVAILABLE
                logger.error(
                    f"[{self.name}] Marked UNAVAILABLE after {health.consecutive_failures} failures"
                )
        elif health.consecutive_failures >= self.DEGRADED_THRESHOLD:
            if health.status != ProviderStatus.DEGRADED:
                health.status = ProviderStatus.DEGRADED
                logger.warning(
                    f"[{self.name}] Marked DEGRADED after {health.consecutive_failures} failures"
                )

        logger.warning(f"[{self.name}] {error}")

    async def ping(self) -> None:
        """Cheapest request proving the provider answers."""
        await self.fetch_raw(self.HEALTH_CHECK_ADDRESS)

    async def health_check(self) -> ProviderHealth:
        """Probe the provider and return the updated health."""
        started = self._clock.monotonic()
        try:
            await self.ping()
        except ProviderError as e:
            self._on_error(e)
        else:
            self._on_success(self._clock.elapsed_ms(started))
        self._health.last_check = self._clock.now()
        return self._health

    def get_health(self) -> ProviderHealth:
        """Get current health status."""
        return self._health

    def is_usable(self) -> bool:
        return self._health.is_usable()

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BaseProviderClient[T]":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name}, status={self._health.status.value})"


def to_float(value: Any) -> float:
    """Numbers arrive as numbers or numeric strings. Anything else is 0."""
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


__all__ = [
    "BaseProviderClient",
    "SOL_MINT",
    "USDC_MINT",
    "to_float",
]
