"""
Aggregator - Configuration.

============================================================
SOURCES
============================================================
Configuration can be loaded from:
- Default values
- Environment variables (a .env file is read first)
- YAML config file

Environment variables use the ``TOKEN_AGG_`` prefix:
- TOKEN_AGG_INTERVAL_SECONDS, TOKEN_AGG_MAX_TOKENS_PER_RUN, ...
- TOKEN_AGG_FILTER_<FIELD>       e.g. TOKEN_AGG_FILTER_MIN_LIQUIDITY
- TOKEN_AGG_ALERT_<FIELD>        e.g. TOKEN_AGG_ALERT_PRICE_SPIKE_PERCENT
- TOKEN_AGG_RATE_LIMIT_<NAME>    requests per minute, e.g. TOKEN_AGG_RATE_LIMIT_JUPITER

A filter value of "none" disables that criterion.

============================================================
"""

import copy
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv

from token_providers.criteria import FilterCriteria
from token_providers.rate_limiter import DEFAULT_RATE_LIMITS, RateLimitConfig
from token_pipeline.alerts import AlertThresholds
from token_pipeline.models import PipelineConfig
from token_aggregator.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


ENV_PREFIX = "TOKEN_AGG_"

_NESTED = ("filters", "alerts", "rate_limits")


_BOOL_FIELDS = ("enabled", "auto_blacklist_honeypots", "strict_stages")
_INT_FIELDS = ("max_tokens_per_run", "max_concurrent", "run_history_size", "processed_max_size")
_FLOAT_FIELDS = (
    "interval_seconds",
    "run_timeout_seconds",
    "processed_ttl_seconds",
    "analysis_cache_ttl_seconds",
    "stage_timeout_seconds",
)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _optional(cast: Callable[[str], Any]) -> Callable[[str], Any]:
    def parse(value: str) -> Any:
        if value.strip().lower() in ("", "none", "null"):
            return None
        return cast(value)
    return parse


_FILTER_PARSERS: Dict[str, Callable[[str], Any]] = {
    "min_age": _optional(float),
    "max_age": _optional(float),
    "min_liquidity": _optional(float),
    "min_volume": _optional(float),
    "min_safety_score": _optional(float),
    "allow_honeypot": _parse_bool,
    "max_slippage": _optional(float),
    "require_routing": _parse_bool,
    "allow_blacklisted": _parse_bool,
    "max_creator_rugs": _optional(int),
    "max_top_holders_percentage": _optional(float),
}


def _default_rate_limits() -> Dict[str, int]:
    return {name: cfg.max_requests for name, cfg in DEFAULT_RATE_LIMITS.items()}


@dataclass
class AggregatorConfig:
    """Configuration for the aggregation scheduler."""

    # Scheduling
    enabled: bool = True
    """Whether the interval loop runs at all."""

    interval_seconds: float = 300.0
    """Seconds between scheduled runs."""

    max_tokens_per_run: int = 100
    """Cap on candidates taken from discovery per run."""

    max_concurrent: int = 5
    """Tokens analyzed concurrently within a run."""

    run_timeout_seconds: float = 240.0
    """Wall-clock budget for one run's batch."""

    run_history_size: int = 100
    """Finished runs kept in memory."""

    # Dedup
    processed_ttl_seconds: float = 3600.0
    """An address is not re-analyzed within this window."""

    processed_max_size: int = 10000
    """Processed-set capacity (oldest evicted first)."""

    # Policy
    auto_blacklist_honeypots: bool = False
    """Blacklist tokens that fail with a confirmed honeypot."""

    # Pipeline
    analysis_cache_ttl_seconds: float = 300.0
    stage_timeout_seconds: float = 60.0
    strict_stages: bool = False

    # Nested
    filters: FilterCriteria = field(default_factory=FilterCriteria)
    alerts: AlertThresholds = field(default_factory=AlertThresholds)
    rate_limits: Dict[str, int] = field(default_factory=_default_rate_limits)
    """Requests per minute per provider."""

    rate_limit_max_wait_seconds: Optional[float] = 60.0
    """Longest a request waits for a rate-limit slot before failing."""

    # Persistence
    database_url: Optional[str] = None

    # ─────────────────────────────────────────────────────────────
    # Loading
    # ─────────────────────────────────────────────────────────────

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "AggregatorConfig":
        """
        Load configuration from environment variables.

        A .env file in the working directory is loaded first; variables
        already set in the environment win.
        """
        load_dotenv()

        updates: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name in _NESTED:
                continue
            raw = os.getenv(f"{prefix}{f.name.upper()}")
            if raw is not None:
                updates[f.name] = raw

        filters = {}
        for name, parse in _FILTER_PARSERS.items():
            raw = os.getenv(f"{prefix}FILTER_{name.upper()}")
            if raw is not None:
                try:
                    filters[name] = parse(raw)
                except ValueError as e:
                    raise ConfigurationError(
                        f"Invalid value for filter {name}: {raw!r}",
                        original_error=e,
                    ) from e
        if filters:
            updates["filters"] = filters

        alerts = {}
        for f in fields(AlertThresholds):
            raw = os.getenv(f"{prefix}ALERT_{f.name.upper()}")
            if raw is not None:
                alerts[f.name] = _parse_env(f"ALERT_{f.name.upper()}", raw, float)
        if alerts:
            updates["alerts"] = alerts

        rate_limits = {}
        for name in _default_rate_limits():
            raw = os.getenv(f"{prefix}RATE_LIMIT_{name.upper()}")
            if raw is not None:
                rate_limits[name] = _parse_env(f"RATE_LIMIT_{name.upper()}", raw, int)
        if rate_limits:
            updates["rate_limits"] = rate_limits

        return cls().with_updates(_coerce_scalars(updates))

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AggregatorConfig":
        """
        Load configuration from a YAML file.

        Raises:
            ConfigurationError: if the file is unreadable or invalid
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load YAML config from {path}: {e}",
                context={"path": str(path)},
                original_error=e,
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"YAML config {path} must be a mapping")

        logger.info(f"Loaded configuration from {path}")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AggregatorConfig":
        """Create from dictionary (unknown keys are rejected)."""
        return cls().with_updates(data)

    # ─────────────────────────────────────────────────────────────
    # Updates and validation
    # ─────────────────────────────────────────────────────────────

    def with_updates(self, partial: Mapping[str, Any]) -> "AggregatorConfig":
        """
        Return a validated copy with ``partial`` applied.

        Nested ``filters``, ``alerts`` and ``rate_limits`` mappings are
        merged field by field.

        Raises:
            ConfigurationError: on unknown keys or invalid values
        """
        known = {f.name for f in fields(self)}
        unknown = set(partial) - known
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {sorted(unknown)}")

        changes = dict(partial)
        try:
            if "filters" in changes:
                changes["filters"] = _merge_filters(self.filters, changes["filters"])
            if "alerts" in changes:
                changes["alerts"] = _merge_alerts(self.alerts, changes["alerts"])
            if "rate_limits" in changes:
                merged = dict(self.rate_limits)
                merged.update(changes["rate_limits"] or {})
                changes["rate_limits"] = merged
        except (TypeError, ValueError) as e:
            raise ConfigurationError(str(e), original_error=e) from e

        updated = copy.deepcopy(self)
        for name, value in changes.items():
            setattr(updated, name, value)

        errors = updated.validate()
        if errors:
            raise ConfigurationError(
                f"Invalid configuration: {', '.join(errors)}",
                context={"errors": errors},
            )
        return updated

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = self._type_errors()
        if errors:
            # Range checks below assume well-typed values
            return errors

        if self.interval_seconds <= 0:
            errors.append("interval_seconds must be positive")
        if self.max_tokens_per_run < 1:
            errors.append("max_tokens_per_run must be at least 1")
        if self.max_concurrent < 1:
            errors.append("max_concurrent must be at least 1")
        if self.run_timeout_seconds <= 0:
            errors.append("run_timeout_seconds must be positive")
        if self.run_history_size < 1:
            errors.append("run_history_size must be at least 1")
        if self.processed_ttl_seconds < 0:
            errors.append("processed_ttl_seconds cannot be negative")
        if self.processed_max_size < 1:
            errors.append("processed_max_size must be at least 1")
        if self.rate_limit_max_wait_seconds is not None and self.rate_limit_max_wait_seconds < 0:
            errors.append("rate_limit_max_wait_seconds cannot be negative")

        for name, limit in self.rate_limits.items():
            if not isinstance(limit, int) or limit < 1:
                errors.append(f"rate_limits.{name} must be a positive integer")

        errors.extend(self.pipeline_config().validate())

        return errors

    def _type_errors(self) -> List[str]:
        errors = []
        for name in _BOOL_FIELDS:
            if not isinstance(getattr(self, name), bool):
                errors.append(f"{name} must be a boolean")
        for name in _INT_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                errors.append(f"{name} must be an integer")
        for name in _FLOAT_FIELDS:
            if not _is_number(getattr(self, name)):
                errors.append(f"{name} must be a number")
        if self.rate_limit_max_wait_seconds is not None and not _is_number(self.rate_limit_max_wait_seconds):
            errors.append("rate_limit_max_wait_seconds must be a number or null")
        if self.database_url is not None and not isinstance(self.database_url, str):
            errors.append("database_url must be a string or null")
        if not isinstance(self.filters, FilterCriteria):
            errors.append("filters must be a mapping")
        if not isinstance(self.alerts, AlertThresholds):
            errors.append("alerts must be a mapping")
        return errors

    # ─────────────────────────────────────────────────────────────
    # Derived
    # ─────────────────────────────────────────────────────────────

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            analysis_cache_ttl_seconds=self.analysis_cache_ttl_seconds,
            stage_timeout_seconds=self.stage_timeout_seconds,
            strict_stages=self.strict_stages,
            default_max_concurrent=self.max_concurrent,
        )

    def rate_limit_configs(self) -> Dict[str, RateLimitConfig]:
        return {
            name: RateLimitConfig(
                max_requests=limit,
                window_seconds=60.0,
                max_wait_seconds=self.rate_limit_max_wait_seconds,
            )
            for name, limit in self.rate_limits.items()
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (FilterCriteria, AlertThresholds)):
                value = value.to_dict()
            elif isinstance(value, dict):
                value = dict(value)
            data[f.name] = value
        if self.database_url:
            data["database_url"] = self.database_url.split("@")[-1]
        return data


def _merge_filters(current: FilterCriteria, value: Any) -> FilterCriteria:
    if isinstance(value, FilterCriteria):
        return value
    return current.with_updates(**dict(value or {}))


def _merge_alerts(current: AlertThresholds, value: Any) -> AlertThresholds:
    if isinstance(value, AlertThresholds):
        return value
    return current.with_updates(**dict(value or {}))


def _parse_env(name: str, raw: str, cast: Callable[[str], Any]) -> Any:
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}", original_error=e) from e


def _coerce_scalars(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Cast raw environment strings to the field types."""
    casts: Dict[str, Callable[[str], Any]] = {
        "enabled": _parse_bool,
        "auto_blacklist_honeypots": _parse_bool,
        "strict_stages": _parse_bool,
        "max_tokens_per_run": int,
        "max_concurrent": int,
        "run_history_size": int,
        "processed_max_size": int,
        "rate_limit_max_wait_seconds": _optional(float),
        "database_url": str,
    }
    coerced = {}
    for name, value in updates.items():
        if name in _NESTED or not isinstance(value, str):
            coerced[name] = value
            continue
        try:
            coerced[name] = casts.get(name, float)(value)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for {name}: {value!r}",
                original_error=e,
            ) from e
    return coerced


__all__ = [
    "AggregatorConfig",
    "ENV_PREFIX",
]
