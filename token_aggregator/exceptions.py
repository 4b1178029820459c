"""
Aggregator Exceptions.

Only ConfigurationError is fatal, and only at construction. The other
errors are recorded on the run they happened in.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class AggregatorError(Exception):
    """Base exception for aggregator errors."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "original_error": str(self.original_error) if self.original_error else None,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigurationError(AggregatorError):
    """Invalid configuration detected at construction or update."""
    pass


class RunTimeout(AggregatorError):
    """A run exceeded its wall-clock budget."""

    def __init__(
        self,
        run_id: str,
        timeout_seconds: float,
        unfinished: int = 0,
    ) -> None:
        super().__init__(
            f"Run {run_id} timed out after {timeout_seconds}s ({unfinished} unfinished)",
            context={
                "run_id": run_id,
                "timeout_seconds": timeout_seconds,
                "unfinished": unfinished,
            },
        )
        self.run_id = run_id
        self.timeout_seconds = timeout_seconds
        self.unfinished = unfinished


class PersistenceError(AggregatorError):
    """Storing or loading an analysis failed."""

    def __init__(
        self,
        message: str,
        operation: str,
        address: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            message,
            context={"operation": operation, "address": address},
            original_error=original_error,
        )
        self.operation = operation
        self.address = address
