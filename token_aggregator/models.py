"""
Aggregator - Models.

============================================================
PURPOSE
============================================================
Data structures owned by the scheduler.

- TokenCandidate: an address seen by discovery
- AggregationRun: one execution of the aggregation loop
- AggregatorStats: counters across runs
- BlacklistEntry: an address excluded from analysis

============================================================
RUN LIFECYCLE
============================================================
pending -> running -> completed | failed

A run is finalized exactly once; after that it is immutable.

============================================================
"""

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from token_aggregator.exceptions import AggregatorError


RUN_TIME_WINDOW = 50


class RunStatus(Enum):
    """Aggregation run states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


@dataclass(frozen=True)
class TokenCandidate:
    """An address handed over by discovery."""
    address: str
    first_seen_at: datetime


@dataclass(frozen=True)
class BlacklistEntry:
    """Why and when an address was excluded."""
    address: str
    reason: str
    added_at: datetime
    source: str = "manual"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "reason": self.reason,
            "added_at": self.added_at.isoformat(),
            "source": self.source,
        }


# ============================================================
# AGGREGATION RUN
# ============================================================

@dataclass
class AggregationRun:
    """
    Record of one aggregation run.

    Mutated only by the scheduler while running; frozen once finalized.
    """
    id: str
    start_time: datetime
    status: RunStatus = RunStatus.PENDING
    end_time: Optional[datetime] = None
    tokens_discovered: int = 0
    tokens_processed: int = 0
    tokens_passed: int = 0
    tokens_stored: int = 0
    tokens_blacklisted: int = 0
    tokens_skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    partial_timeout: bool = False
    trigger: str = "scheduled"

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_finalized", False):
            raise AggregatorError(
                f"Run {self.id} is finalized and cannot be modified",
                context={"field": name},
            )
        super().__setattr__(name, value)

    @classmethod
    def new(cls, start_time: datetime, trigger: str = "scheduled") -> "AggregationRun":
        run_id = f"run_{start_time.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        return cls(id=run_id, start_time=start_time, trigger=trigger)

    @property
    def is_finalized(self) -> bool:
        return getattr(self, "_finalized", False)

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000

    def mark_running(self) -> None:
        if self.status != RunStatus.PENDING:
            raise AggregatorError(f"Run {self.id} cannot start from {self.status.value}")
        self.status = RunStatus.RUNNING

    def record_error(self, address: Optional[str], error: str, error_type: str) -> None:
        if self.is_finalized:
            raise AggregatorError(f"Run {self.id} is finalized and cannot be modified")
        self.errors.append({"address": address, "error": error, "type": error_type})

    def finalize(self, status: RunStatus, end_time: datetime) -> None:
        """
        Move to a terminal state.

        Raises:
            AggregatorError: if the run was already finalized
        """
        if self.is_finalized:
            raise AggregatorError(f"Run {self.id} already finalized as {self.status.value}")
        if not status.is_terminal:
            raise AggregatorError(f"Cannot finalize run {self.id} as {status.value}")
        self.status = status
        self.end_time = end_time
        object.__setattr__(self, "errors", list(self.errors))
        object.__setattr__(self, "_finalized", True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "status": self.status.value,
            "trigger": self.trigger,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": round(self.duration_ms, 2) if self.duration_ms is not None else None,
            "tokens_discovered": self.tokens_discovered,
            "tokens_processed": self.tokens_processed,
            "tokens_passed": self.tokens_passed,
            "tokens_stored": self.tokens_stored,
            "tokens_blacklisted": self.tokens_blacklisted,
            "tokens_skipped": self.tokens_skipped,
            "errors": [dict(e) for e in self.errors],
            "partial_timeout": self.partial_timeout,
        }


# ============================================================
# STATISTICS
# ============================================================

@dataclass
class AggregatorStats:
    """Counters across all runs since start or the last reset."""
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    tokens_discovered: int = 0
    tokens_processed: int = 0
    tokens_passed: int = 0
    tokens_stored: int = 0
    error_count: int = 0
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    run_times_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=RUN_TIME_WINDOW))

    def record(self, run: AggregationRun) -> None:
        """Fold a finalized run into the counters."""
        self.total_runs += 1
        if run.status == RunStatus.COMPLETED:
            self.successful_runs += 1
        else:
            self.failed_runs += 1
        self.tokens_discovered += run.tokens_discovered
        self.tokens_processed += run.tokens_processed
        self.tokens_passed += run.tokens_passed
        self.tokens_stored += run.tokens_stored
        self.error_count += len(run.errors)
        self.last_run_at = run.end_time
        if run.duration_ms is not None:
            self.run_times_ms.append(run.duration_ms)

    @property
    def average_run_time_ms(self) -> float:
        if not self.run_times_ms:
            return 0.0
        return sum(self.run_times_ms) / len(self.run_times_ms)

    @property
    def success_rate(self) -> float:
        """Percentage of completed runs."""
        if self.total_runs == 0:
            return 100.0
        return self.successful_runs / self.total_runs * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "tokens_discovered": self.tokens_discovered,
            "tokens_processed": self.tokens_processed,
            "tokens_passed": self.tokens_passed,
            "tokens_stored": self.tokens_stored,
            "error_count": self.error_count,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "average_run_time_ms": round(self.average_run_time_ms, 2),
            "success_rate": round(self.success_rate, 2),
        }


__all__ = [
    "AggregationRun",
    "AggregatorStats",
    "BlacklistEntry",
    "RunStatus",
    "TokenCandidate",
]
