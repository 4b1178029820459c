"""
Aggregator - Analysis Storage.

============================================================
PURPOSE
============================================================
AnalysisStore implementations for passing tokens.

- SqlAlchemyAnalysisStore: SQLAlchemy ORM, any SQL database
- InMemoryAnalysisStore: per-address history in memory (dry runs, tests)

============================================================
PERSISTENCE RULES
============================================================
- Append-only: every stored analysis is a new row
- Explicit transactions: commit on success, rollback on any error
- Database errors surface as PersistenceError
- The blocking ORM session runs in a worker thread

============================================================
"""

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional, Union

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    create_engine,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from token_pipeline.models import CombinedAnalysis
from token_aggregator.exceptions import PersistenceError
from token_aggregator.interfaces import AnalysisStore


logger = logging.getLogger(__name__)


# =============================================================
# ORM MODEL
# =============================================================

class Base(DeclarativeBase):
    """Declarative base for aggregator tables."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class TokenAnalysisRecord(Base):
    """
    One stored CombinedAnalysis.

    Scoring fields are broken out for querying; ``payload`` holds the
    full analysis for reconstruction.
    """

    __tablename__ = "token_analyses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    symbol: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    overall_score: Mapped[float] = mapped_column(Float, nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    risk_level: Mapped[str] = mapped_column(String(16), nullable=False)
    failed_filters: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    analyzed_at: Mapped[datetime] = mapped_column(index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    @classmethod
    def from_analysis(cls, analysis: CombinedAnalysis) -> "TokenAnalysisRecord":
        return cls(
            address=analysis.address,
            symbol=analysis.symbol or None,
            overall_score=analysis.overall_score,
            passed=analysis.passed,
            risk_level=analysis.risk_level.value,
            failed_filters=list(analysis.failed_filters),
            payload=analysis.to_dict(),
            analyzed_at=analysis.timestamp,
        )

    def to_analysis(self) -> CombinedAnalysis:
        return CombinedAnalysis.from_dict(self.payload)

    def __repr__(self) -> str:
        return (
            f"<TokenAnalysisRecord(id={self.id}, address={self.address}, "
            f"score={self.overall_score}, passed={self.passed})>"
        )


# =============================================================
# SQLALCHEMY STORE
# =============================================================

def create_store_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite is shared across threads."""
    if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=echo, pool_pre_ping=True)


class SqlAlchemyAnalysisStore(AnalysisStore):
    """AnalysisStore on a synchronous SQLAlchemy engine."""

    def __init__(
        self,
        engine_or_url: Union[Engine, str],
        create_tables: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            engine_or_url: Existing engine, or a database URL
            create_tables: Run create_all on init

        Raises:
            PersistenceError: if the schema cannot be created
        """
        if isinstance(engine_or_url, str):
            self._engine = create_store_engine(engine_or_url)
            self._owns_engine = True
        else:
            self._engine = engine_or_url
            self._owns_engine = False

        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False,
        )
        self._logger = logging.getLogger("repository.TokenAnalysisRepository")

        if create_tables:
            try:
                Base.metadata.create_all(self._engine)
            except SQLAlchemyError as e:
                raise PersistenceError(
                    f"Failed to create tables: {e}",
                    operation="create_all",
                    original_error=e,
                ) from e

        self._logger.info(f"Analysis store ready on {self._engine.url.render_as_string(hide_password=True)}")

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def _transaction_scope(self, operation: str, address: Optional[str] = None) -> Generator[Session, None, None]:
        """Commit on success; roll back and wrap on database errors."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            self._logger.error(f"Database error in {operation}: {e}", exc_info=True)
            raise PersistenceError(
                f"{operation} failed: {e}",
                operation=operation,
                address=address,
                original_error=e,
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ─────────────────────────────────────────────────────────────
    # Sync operations (run in a worker thread)
    # ─────────────────────────────────────────────────────────────

    def _store_sync(self, analysis: CombinedAnalysis) -> int:
        with self._transaction_scope("store_analysis", analysis.address) as session:
            record = TokenAnalysisRecord.from_analysis(analysis)
            session.add(record)
            session.flush()
            record_id = record.id
        self._logger.debug(f"Stored analysis {record_id} for {analysis.address}")
        return record_id

    def _latest_sync(self, address: str) -> Optional[CombinedAnalysis]:
        with self._transaction_scope("get_latest_analysis", address) as session:
            stmt = (
                select(TokenAnalysisRecord)
                .where(TokenAnalysisRecord.address == address)
                .order_by(TokenAnalysisRecord.analyzed_at.desc(), TokenAnalysisRecord.id.desc())
                .limit(1)
            )
            record = session.execute(stmt).scalars().first()
            return record.to_analysis() if record is not None else None

    def _count_sync(self, address: Optional[str]) -> int:
        with self._transaction_scope("count", address) as session:
            stmt = select(func.count()).select_from(TokenAnalysisRecord)
            if address is not None:
                stmt = stmt.where(TokenAnalysisRecord.address == address)
            return int(session.execute(stmt).scalar_one())

    # ─────────────────────────────────────────────────────────────
    # AnalysisStore
    # ─────────────────────────────────────────────────────────────

    async def store_analysis(self, analysis: CombinedAnalysis) -> None:
        await asyncio.to_thread(self._store_sync, analysis)

    async def get_latest_analysis(self, address: str) -> Optional[CombinedAnalysis]:
        return await asyncio.to_thread(self._latest_sync, address)

    async def count(self, address: Optional[str] = None) -> int:
        return await asyncio.to_thread(self._count_sync, address)

    async def close(self) -> None:
        if self._owns_engine:
            self._engine.dispose()


# =============================================================
# IN-MEMORY STORE
# =============================================================

class InMemoryAnalysisStore(AnalysisStore):
    """Keeps every stored analysis per address."""

    def __init__(self) -> None:
        self._analyses: Dict[str, List[CombinedAnalysis]] = {}

    async def store_analysis(self, analysis: CombinedAnalysis) -> None:
        self._analyses.setdefault(analysis.address, []).append(analysis)

    async def get_latest_analysis(self, address: str) -> Optional[CombinedAnalysis]:
        history = self._analyses.get(address)
        return history[-1] if history else None

    def history(self, address: str) -> List[CombinedAnalysis]:
        return list(self._analyses.get(address, ()))

    def __len__(self) -> int:
        return sum(len(v) for v in self._analyses.values())


__all__ = [
    "Base",
    "InMemoryAnalysisStore",
    "SqlAlchemyAnalysisStore",
    "TokenAnalysisRecord",
    "create_store_engine",
]
