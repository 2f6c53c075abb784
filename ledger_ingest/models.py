"""
Database models for the trade ledger, derived positions and ingest runs.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ledger_ingest.database import Base

# Shared precision for quantities, prices and costs.
Amount = Numeric(28, 10)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TradeSide(enum.Enum):
    BUY = "BUY"
    SELL = "SELL"


class IngestRunStatus(enum.Enum):
    """Status of one tracked attempt to ingest an uploaded object."""
    PENDING = "pending"
    OK = "ok"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Portfolio layer
# ---------------------------------------------------------------------------


class Portfolio(Base):
    """A portfolio owns a trade ledger, its derived positions and its ingest history."""

    __tablename__ = "portfolios"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(200), nullable=False, index=True)
    base_ccy = Column(String(6), nullable=False, default="USD")

    # Human-readable marker of the latest ingest ("ok:<n>" or "positions:<n>")
    last_ingest_at = Column(DateTime(timezone=True), nullable=True)
    last_ingest_status = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    trades = relationship("Trade", back_populates="portfolio", cascade="all, delete-orphan")
    positions = relationship("Position", back_populates="portfolio", cascade="all, delete-orphan")
    ingest_runs = relationship("IngestRun", back_populates="portfolio", cascade="all, delete-orphan")


class Trade(Base):
    """
    Ledger entry for a single fill.

    Identity is (portfolio_id, external_id); re-submitting the same id replaces
    the fields instead of adding a row.
    """

    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, index=True)
    portfolio_id = Column(String(36), ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)

    symbol = Column(String(32), nullable=False, index=True)
    side = Column(SQLEnum(TradeSide), nullable=False)
    qty = Column(Amount, nullable=False)
    price = Column(Amount, nullable=False)
    traded_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    portfolio = relationship("Portfolio", back_populates="trades")

    __table_args__ = (
        UniqueConstraint("portfolio_id", "external_id", name="ux_trades_portfolio_external_id"),
        Index("ix_trades_portfolio_symbol", "portfolio_id", "symbol"),
    )


class Position(Base):
    """Net holding per symbol; regenerated from the ledger or overwritten by a snapshot."""

    __tablename__ = "positions"

    id = Column(Integer, primary_key=True, index=True)
    portfolio_id = Column(String(36), ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False, index=True)
    symbol = Column(String(32), nullable=False, index=True)

    quantity = Column(Amount, nullable=False)  # signed; negative is a short
    avg_cost = Column(Amount, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    portfolio = relationship("Portfolio", back_populates="positions")

    __table_args__ = (
        UniqueConstraint("portfolio_id", "symbol", name="ux_positions_portfolio_symbol"),
    )


class IngestRun(Base):
    """Audit/status record surfaced to pollers for one uploaded object."""

    __tablename__ = "ingest_runs"

    id = Column(String(36), primary_key=True, default=_new_id)
    portfolio_id = Column(String(36), ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False, index=True)
    object_key = Column(String(1024), nullable=False)
    status = Column(SQLEnum(IngestRunStatus), nullable=False, default=IngestRunStatus.PENDING, index=True)

    rows_ok = Column(Integer, nullable=False, default=0)
    rows_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    # Client-side default keeps sub-second ordering on SQLite.
    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    portfolio = relationship("Portfolio", back_populates="ingest_runs")

    __table_args__ = (
        Index("ix_ingest_runs_portfolio_key_status", "portfolio_id", "object_key", "status"),
        Index("ix_ingest_runs_portfolio_started", "portfolio_id", "started_at"),
    )

    def __repr__(self):
        return f"<IngestRun(id={self.id}, key={self.object_key}, status={self.status.value})>"
