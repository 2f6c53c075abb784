"""
Position recompute from the full trade ledger.

Computes net quantity and BUY-only average cost per symbol. SELL fills reduce
quantity but never touch the average cost: there is no lot matching and no
realized P&L, which downstream analytics rely on. Net quantity may go negative
(short). Positions that net to zero, or whose symbol has left the ledger,
are deleted.

The recompute is a pure function of the ledger, so overlapping recomputes for
the same portfolio converge to the same position set.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

from sqlalchemy.orm import Session

from ledger_ingest.models import Position, Trade, TradeSide
from ledger_ingest.services.sql_upsert import upsert_rows

logger = logging.getLogger("ledger_ingest.positions")

AVG_COST_QUANT = Decimal("1e-10")
ZERO = Decimal("0")

POSITION_KEY = ("portfolio_id", "symbol")
POSITION_VALUES = ("quantity", "avg_cost")


@dataclass
class RecomputeResult:
    updated: int
    deleted: int


@dataclass
class SymbolAggregate:
    net_qty: Decimal = ZERO
    buy_qty: Decimal = ZERO
    buy_cost: Decimal = ZERO

    @property
    def avg_cost(self) -> Decimal:
        if self.buy_qty > 0:
            return (self.buy_cost / self.buy_qty).quantize(AVG_COST_QUANT)
        return ZERO


def _to_decimal(value) -> Decimal:
    # Numeric columns come back as Decimal; SQLite may hand back floats.
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def aggregate_trades(trades) -> Dict[str, SymbolAggregate]:
    """Group (symbol, side, qty, price) tuples by symbol."""
    out: Dict[str, SymbolAggregate] = defaultdict(SymbolAggregate)
    for symbol, side, qty, price in trades:
        agg = out[symbol]
        q = _to_decimal(qty)
        if side == TradeSide.SELL:
            agg.net_qty -= q
        else:
            agg.net_qty += q
            agg.buy_qty += q
            agg.buy_cost += q * _to_decimal(price)
    return dict(out)


def recompute_positions(db: Session, portfolio_id: str) -> RecomputeResult:
    """Rebuild the whole position set of a portfolio from its whole ledger."""
    trades = (
        db.query(Trade.symbol, Trade.side, Trade.qty, Trade.price)
        .filter(Trade.portfolio_id == portfolio_id)
        .all()
    )
    aggregates = aggregate_trades(trades)

    open_rows = [
        {"portfolio_id": portfolio_id, "symbol": symbol, "quantity": agg.net_qty, "avg_cost": agg.avg_cost}
        for symbol, agg in sorted(aggregates.items())
        if agg.net_qty != 0
    ]
    open_symbols: List[str] = [r["symbol"] for r in open_rows]
    try:
        upsert_rows(db, Position, open_rows, conflict_cols=POSITION_KEY, update_cols=POSITION_VALUES)

        # Zeroed symbols and symbols no longer in the ledger at all.
        stale = db.query(Position).filter(Position.portfolio_id == portfolio_id)
        if open_symbols:
            stale = stale.filter(Position.symbol.notin_(open_symbols))
        deleted = stale.delete(synchronize_session=False)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "positions_recomputed",
        extra={"portfolio_id": portfolio_id, "updated": len(open_symbols), "deleted": deleted},
    )
    return RecomputeResult(updated=len(open_symbols), deleted=deleted)


def list_positions(db: Session, portfolio_id: str) -> List[Position]:
    return (
        db.query(Position)
        .filter(Position.portfolio_id == portfolio_id)
        .order_by(Position.symbol.asc())
        .all()
    )
