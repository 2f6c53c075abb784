"""
Idempotent trade ledger writes.

Every row is keyed by (portfolio_id, external_id). The external id comes from
the uploaded file when present and is otherwise derived from the row content,
so re-submitting the same file never duplicates ledger entries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable

from sqlalchemy.orm import Session

from ledger_ingest.models import Portfolio, Trade, TradeSide
from ledger_ingest.services.csv_parser import TradeRow
from ledger_ingest.services.sql_upsert import upsert_rows

logger = logging.getLogger("ledger_ingest.ledger")

TRADE_UPDATE_COLUMNS = ("symbol", "side", "qty", "price", "traded_at")


class IngestError(RuntimeError):
    """Write-path failure during ingestion; the caller decides on retry."""


class PortfolioNotFoundError(IngestError):
    pass


@dataclass
class LedgerUpsertResult:
    inserted: int
    skipped: int


def _plain(d: Decimal) -> str:
    # 10, 10.0 and 1E+1 all render as "10"
    return format(d.normalize(), "f")


def derive_external_id(portfolio_id: str, row: TradeRow) -> str:
    traded_at = row.traded_at.astimezone(timezone.utc).isoformat()
    return f"{portfolio_id}:{row.symbol.strip().upper()}:{_plain(row.qty)}:{_plain(row.price)}:{traded_at}"


def _is_complete(row: TradeRow) -> bool:
    if not (row.symbol or "").strip() or row.side is None or row.traded_at is None:
        return False
    if row.qty is None or row.price is None:
        return False
    return row.qty > 0 and row.price > 0


def _row_values(portfolio_id: str, row: TradeRow) -> Dict[str, Any]:
    return {
        "portfolio_id": portfolio_id,
        "external_id": row.external_id or derive_external_id(portfolio_id, row),
        "symbol": row.symbol.strip().upper(),
        "side": row.side if isinstance(row.side, TradeSide) else TradeSide(str(row.side).upper()),
        "qty": row.qty,
        "price": row.price,
        "traded_at": row.traded_at,
    }


def touch_last_ingest(portfolio: Portfolio, status: str) -> None:
    portfolio.last_ingest_at = datetime.now(timezone.utc)
    portfolio.last_ingest_status = status


def get_portfolio_or_raise(db: Session, portfolio_id: str) -> Portfolio:
    portfolio = db.query(Portfolio).filter(Portfolio.id == portfolio_id).first()
    if not portfolio:
        raise PortfolioNotFoundError(f"Portfolio {portfolio_id} not found")
    return portfolio


def upsert_trades(db: Session, portfolio_id: str, rows: Iterable[TradeRow]) -> LedgerUpsertResult:
    """
    Upsert trade rows and stamp the portfolio's last-ingest marker.

    The whole batch and the marker commit together, even when no row was
    written. Incomplete rows are counted as skipped; any write failure rolls
    back and propagates.
    """
    portfolio = get_portfolio_or_raise(db, portfolio_id)

    by_external_id: Dict[str, Dict[str, Any]] = {}
    inserted = 0
    skipped = 0
    for row in rows:
        if not _is_complete(row):
            skipped += 1
            continue
        values = _row_values(portfolio_id, row)
        # Same id twice in one file: last occurrence wins.
        by_external_id[values["external_id"]] = values
        inserted += 1

    try:
        upsert_rows(
            db,
            Trade,
            list(by_external_id.values()),
            conflict_cols=("portfolio_id", "external_id"),
            update_cols=TRADE_UPDATE_COLUMNS,
        )
        touch_last_ingest(portfolio, f"ok:{inserted}")
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "ledger_upsert",
        extra={"portfolio_id": portfolio_id, "inserted": inserted, "skipped": skipped},
    )
    return LedgerUpsertResult(inserted=inserted, skipped=skipped)
