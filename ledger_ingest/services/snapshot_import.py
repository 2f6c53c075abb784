"""
Position snapshot import ("full refresh from broker export").

Overwrites quantity/avg_cost per (portfolio, symbol) straight from the file,
bypassing the trade ledger. A zero quantity closes the position, so the row is
deleted rather than stored. Symbols absent from the file are left as they are.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable

from sqlalchemy.orm import Session

from ledger_ingest.models import Position
from ledger_ingest.services.csv_parser import SnapshotRow
from ledger_ingest.services.ledger import get_portfolio_or_raise, touch_last_ingest
from ledger_ingest.services.sql_upsert import upsert_rows

logger = logging.getLogger("ledger_ingest.snapshot_import")


@dataclass
class SnapshotImportResult:
    imported: int
    skipped: int


def _is_valid(row: SnapshotRow) -> bool:
    if not (row.symbol or "").strip():
        return False
    if row.quantity is None or row.avg_cost is None:
        return False
    return row.quantity.is_finite() and row.avg_cost.is_finite()


def import_positions_snapshot(db: Session, portfolio_id: str, rows: Iterable[SnapshotRow]) -> SnapshotImportResult:
    """
    Apply a snapshot as one unit: every row write and the portfolio marker
    commit together or not at all.
    """
    portfolio = get_portfolio_or_raise(db, portfolio_id)

    by_symbol: Dict[str, Dict[str, Any]] = {}
    imported = 0
    skipped = 0
    for row in rows:
        if not _is_valid(row):
            skipped += 1
            continue
        symbol = row.symbol.strip().upper()
        by_symbol[symbol] = {
            "portfolio_id": portfolio_id,
            "symbol": symbol,
            "quantity": row.quantity,
            "avg_cost": row.avg_cost,
        }
        imported += 1

    open_rows = [v for v in by_symbol.values() if v["quantity"] != 0]
    closed_symbols = [s for s, v in by_symbol.items() if v["quantity"] == 0]
    try:
        upsert_rows(
            db,
            Position,
            open_rows,
            conflict_cols=("portfolio_id", "symbol"),
            update_cols=("quantity", "avg_cost"),
        )
        if closed_symbols:
            db.query(Position).filter(
                Position.portfolio_id == portfolio_id,
                Position.symbol.in_(closed_symbols),
            ).delete(synchronize_session=False)
        touch_last_ingest(portfolio, f"positions:{imported}")
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "snapshot_imported",
        extra={"portfolio_id": portfolio_id, "imported": imported, "skipped": skipped},
    )
    return SnapshotImportResult(imported=imported, skipped=skipped)
