"""
CSV parsing for uploaded trade files and position snapshots.

Both grammars degrade line by line: a malformed line is counted in
`ParseResult.skipped` and never becomes a row object. Parsing never raises on
bad input.

Trade files (header required, columns resolved by name):
    symbol,side,qty,price,tradedAt[,externalId]

Position snapshots (header optional, `qty` accepted for `quantity`):
    symbol,quantity,avgCost
"""

from __future__ import annotations

import csv
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Generic, List, Optional, TypeVar

from dateutil import parser as date_parser

from ledger_ingest.models import TradeSide

BOM = "\ufeff"

TRADE_REQUIRED_COLUMNS = ("symbol", "side", "qty", "price", "tradedat")
SNAPSHOT_QTY_ALIASES = ("quantity", "qty")


class FileKind(enum.Enum):
    TRADES = "trades"
    POSITIONS = "positions"


@dataclass(frozen=True)
class TradeRow:
    symbol: str
    side: TradeSide
    qty: Decimal
    price: Decimal
    traded_at: datetime
    external_id: Optional[str] = None


@dataclass(frozen=True)
class SnapshotRow:
    symbol: str
    quantity: Decimal
    avg_cost: Decimal


RowT = TypeVar("RowT")


@dataclass
class ParseResult(Generic[RowT]):
    rows: List[RowT] = field(default_factory=list)
    skipped: int = 0
    # Non-blank lines after the header (or all lines in headerless mode)
    total_lines: int = 0


def parse_csv(text: str, kind: FileKind) -> ParseResult:
    if kind is FileKind.POSITIONS:
        return parse_positions_snapshot(text)
    return parse_trades_csv(text)


def _split_lines(text: str) -> List[str]:
    if not text:
        return []
    if text.startswith(BOM):
        text = text[len(BOM):]
    return [line for line in text.splitlines() if line.strip()]


def _split_fields(line: str) -> List[str]:
    # csv.reader handles quoted commas; a broken quote still yields fields.
    try:
        return next(csv.reader([line]), [])
    except csv.Error:
        return line.split(",")


def _field(cols: List[str], idx: int) -> str:
    if idx < 0 or idx >= len(cols):
        return ""
    return cols[idx].strip()


def parse_decimal(raw: str) -> Optional[Decimal]:
    """Parse a finite decimal, or return None."""
    s = (raw or "").strip()
    if not s:
        return None
    try:
        value = Decimal(s)
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


def parse_timestamp(raw: str) -> Optional[datetime]:
    """Parse any timestamp dateutil understands; naive values are taken as UTC."""
    s = (raw or "").strip()
    if not s:
        return None
    try:
        ts = date_parser.parse(s)
    except (ValueError, OverflowError):
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def normalize_side(raw: str) -> TradeSide:
    # Unrecognized values default to BUY.
    return TradeSide.SELL if raw.strip().upper() == "SELL" else TradeSide.BUY


# ---------------------------------------------------------------------------
# Trade grammar
# ---------------------------------------------------------------------------


def parse_trades_csv(text: str) -> ParseResult[TradeRow]:
    lines = _split_lines(text)
    if not lines:
        return ParseResult()

    header = [h.strip().lower() for h in _split_fields(lines[0])]
    data_lines = lines[1:]
    result: ParseResult[TradeRow] = ParseResult(total_lines=len(data_lines))

    def idx(name: str) -> int:
        return header.index(name) if name in header else -1

    i_symbol, i_side, i_qty, i_price, i_traded_at = (idx(c) for c in TRADE_REQUIRED_COLUMNS)
    i_ext = idx("externalid")

    if min(i_symbol, i_side, i_qty, i_price, i_traded_at) < 0:
        result.skipped = len(data_lines)
        return result

    min_fields = max(i_symbol, i_side, i_qty, i_price, i_traded_at) + 1

    for line in data_lines:
        cols = _split_fields(line)
        if len(cols) < min_fields:
            result.skipped += 1
            continue

        symbol = _field(cols, i_symbol).upper()
        side_raw = _field(cols, i_side)
        qty = parse_decimal(_field(cols, i_qty))
        price = parse_decimal(_field(cols, i_price))
        traded_at = parse_timestamp(_field(cols, i_traded_at))
        if not symbol or not side_raw or qty is None or price is None or traded_at is None:
            result.skipped += 1
            continue

        external_id = _field(cols, i_ext) or None
        result.rows.append(
            TradeRow(
                symbol=symbol,
                side=normalize_side(side_raw),
                qty=qty,
                price=price,
                traded_at=traded_at,
                external_id=external_id,
            )
        )
    return result


# ---------------------------------------------------------------------------
# Snapshot grammar
# ---------------------------------------------------------------------------


def _snapshot_header_indices(first_line: str) -> Optional[tuple]:
    header = [h.strip().lower() for h in _split_fields(first_line)]
    if "symbol" not in header or "avgcost" not in header:
        return None
    i_qty = next((header.index(a) for a in SNAPSHOT_QTY_ALIASES if a in header), -1)
    if i_qty < 0:
        return None
    return header.index("symbol"), i_qty, header.index("avgcost")


def parse_positions_snapshot(text: str) -> ParseResult[SnapshotRow]:
    lines = _split_lines(text)
    if not lines:
        return ParseResult()

    indices = _snapshot_header_indices(lines[0])
    if indices is None:
        # Headerless mode: symbol, quantity, avgCost by position.
        indices = (0, 1, 2)
        data_lines = lines
    else:
        data_lines = lines[1:]

    i_symbol, i_qty, i_cost = indices
    min_fields = max(indices) + 1
    result: ParseResult[SnapshotRow] = ParseResult(total_lines=len(data_lines))

    for line in data_lines:
        cols = _split_fields(line)
        if len(cols) < min_fields:
            result.skipped += 1
            continue
        symbol = _field(cols, i_symbol).upper()
        quantity = parse_decimal(_field(cols, i_qty))
        avg_cost = parse_decimal(_field(cols, i_cost))
        if not symbol or quantity is None or avg_cost is None:
            result.skipped += 1
            continue
        result.rows.append(SnapshotRow(symbol=symbol, quantity=quantity, avg_cost=avg_cost))
    return result
