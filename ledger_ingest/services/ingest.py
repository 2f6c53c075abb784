"""
Ingest orchestration for one uploaded object.

Trade path:    start run -> parse -> ledger upsert -> recompute (if rows written) -> complete run
Snapshot path: start run -> parse -> snapshot import -> complete run

Row and batch defects (malformed lines, empty or header-only files) finish as
an `ok` run with their counts. Write failures mark the run `error` and
propagate to the caller, which owns retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ledger_ingest.context import WorkerContext
from ledger_ingest.services.csv_parser import FileKind, parse_positions_snapshot, parse_trades_csv
from ledger_ingest.services.ingest_runs import complete_run, fail_run, start_run
from ledger_ingest.services.ledger import upsert_trades
from ledger_ingest.services.positions import RecomputeResult, recompute_positions
from ledger_ingest.services.snapshot_import import import_positions_snapshot

logger = logging.getLogger("ledger_ingest.ingest")


@dataclass
class IngestResult:
    run_id: str
    kind: FileKind
    inserted: int
    skipped: int
    total_lines: int
    recompute: Optional[RecomputeResult] = None


def ingest_trades_text(db: Session, portfolio_id: str, key: str, csv_text: str) -> IngestResult:
    run_id = start_run(db, portfolio_id, key)
    parsed = parse_trades_csv(csv_text)
    try:
        written = upsert_trades(db, portfolio_id, parsed.rows)
        recompute = None
        if written.inserted > 0:
            recompute = recompute_positions(db, portfolio_id)
    except Exception as e:
        fail_run(db, run_id, str(e), rows_failed=parsed.total_lines)
        raise

    skipped = parsed.skipped + written.skipped
    complete_run(db, run_id, rows_ok=written.inserted, rows_failed=skipped)
    return IngestResult(
        run_id=run_id,
        kind=FileKind.TRADES,
        inserted=written.inserted,
        skipped=skipped,
        total_lines=parsed.total_lines,
        recompute=recompute,
    )


def ingest_snapshot_text(db: Session, portfolio_id: str, key: str, csv_text: str) -> IngestResult:
    run_id = start_run(db, portfolio_id, key)
    parsed = parse_positions_snapshot(csv_text)
    try:
        imported = import_positions_snapshot(db, portfolio_id, parsed.rows)
    except Exception as e:
        fail_run(db, run_id, str(e), rows_failed=parsed.total_lines)
        raise

    skipped = parsed.skipped + imported.skipped
    complete_run(db, run_id, rows_ok=imported.imported, rows_failed=skipped)
    return IngestResult(
        run_id=run_id,
        kind=FileKind.POSITIONS,
        inserted=imported.imported,
        skipped=skipped,
        total_lines=parsed.total_lines,
    )


def ingest_text(db: Session, portfolio_id: str, key: str, csv_text: str, kind: FileKind) -> IngestResult:
    if kind is FileKind.POSITIONS:
        return ingest_snapshot_text(db, portfolio_id, key, csv_text)
    return ingest_trades_text(db, portfolio_id, key, csv_text)


def ingest_object(ctx: WorkerContext, portfolio_id: str, key: str, kind: FileKind) -> IngestResult:
    """Fetch one object from storage and run the matching ingest path."""
    db = ctx.session_factory()
    try:
        # The ingest path below picks this pending run up again.
        run_id = start_run(db, portfolio_id, key)
        try:
            csv_text = ctx.object_store.get_text(key)
        except Exception as e:
            fail_run(db, run_id, str(e), rows_failed=0)
            raise
        result = ingest_text(db, portfolio_id, key, csv_text, kind)
        logger.info(
            "ingest_done",
            extra={
                "portfolio_id": portfolio_id,
                "key": key,
                "kind": kind.value,
                "run_id": result.run_id,
                "inserted": result.inserted,
                "skipped": result.skipped,
            },
        )
        return result
    finally:
        db.close()
