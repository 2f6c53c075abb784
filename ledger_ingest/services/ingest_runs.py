"""
Ingest run lifecycle: pending -> ok | error.

Each transition commits on its own so a run's status survives a rolled-back
ingest. A run whose worker died stays pending; staleness is for pollers to
judge.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from sqlalchemy.orm import Session

from ledger_ingest.models import IngestRun, IngestRunStatus
from ledger_ingest.services.ledger import IngestError

MAX_ERROR_LENGTH = 2000


class IngestRunNotFoundError(IngestError):
    pass


def start_run(db: Session, portfolio_id: str, object_key: str) -> str:
    """
    Create a pending run, or reuse the pending run already recorded for the
    same portfolio and object key (enqueuer and worker may both call this).
    """
    existing = (
        db.query(IngestRun)
        .filter(
            IngestRun.portfolio_id == portfolio_id,
            IngestRun.object_key == object_key,
            IngestRun.status == IngestRunStatus.PENDING,
        )
        .order_by(IngestRun.started_at.desc())
        .first()
    )
    if existing:
        return existing.id

    run = IngestRun(portfolio_id=portfolio_id, object_key=object_key, status=IngestRunStatus.PENDING)
    db.add(run)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    return run.id


def _finish(db: Session, run_id: str, status: IngestRunStatus, rows_ok: int, rows_failed: int, error: str = None) -> IngestRun:
    run = db.query(IngestRun).filter(IngestRun.id == run_id).first()
    if not run:
        raise IngestRunNotFoundError(f"Ingest run {run_id} not found")
    run.status = status
    run.rows_ok = rows_ok
    run.rows_failed = rows_failed
    run.error_message = error[:MAX_ERROR_LENGTH] if error else None
    run.finished_at = datetime.now(timezone.utc)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    return run


def complete_run(db: Session, run_id: str, rows_ok: int, rows_failed: int) -> IngestRun:
    return _finish(db, run_id, IngestRunStatus.OK, rows_ok, rows_failed)


def fail_run(db: Session, run_id: str, error: str, rows_failed: int) -> IngestRun:
    return _finish(db, run_id, IngestRunStatus.ERROR, 0, rows_failed, error=error or "unknown error")


def list_runs(db: Session, portfolio_id: str, limit: int = 20) -> List[IngestRun]:
    return (
        db.query(IngestRun)
        .filter(IngestRun.portfolio_id == portfolio_id)
        .order_by(IngestRun.started_at.desc())
        .limit(limit)
        .all()
    )
