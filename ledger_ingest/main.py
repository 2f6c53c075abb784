"""
FastAPI read model for the ingest pipeline.
Exposes ingest-run history and current positions to pollers, plus a dev-only
trigger that ingests one object without going through the queue.
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
import os
import logging
from sqlalchemy.orm import Session

from ledger_ingest.config import load_config
from ledger_ingest.database import get_db, init_db
from ledger_ingest.models import Portfolio
from ledger_ingest.api_schemas import (
    DevIngestRequest,
    DevIngestResponse,
    IngestRunListResponse,
    IngestRunResponse,
    PositionListResponse,
    PositionResponse,
)
from ledger_ingest.services.ingest_runs import list_runs, start_run
from ledger_ingest.services.positions import list_positions
from ledger_ingest.worker.messages import classify_key
from ledger_ingest.worker.tasks import ingest_object_task

logger = logging.getLogger("ledger_ingest.api")

app = FastAPI(
    title="Ledger Ingest",
    description="Trade and position-snapshot ingestion read model",
    version="1.0.0"
)


def _cors_origins():
    # Comma-separated CORS_ALLOW_ORIGINS; unset or "*" allows any origin.
    raw = (os.getenv("CORS_ALLOW_ORIGINS") or "*").strip()
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return ["*"] if not origins or "*" in origins else origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup."""
    init_db()


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "ledger-ingest",
        "version": "1.0.0"
    }


def _portfolio_or_404(db: Session, portfolio_id: str) -> Portfolio:
    p = db.query(Portfolio).filter(Portfolio.id == portfolio_id).first()
    if not p:
        raise HTTPException(status_code=404, detail="Portfolio not found")
    return p


@app.get("/v1/portfolios/{portfolio_id}/ingests", response_model=IngestRunListResponse)
async def list_ingests(portfolio_id: str, db: Session = Depends(get_db)):
    """Latest 20 ingest runs, newest first."""
    _portfolio_or_404(db, portfolio_id)
    runs = list_runs(db, portfolio_id, limit=20)
    return IngestRunListResponse(
        ingests=[
            IngestRunResponse(
                id=r.id,
                object_key=r.object_key,
                status=r.status.value,
                rows_ok=r.rows_ok or 0,
                rows_failed=r.rows_failed or 0,
                error_message=r.error_message,
                started_at=r.started_at,
                finished_at=r.finished_at,
            )
            for r in runs
        ]
    )


@app.get("/v1/portfolios/{portfolio_id}/positions", response_model=PositionListResponse)
async def get_positions(portfolio_id: str, db: Session = Depends(get_db)):
    _portfolio_or_404(db, portfolio_id)
    return PositionListResponse(
        positions=[
            PositionResponse(
                id=p.id,
                portfolio_id=p.portfolio_id,
                symbol=p.symbol,
                quantity=float(p.quantity),
                avg_cost=float(p.avg_cost),
                updated_at=p.updated_at,
            )
            for p in list_positions(db, portfolio_id)
        ]
    )


@app.post("/v1/dev/ingest", response_model=DevIngestResponse)
async def dev_ingest(request: DevIngestRequest, db: Session = Depends(get_db)):
    """
    Dev-only ingestion trigger. In production, S3 -> SQS -> worker handles this.
    The pending run is created here so pollers see it before the task starts.
    """
    _portfolio_or_404(db, request.portfolio_id)
    run_id = start_run(db, request.portfolio_id, request.key)
    kind = classify_key(request.key, load_config())
    task = ingest_object_task.delay(request.portfolio_id, request.key)
    logger.info(
        "dev_ingest_dispatched",
        extra={"portfolio_id": request.portfolio_id, "key": request.key, "run_id": run_id, "task_id": task.id},
    )
    return DevIngestResponse(run_id=run_id, kind=kind.value, task_id=task.id)
