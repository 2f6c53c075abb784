"""
Celery tasks for ingesting uploaded objects.
"""

from functools import lru_cache

from ledger_ingest.context import WorkerContext
from ledger_ingest.services.ingest import ingest_object
from ledger_ingest.worker.main import celery_app
from ledger_ingest.worker.messages import classify_key


@lru_cache(maxsize=1)
def _context() -> WorkerContext:
    return WorkerContext.from_config()


@celery_app.task(bind=True, name="ingest_object")
def ingest_object_task(self, portfolio_id: str, key: str):
    """
    Ingest one object by key. The pending run was created by the caller;
    the ingest path picks it up and finishes it as ok or error.
    """
    ctx = _context()
    kind = classify_key(key, ctx.config)
    result = ingest_object(ctx, portfolio_id, key, kind)
    return {
        "runId": result.run_id,
        "kind": result.kind.value,
        "inserted": result.inserted,
        "skipped": result.skipped,
    }
