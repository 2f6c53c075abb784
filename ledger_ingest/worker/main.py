"""
Celery app behind the dev ingest trigger.

Production ingestion runs through the queue consumer (worker/consumer.py);
this app only runs `ingest_object` for a single key on request.
"""

from celery import Celery
import os

_TRUTHY = {"1", "true", "True", "yes", "YES"}


def _eager() -> bool:
    return os.getenv("CELERY_ALWAYS_EAGER", "").strip() in _TRUTHY


def make_celery_app(eager: bool = None) -> Celery:
    eager = _eager() if eager is None else eager
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    app = Celery(
        "ledger_ingest",
        broker="memory://" if eager else redis_url,
        backend="cache+memory://" if eager else redis_url,
        include=["ledger_ingest.worker.tasks"],
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        enable_utc=True,
        # One object fetch plus a few thousand rows.
        task_time_limit=120,
    )
    if eager:
        # Failures land on the ingest run; the HTTP caller is not failed with them.
        app.conf.update(task_always_eager=True, task_eager_propagates=False, task_store_eager_result=False)
    return app


celery_app = make_celery_app()

if __name__ == "__main__":
    celery_app.start()
