"""
Runtime configuration for the ingestion worker and read API.

All values come from the environment; defaults target a local LocalStack +
SQLite setup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class IngestConfig:
    database_url: str
    aws_region: str
    aws_endpoint_url: Optional[str]
    aws_access_key_id: str
    aws_secret_access_key: str
    trades_bucket: str
    queue_url: str
    dlq_url: str
    max_attempts: int
    retry_cap_seconds: int
    receive_batch_size: int
    wait_time_seconds: int
    heartbeat_seconds: float
    heartbeat_file: Optional[str]
    trades_prefix: str
    positions_prefix: str
    log_level: str


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)) or str(default))


def _queue_url(endpoint: Optional[str], explicit_env: str, name_env: str, default_name: str) -> str:
    explicit = (os.getenv(explicit_env) or "").strip()
    if explicit:
        return explicit
    name = os.getenv(name_env, default_name)
    base = (endpoint or "http://localhost:4566").rstrip("/")
    return f"{base}/000000000000/{name}"


def load_config() -> IngestConfig:
    database_url = os.getenv("DATABASE_URL") or "sqlite:///./dev.db"
    endpoint = (os.getenv("AWS_ENDPOINT_URL", "http://localhost:4566") or "").strip() or None
    heartbeat_file = (os.getenv("WORKER_HEARTBEAT_FILE") or "").strip() or None
    return IngestConfig(
        database_url=database_url,
        aws_region=os.getenv("AWS_REGION", "us-east-1"),
        aws_endpoint_url=endpoint,
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID", "test"),
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", "test"),
        trades_bucket=os.getenv("TRADES_BUCKET", "trades-bucket"),
        queue_url=_queue_url(endpoint, "TRADES_QUEUE_URL", "TRADES_QUEUE", "trades-ingest-queue"),
        dlq_url=_queue_url(endpoint, "TRADES_DLQ_URL", "TRADES_DLQ", "trades-ingest-dlq"),
        max_attempts=_int_env("TRADES_MAX_ATTEMPTS", 5),
        # SQS caps DelaySeconds at 15 minutes
        retry_cap_seconds=min(_int_env("TRADES_RETRY_CAP_SECONDS", 900), 900),
        receive_batch_size=max(1, min(_int_env("TRADES_RECEIVE_BATCH", 5), 10)),
        wait_time_seconds=max(0, min(_int_env("TRADES_WAIT_SECONDS", 10), 20)),
        heartbeat_seconds=float(os.getenv("WORKER_HEARTBEAT_SECONDS", "30") or "30"),
        heartbeat_file=heartbeat_file,
        trades_prefix=os.getenv("TRADES_KEY_PREFIX", "trades").strip("/"),
        positions_prefix=os.getenv("POSITIONS_KEY_PREFIX", "positions").strip("/"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
