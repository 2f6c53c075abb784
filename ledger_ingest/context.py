"""
Process-level collaborators for the ingestion worker.

Built once at start-up and passed explicitly into the consumer loop and the
ingest paths, so tests can swap any piece for a fake.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from ledger_ingest.config import IngestConfig, load_config
from ledger_ingest.database import create_engine_for_url, make_session_factory
from ledger_ingest.services.aws import aws_client
from ledger_ingest.services.queue import SqsQueue
from ledger_ingest.services.storage import S3ObjectStore


@dataclass
class WorkerContext:
    config: IngestConfig
    session_factory: sessionmaker
    object_store: S3ObjectStore
    queue: SqsQueue
    dead_letter_queue: SqsQueue

    @classmethod
    def from_config(cls, config: Optional[IngestConfig] = None) -> "WorkerContext":
        config = config or load_config()
        engine = create_engine_for_url(config.database_url)
        s3 = aws_client("s3", config)
        # Long-poll receives block for up to wait_time_seconds.
        sqs = aws_client("sqs", config, read_timeout=config.wait_time_seconds + 20)
        return cls(
            config=config,
            session_factory=make_session_factory(engine),
            object_store=S3ObjectStore(s3, config.trades_bucket),
            queue=SqsQueue(sqs, config.queue_url),
            dead_letter_queue=SqsQueue(sqs, config.dlq_url),
        )
