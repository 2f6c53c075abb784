import json
from typing import List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ledger_ingest.config import IngestConfig
from ledger_ingest.context import WorkerContext
from ledger_ingest.database import Base
from ledger_ingest.models import Portfolio
from ledger_ingest.services.queue import QueueMessage
from ledger_ingest.services.storage import ObjectStoreError


@pytest.fixture()
def engine(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def portfolio(db_session):
    p = Portfolio(name="Core")
    db_session.add(p)
    db_session.commit()
    db_session.refresh(p)
    return p


@pytest.fixture()
def config(tmp_path):
    return IngestConfig(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        aws_region="us-east-1",
        aws_endpoint_url="http://localhost:4566",
        aws_access_key_id="test",
        aws_secret_access_key="test",
        trades_bucket="trades-bucket",
        queue_url="http://localhost:4566/000000000000/trades-ingest-queue",
        dlq_url="http://localhost:4566/000000000000/trades-ingest-dlq",
        max_attempts=5,
        retry_cap_seconds=900,
        receive_batch_size=5,
        wait_time_seconds=0,
        heartbeat_seconds=30,
        heartbeat_file=None,
        trades_prefix="trades",
        positions_prefix="positions",
        log_level="INFO",
    )


class FakeObjectStore:
    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.fetched: List[str] = []

    def get_text(self, key: str) -> str:
        self.fetched.append(key)
        if key not in self.objects:
            raise ObjectStoreError(f"NoSuchKey: {key}")
        return self.objects[key]


class FakeQueue:
    def __init__(self, queue_url: str = "fake://queue"):
        self.queue_url = queue_url
        self.pending: List[QueueMessage] = []
        self.sent: List[dict] = []
        self.deleted: List[str] = []
        self.fail_sends = False
        self._seq = 0

    def push(self, body) -> QueueMessage:
        self._seq += 1
        if not isinstance(body, str):
            body = json.dumps(body)
        msg = QueueMessage(body=body, receipt_handle=f"rh-{self._seq}", message_id=f"m-{self._seq}")
        self.pending.append(msg)
        return msg

    def receive(self, max_messages: int, wait_seconds: int) -> List[QueueMessage]:
        batch, self.pending = self.pending[:max_messages], self.pending[max_messages:]
        return batch

    def send(self, body: dict, delay_seconds: int = 0) -> None:
        if self.fail_sends:
            raise RuntimeError("send failed")
        self.sent.append({"body": body, "delay_seconds": delay_seconds})
        # Redeliver right away; delays are asserted, not waited for.
        self.push(body)

    def delete(self, receipt_handle: str) -> None:
        self.deleted.append(receipt_handle)


@pytest.fixture()
def fake_store():
    return FakeObjectStore()


@pytest.fixture()
def worker_ctx(config, session_factory, fake_store):
    return WorkerContext(
        config=config,
        session_factory=session_factory,
        object_store=fake_store,
        queue=FakeQueue(config.queue_url),
        dead_letter_queue=FakeQueue(config.dlq_url),
    )
