from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from ledger_ingest import main
from ledger_ingest.database import get_db
from ledger_ingest.models import Position
from ledger_ingest.services.ingest import ingest_trades_text


class _FakeTask:
    def __init__(self):
        self.calls = []

    def delay(self, portfolio_id, key):
        self.calls.append((portfolio_id, key))
        return type("AsyncResult", (), {"id": "task-1"})()


@pytest.fixture()
def client(session_factory, monkeypatch):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    monkeypatch.setattr(main, "init_db", lambda: None)
    main.app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(main.app) as c:
            yield c
    finally:
        main.app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_ingests_newest_first(client, db_session, portfolio):
    first = ingest_trades_text(db_session, portfolio.id, "trades/p/a.csv", "")
    second = ingest_trades_text(
        db_session, portfolio.id, "trades/p/b.csv", "symbol,side,qty,price,tradedAt\nAAPL,BUY,1,2,2024-01-01\nbad\n"
    )

    res = client.get(f"/v1/portfolios/{portfolio.id}/ingests")
    assert res.status_code == 200
    ingests = res.json()["ingests"]
    assert [i["id"] for i in ingests] == [second.run_id, first.run_id]
    latest = ingests[0]
    assert latest["objectKey"] == "trades/p/b.csv"
    assert latest["status"] == "ok"
    assert (latest["rowsOk"], latest["rowsFailed"]) == (1, 1)
    assert latest["finishedAt"] is not None


def test_unknown_portfolio_is_404(client):
    assert client.get("/v1/portfolios/nope/ingests").status_code == 404
    assert client.get("/v1/portfolios/nope/positions").status_code == 404


def test_positions_render_decimals_as_numbers(client, db_session, portfolio):
    db_session.add(Position(portfolio_id=portfolio.id, symbol="AAPL", quantity=Decimal("6"), avg_cost=Decimal("150.25")))
    db_session.commit()

    positions = client.get(f"/v1/portfolios/{portfolio.id}/positions").json()["positions"]
    assert positions[0]["symbol"] == "AAPL"
    assert positions[0]["quantity"] == 6.0
    assert positions[0]["avgCost"] == 150.25


def test_dev_ingest_creates_pending_run_and_dispatches(client, portfolio, monkeypatch):
    task = _FakeTask()
    monkeypatch.setattr(main, "ingest_object_task", task)
    key = f"positions/{portfolio.id}/snap.csv"

    res = client.post("/v1/dev/ingest", json={"portfolioId": portfolio.id, "key": key})
    assert res.status_code == 200
    body = res.json()
    assert body["kind"] == "positions"
    assert body["taskId"] == "task-1"
    assert task.calls == [(portfolio.id, key)]

    ingests = client.get(f"/v1/portfolios/{portfolio.id}/ingests").json()["ingests"]
    assert ingests[0]["id"] == body["runId"]
    assert ingests[0]["status"] == "pending"


def test_dev_ingest_validates_body(client):
    assert client.post("/v1/dev/ingest", json={"portfolioId": "", "key": "k"}).status_code == 422
    assert client.post("/v1/dev/ingest", json={"key": "k"}).status_code == 422
