from decimal import Decimal

import pytest

from ledger_ingest.models import IngestRun, IngestRunStatus, Position, Trade
from ledger_ingest.services import ingest
from ledger_ingest.services.csv_parser import FileKind
from ledger_ingest.services.ingest import ingest_object, ingest_text, ingest_trades_text
from ledger_ingest.services.storage import ObjectStoreError

TRADES = (
    "symbol,side,qty,price,tradedAt,externalId\n"
    "AAPL,BUY,10,150,2024-01-02T15:00:00Z,T-1\n"
    "AAPL,SELL,4,155,2024-01-03T15:00:00Z,T-2\n"
)


def _run(db, run_id):
    db.expire_all()
    return db.query(IngestRun).filter(IngestRun.id == run_id).one()


def test_trade_file_updates_ledger_positions_and_run(db_session, portfolio):
    out = ingest_trades_text(db_session, portfolio.id, "trades/p/a.csv", TRADES)

    run = _run(db_session, out.run_id)
    assert run.status == IngestRunStatus.OK
    assert (run.rows_ok, run.rows_failed) == (2, 0)
    assert out.recompute is not None
    pos = db_session.query(Position).filter(Position.symbol == "AAPL").one()
    assert pos.quantity == Decimal("6")
    assert pos.avg_cost == Decimal("150")


def test_reingest_same_file_is_idempotent(db_session, portfolio):
    ingest_trades_text(db_session, portfolio.id, "trades/p/a.csv", TRADES)
    ingest_trades_text(db_session, portfolio.id, "trades/p/a.csv", TRADES)

    db_session.expire_all()
    assert db_session.query(Trade).count() == 2
    assert db_session.query(Position).one().quantity == Decimal("6")
    assert db_session.query(IngestRun).count() == 2


def test_empty_object_is_ok_with_zero_rows(db_session, portfolio):
    out = ingest_trades_text(db_session, portfolio.id, "trades/p/empty.csv", "")
    run = _run(db_session, out.run_id)
    assert run.status == IngestRunStatus.OK
    assert (run.rows_ok, run.rows_failed) == (0, 0)
    assert out.recompute is None


def test_header_only_file_is_ok_with_zero_rows(db_session, portfolio):
    out = ingest_trades_text(db_session, portfolio.id, "k", "symbol,side,qty,price,tradedAt\n")
    run = _run(db_session, out.run_id)
    assert run.status == IngestRunStatus.OK
    assert run.rows_ok == 0


def test_malformed_lines_are_counted_as_failed(db_session, portfolio):
    text = (
        "symbol,side,qty,price,tradedAt\n"
        "AAPL,BUY,10,150,2024-01-02\n"
        "AAPL,BUY,oops,150,2024-01-02\n"
        "MSFT,BUY,5,300,2024-01-02\n"
        "MSFT,BUY,0,300,2024-01-03\n"
    )
    out = ingest_trades_text(db_session, portfolio.id, "k", text)

    run = _run(db_session, out.run_id)
    assert run.status == IngestRunStatus.OK
    assert run.rows_ok == 2
    assert run.rows_failed == 2
    assert run.rows_ok + run.rows_failed == out.total_lines


def test_write_failure_marks_run_error_and_raises(db_session, portfolio, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(ingest, "upsert_trades", boom)
    with pytest.raises(RuntimeError):
        ingest_trades_text(db_session, portfolio.id, "k", TRADES)

    run = db_session.query(IngestRun).one()
    assert run.status == IngestRunStatus.ERROR
    assert run.error_message == "connection lost"
    assert run.rows_ok == 0
    assert run.rows_failed == 2


def test_unknown_portfolio_fails_run(db_session):
    with pytest.raises(Exception):
        ingest_trades_text(db_session, "missing", "trades/missing/a.csv", TRADES)
    run = db_session.query(IngestRun).one()
    assert run.status == IngestRunStatus.ERROR


def test_snapshot_path_does_not_recompute(db_session, portfolio):
    ingest_trades_text(db_session, portfolio.id, "trades/p/a.csv", TRADES)
    out = ingest_text(db_session, portfolio.id, "positions/p/s.csv", "AAPL,100,1\nNVDA,2,400\n", FileKind.POSITIONS)

    run = _run(db_session, out.run_id)
    assert out.kind is FileKind.POSITIONS
    assert run.rows_ok == 2
    positions = {p.symbol: p for p in db_session.query(Position).all()}
    assert positions["AAPL"].quantity == Decimal("100")
    assert positions["NVDA"].avg_cost == Decimal("400")


def test_ingest_object_fetches_and_closes(worker_ctx, fake_store, portfolio):
    fake_store.objects["trades/p/a.csv"] = TRADES
    out = ingest_object(worker_ctx, portfolio.id, "trades/p/a.csv", FileKind.TRADES)

    assert fake_store.fetched == ["trades/p/a.csv"]
    assert out.inserted == 2


def test_ingest_object_fetch_failure_records_error(worker_ctx, db_session, portfolio):
    with pytest.raises(ObjectStoreError):
        ingest_object(worker_ctx, portfolio.id, "trades/p/missing.csv", FileKind.TRADES)

    db_session.expire_all()
    run = db_session.query(IngestRun).one()
    assert run.status == IngestRunStatus.ERROR
    assert run.object_key == "trades/p/missing.csv"
    assert "NoSuchKey" in run.error_message


def test_snapshot_with_only_zero_quantities_leaves_no_positions(db_session, portfolio):
    db_session.add(Position(portfolio_id=portfolio.id, symbol="AAPL", quantity=Decimal("5"), avg_cost=Decimal("150")))
    db_session.commit()

    out = ingest_text(
        db_session, portfolio.id, "positions/p/s.csv", "symbol,quantity,avgCost\nAAPL,0,150\nMSFT,0,1\n", FileKind.POSITIONS
    )

    run = _run(db_session, out.run_id)
    assert run.status == IngestRunStatus.OK
    assert run.rows_ok == 2
    assert db_session.query(Position).filter(Position.portfolio_id == portfolio.id).count() == 0
