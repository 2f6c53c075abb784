import json

import pytest

from ledger_ingest.services.csv_parser import FileKind
from ledger_ingest.worker.messages import (
    DeadLetter,
    EnvelopeShape,
    IngestMessage,
    MalformedMessageError,
    Requeue,
    classify_message,
    next_attempt,
)


def _s3_event(key):
    return {"Records": [{"eventName": "ObjectCreated:Put", "s3": {"bucket": {"name": "b"}, "object": {"key": key}}}]}


def test_raw_message(config):
    msg = classify_message(json.dumps({"portfolioId": "p1", "key": "trades/p1/a.csv", "attempt": 2}), config)
    assert msg == IngestMessage(portfolio_id="p1", key="trades/p1/a.csv", kind=FileKind.TRADES, attempt=2)


def test_raw_message_without_attempt_starts_at_zero(config):
    msg = classify_message('{"portfolioId": "p1", "key": "uploads/a.csv"}', config)
    assert msg.attempt == 0
    assert msg.kind is FileKind.TRADES


def test_s3_event_derives_portfolio_and_decodes_key(config):
    msg = classify_message(json.dumps(_s3_event("trades/abc-123/1700000000-my+file%281%29.csv")), config)
    assert msg.portfolio_id == "abc-123"
    assert msg.key == "trades/abc-123/1700000000-my file(1).csv"
    assert msg.shape is EnvelopeShape.S3_EVENT
    assert msg.attempt == 0


def test_positions_prefix_routes_to_snapshot(config):
    msg = classify_message(json.dumps(_s3_event("positions/p9/snap.csv")), config)
    assert msg.kind is FileKind.POSITIONS
    assert msg.portfolio_id == "p9"


def test_wrapped_message_is_unwrapped_once(config):
    inner = json.dumps({"portfolioId": "p1", "key": "positions/p1/s.csv"})
    msg = classify_message(json.dumps({"Type": "Notification", "Message": inner}), config)
    assert msg.shape is EnvelopeShape.WRAPPED
    assert msg.kind is FileKind.POSITIONS


def test_wrapped_s3_event(config):
    msg = classify_message(json.dumps({"Message": json.dumps(_s3_event("trades/p2/a.csv"))}), config)
    assert msg.portfolio_id == "p2"
    assert msg.shape is EnvelopeShape.WRAPPED


@pytest.mark.parametrize(
    "body",
    [
        "not json",
        "[1, 2]",
        "",
        '{"key": "trades/p1/a.csv"}',
        '{"portfolioId": "p1"}',
        json.dumps({"Records": []}),
        json.dumps(_s3_event("uploads/a.csv")),
        json.dumps({"Message": "also not json"}),
        json.dumps({"Service": "Amazon S3", "Event": "s3:TestEvent"}),
    ],
)
def test_malformed_bodies(config, body):
    with pytest.raises(MalformedMessageError):
        classify_message(body, config)


def _msg(attempt):
    return IngestMessage(portfolio_id="p1", key="trades/p1/a.csv", kind=FileKind.TRADES, attempt=attempt)


def test_retry_schedule_then_dead_letter():
    delays = []
    msg = _msg(0)
    while True:
        decision = next_attempt(msg, RuntimeError("db down"), max_attempts=5, cap_seconds=900)
        if isinstance(decision, DeadLetter):
            break
        delays.append(decision.delay_seconds)
        msg = _msg(decision.attempt)

    assert delays == [2, 4, 8, 16]
    assert decision.attempt == 5
    assert decision.body == {"portfolioId": "p1", "key": "trades/p1/a.csv", "attempt": 5, "error": "db down"}


def test_requeue_body_carries_incremented_attempt():
    decision = next_attempt(_msg(2), RuntimeError("x"))
    assert isinstance(decision, Requeue)
    assert decision.body == {"portfolioId": "p1", "key": "trades/p1/a.csv", "attempt": 3}


def test_delay_is_capped():
    decision = next_attempt(_msg(10), RuntimeError("x"), max_attempts=20, cap_seconds=900)
    assert decision.delay_seconds == 900


def test_dead_letter_reason_falls_back_to_error_type():
    decision = next_attempt(_msg(4), KeyError())
    assert isinstance(decision, DeadLetter)
    assert decision.reason == "KeyError"


def test_nested_positions_prefix_routes_to_snapshot(config):
    msg = classify_message(json.dumps(_s3_event("uploads/positions/p1/snap.csv")), config)
    assert msg.portfolio_id == "p1"
    assert msg.kind is FileKind.POSITIONS


def test_first_prefix_segment_decides_kind_and_portfolio(config):
    msg = classify_message(json.dumps(_s3_event("trades/p3/positions/a.csv")), config)
    assert msg.portfolio_id == "p3"
    assert msg.kind is FileKind.TRADES
