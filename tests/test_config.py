from ledger_ingest.config import load_config


def test_defaults_target_localstack(monkeypatch):
    for name in ("TRADES_QUEUE_URL", "TRADES_DLQ_URL", "TRADES_QUEUE", "TRADES_DLQ", "AWS_ENDPOINT_URL", "TRADES_MAX_ATTEMPTS", "WORKER_HEARTBEAT_FILE"):
        monkeypatch.delenv(name, raising=False)
    cfg = load_config()
    assert cfg.queue_url == "http://localhost:4566/000000000000/trades-ingest-queue"
    assert cfg.dlq_url == "http://localhost:4566/000000000000/trades-ingest-dlq"
    assert cfg.max_attempts == 5
    assert cfg.heartbeat_file is None


def test_explicit_urls_and_clamps(monkeypatch):
    monkeypatch.setenv("TRADES_QUEUE_URL", "https://sqs.eu-west-1.amazonaws.com/1/q")
    monkeypatch.setenv("TRADES_RETRY_CAP_SECONDS", "3600")
    monkeypatch.setenv("TRADES_RECEIVE_BATCH", "50")
    monkeypatch.setenv("TRADES_WAIT_SECONDS", "60")
    monkeypatch.setenv("POSITIONS_KEY_PREFIX", "/snapshots/")
    cfg = load_config()
    assert cfg.queue_url == "https://sqs.eu-west-1.amazonaws.com/1/q"
    assert cfg.retry_cap_seconds == 900
    assert cfg.receive_batch_size == 10
    assert cfg.wait_time_seconds == 20
    assert cfg.positions_prefix == "snapshots"
