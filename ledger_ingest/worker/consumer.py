"""
Queue consumer loop for upload notifications.

Per message: Received -> Classified -> {trade ingest | snapshot ingest}
             -> {acked | requeued with delay | dead-lettered}

The original message is deleted only after the ingest path returned, or after
the requeue / dead-letter send went through. If that send fails the original
stays un-acked and the queue redelivers it on visibility timeout.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ledger_ingest.context import WorkerContext
from ledger_ingest.services.ingest import IngestResult, ingest_object
from ledger_ingest.services.queue import QueueMessage
from ledger_ingest.worker.messages import (
    DeadLetter,
    IngestMessage,
    MalformedMessageError,
    classify_message,
    next_attempt,
)

logger = logging.getLogger("ledger_ingest.worker")

Handler = Callable[[WorkerContext, IngestMessage], Optional[IngestResult]]


def default_handler(ctx: WorkerContext, msg: IngestMessage) -> IngestResult:
    return ingest_object(ctx, msg.portfolio_id, msg.key, msg.kind)


@dataclass
class ConsumerStats:
    received: int = 0
    acked: int = 0
    requeued: int = 0
    dead_lettered: int = 0
    dropped: int = 0
    errors: int = 0


class Heartbeat:
    """Background liveness signal, independent of message volume."""

    def __init__(self, interval_seconds: float, stats: ConsumerStats, path: Optional[str] = None) -> None:
        self.interval_seconds = max(0.1, float(interval_seconds))
        self.stats = stats
        self.path = Path(path) if path else None
        self.beats = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def beat(self) -> None:
        self.beats += 1
        logger.info(
            "heartbeat",
            extra={
                "received": self.stats.received,
                "acked": self.stats.acked,
                "requeued": self.stats.requeued,
                "dead_lettered": self.stats.dead_lettered,
                "dropped": self.stats.dropped,
            },
        )
        if self.path is not None:
            try:
                self.path.write_text(str(int(time.time())))
            except OSError as e:
                logger.warning("heartbeat_file_failed", extra={"path": str(self.path), "error": str(e)})

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.beat()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="ingest-heartbeat", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval_seconds + 1)
            self._thread = None


class QueueConsumer:
    def __init__(self, ctx: WorkerContext, handler: Optional[Handler] = None) -> None:
        self.ctx = ctx
        self.config = ctx.config
        self.handler = handler or default_handler
        self.stats = ConsumerStats()
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def poll_once(self) -> int:
        """Receive one batch and process each message; returns the batch size."""
        messages = self.ctx.queue.receive(self.config.receive_batch_size, self.config.wait_time_seconds)
        if not messages:
            return 0
        logger.debug("batch_received", extra={"count": len(messages)})
        for message in messages:
            try:
                self.handle_message(message)
            except Exception:
                # One bad message must not take the rest of the batch down.
                self.stats.errors += 1
                logger.exception("message_failed", extra={"message_id": message.message_id})
        return len(messages)

    def handle_message(self, message: QueueMessage) -> str:
        """Process one delivery; returns the outcome: acked, requeued, dead_lettered or dropped."""
        self.stats.received += 1
        try:
            msg = classify_message(message.body, self.config)
        except MalformedMessageError as e:
            logger.warning("message_dropped", extra={"message_id": message.message_id, "reason": str(e)})
            self.ctx.queue.delete(message.receipt_handle)
            self.stats.dropped += 1
            return "dropped"

        log_ctx = {
            "message_id": message.message_id,
            "portfolio_id": msg.portfolio_id,
            "key": msg.key,
            "kind": msg.kind.value,
            "attempt": msg.attempt,
        }
        logger.info("ingest_start", extra=log_ctx)
        try:
            self.handler(self.ctx, msg)
        except Exception as e:
            return self._retry_or_dead_letter(message, msg, e, log_ctx)

        self.ctx.queue.delete(message.receipt_handle)
        self.stats.acked += 1
        return "acked"

    def _retry_or_dead_letter(self, message: QueueMessage, msg: IngestMessage, error: Exception, log_ctx: dict) -> str:
        decision = next_attempt(msg, error, self.config.max_attempts, self.config.retry_cap_seconds)
        if isinstance(decision, DeadLetter):
            self.ctx.dead_letter_queue.send(decision.body)
            self.ctx.queue.delete(message.receipt_handle)
            self.stats.dead_lettered += 1
            logger.error(
                "message_dead_lettered",
                extra={**log_ctx, "attempt": decision.attempt, "error": decision.reason},
                exc_info=error,
            )
            return "dead_lettered"

        self.ctx.queue.send(decision.body, delay_seconds=decision.delay_seconds)
        self.ctx.queue.delete(message.receipt_handle)
        self.stats.requeued += 1
        logger.warning(
            "message_requeued",
            extra={**log_ctx, "attempt": decision.attempt, "delay_seconds": decision.delay_seconds, "error": str(error)},
        )
        return "requeued"

    def run_forever(self) -> None:
        heartbeat = Heartbeat(self.config.heartbeat_seconds, self.stats, self.config.heartbeat_file)
        heartbeat.start()
        logger.info(
            "worker_started",
            extra={"queue_url": self.ctx.queue.queue_url, "dlq_url": self.ctx.dead_letter_queue.queue_url},
        )
        try:
            while not self._stop.is_set():
                try:
                    self.poll_once()
                except Exception:
                    # Receive failures (network, throttling) back off briefly and poll again.
                    logger.exception("poll_failed")
                    self._stop.wait(1.0)
        finally:
            heartbeat.stop()
            logger.info("worker_stopped")


def main() -> None:
    ctx = WorkerContext.from_config()
    logging.basicConfig(
        level=getattr(logging, ctx.config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    consumer = QueueConsumer(ctx)
    try:
        consumer.run_forever()
    except KeyboardInterrupt:
        consumer.stop()


if __name__ == "__main__":
    main()
