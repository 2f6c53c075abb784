"""
SQS queue adapter: receive, send (with delay) and delete by receipt handle.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List

from botocore.exceptions import BotoCoreError, ClientError


class QueueError(RuntimeError):
    """Domain error for queue operations."""


@dataclass
class QueueMessage:
    body: str
    receipt_handle: str
    message_id: str = ""


class SqsQueue:
    def __init__(self, client, queue_url: str) -> None:
        self._client = client
        self.queue_url = queue_url

    def receive(self, max_messages: int, wait_seconds: int) -> List[QueueMessage]:
        """Long-poll for up to `max_messages`; returns an empty list on timeout."""
        try:
            res = self._client.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=max_messages,
                WaitTimeSeconds=wait_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise QueueError(f"receive failed on {self.queue_url}: {e}") from e
        return [
            QueueMessage(
                body=m.get("Body") or "",
                receipt_handle=m.get("ReceiptHandle") or "",
                message_id=m.get("MessageId") or "",
            )
            for m in res.get("Messages") or []
        ]

    def send(self, body: Dict[str, Any], delay_seconds: int = 0) -> None:
        kwargs: Dict[str, Any] = {"QueueUrl": self.queue_url, "MessageBody": json.dumps(body)}
        if delay_seconds > 0:
            kwargs["DelaySeconds"] = int(delay_seconds)
        try:
            self._client.send_message(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise QueueError(f"send failed on {self.queue_url}: {e}") from e

    def delete(self, receipt_handle: str) -> None:
        try:
            self._client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
        except (ClientError, BotoCoreError) as e:
            raise QueueError(f"delete failed on {self.queue_url}: {e}") from e
