"""
Upload-notification messages: envelope classification and retry transitions.

A queue body arrives in one of three shapes, resolved in this order:

1. S3 event notification  {"Records": [{"s3": {"object": {"key": ...}}}]}
   The portfolio id is the path segment after the trades/positions prefix.
2. Notification wrapper    {"Message": "<json string of 1 or 3>"}  (one layer)
3. Raw message             {"portfolioId": ..., "key": ..., "attempt": n}

Anything else raises MalformedMessageError; such messages carry no portfolio
to attribute a run to and are dropped by the consumer.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import unquote_plus

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ledger_ingest.config import IngestConfig
from ledger_ingest.services.csv_parser import FileKind


class MalformedMessageError(ValueError):
    """Queue body cannot be resolved to a portfolio and object key."""


class EnvelopeShape(enum.Enum):
    S3_EVENT = "s3_event"
    WRAPPED = "wrapped"
    RAW = "raw"


# ---------------------------------------------------------------------------
# Wire shapes
# ---------------------------------------------------------------------------


class RawEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    portfolio_id: str = Field("", alias="portfolioId")
    key: str = ""
    attempt: int = 0

    @field_validator("portfolio_id", "key", mode="before")
    @classmethod
    def _coerce_str(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("attempt", mode="before")
    @classmethod
    def _coerce_attempt(cls, v: Any) -> int:
        try:
            return max(0, int(v or 0))
        except (TypeError, ValueError):
            return 0


class S3ObjectRef(BaseModel):
    key: str = ""


class S3Entity(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    object_ref: Optional[S3ObjectRef] = Field(None, alias="object")


class S3EventRecord(BaseModel):
    s3: Optional[S3Entity] = None


class S3EventEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    records: List[S3EventRecord] = Field(default_factory=list, alias="Records")


# ---------------------------------------------------------------------------
# Resolved message
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IngestMessage:
    portfolio_id: str
    key: str
    kind: FileKind
    attempt: int = 0
    shape: EnvelopeShape = EnvelopeShape.RAW

    def to_body(self, attempt: Optional[int] = None) -> Dict[str, Any]:
        return {
            "portfolioId": self.portfolio_id,
            "key": self.key,
            "attempt": self.attempt if attempt is None else attempt,
        }


def _locate_prefix(key: str, config: IngestConfig) -> Tuple[Optional[str], List[str], int]:
    """First path segment equal to the trades or positions prefix, with its index."""
    parts = key.split("/")
    prefixes = (config.trades_prefix, config.positions_prefix)
    for i, part in enumerate(parts):
        if part in prefixes:
            return part, parts, i
    return None, parts, -1


def classify_key(key: str, config: IngestConfig) -> FileKind:
    """Keys under the positions prefix are snapshots; everything else is trades."""
    prefix, _, _ = _locate_prefix(key, config)
    if prefix == config.positions_prefix:
        return FileKind.POSITIONS
    return FileKind.TRADES


def portfolio_from_key(key: str, config: IngestConfig) -> str:
    # e.g. trades/<portfolioId>/1700000000-file.csv
    prefix, parts, i = _locate_prefix(key, config)
    if prefix is None or i + 1 >= len(parts):
        return ""
    return parts[i + 1]


def _decode(body: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(body, dict):
        return body
    try:
        decoded = json.loads(body) if body else {}
    except (TypeError, ValueError) as e:
        raise MalformedMessageError(f"Body is not JSON: {e}") from e
    if not isinstance(decoded, dict):
        raise MalformedMessageError("Body is not a JSON object")
    return decoded


def _from_s3_event(payload: Dict[str, Any], config: IngestConfig) -> Optional[RawEnvelope]:
    if "Records" not in payload:
        return None
    try:
        event = S3EventEnvelope.model_validate(payload)
    except ValidationError as e:
        raise MalformedMessageError(f"Unreadable S3 event: {e}") from e
    if not event.records or not event.records[0].s3 or not event.records[0].s3.object_ref:
        raise MalformedMessageError("S3 event without object key")
    key = unquote_plus(event.records[0].s3.object_ref.key or "")
    return RawEnvelope(portfolio_id=portfolio_from_key(key, config), key=key)


def _resolve(payload: Dict[str, Any], config: IngestConfig, shape: EnvelopeShape) -> IngestMessage:
    envelope = _from_s3_event(payload, config)
    if envelope is None:
        try:
            envelope = RawEnvelope.model_validate(payload)
        except ValidationError as e:
            raise MalformedMessageError(f"Unreadable message: {e}") from e

    if not envelope.portfolio_id or not envelope.key:
        raise MalformedMessageError("Message missing portfolioId or key")
    return IngestMessage(
        portfolio_id=envelope.portfolio_id,
        key=envelope.key,
        kind=classify_key(envelope.key, config),
        attempt=envelope.attempt,
        shape=shape,
    )


def classify_message(body: Union[str, bytes, Dict[str, Any]], config: IngestConfig) -> IngestMessage:
    """Resolve a queue body into an IngestMessage or raise MalformedMessageError."""
    payload = _decode(body)
    if "Records" in payload:
        return _resolve(payload, config, EnvelopeShape.S3_EVENT)
    wrapped = payload.get("Message")
    if isinstance(wrapped, str):
        return _resolve(_decode(wrapped), config, EnvelopeShape.WRAPPED)
    return _resolve(payload, config, EnvelopeShape.RAW)


# ---------------------------------------------------------------------------
# Retry transitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Requeue:
    attempt: int
    delay_seconds: int
    body: Dict[str, Any]


@dataclass(frozen=True)
class DeadLetter:
    attempt: int
    reason: str
    body: Dict[str, Any]


def backoff_seconds(attempt: int, cap_seconds: int) -> int:
    return int(min(cap_seconds, 2 ** attempt))


def next_attempt(
    msg: IngestMessage,
    error: BaseException,
    max_attempts: int = 5,
    cap_seconds: int = 900,
) -> Union[Requeue, DeadLetter]:
    """
    Decide what happens to a message whose handler failed.

    attempt is 0 on first delivery; after the failure it becomes attempt + 1.
    Below max_attempts the message is requeued with delay min(cap, 2**attempt),
    otherwise it goes to the dead-letter destination with the error attached.
    """
    attempt = msg.attempt + 1
    if attempt < max_attempts:
        return Requeue(
            attempt=attempt,
            delay_seconds=backoff_seconds(attempt, cap_seconds),
            body=msg.to_body(attempt=attempt),
        )
    reason = str(error) or type(error).__name__
    body = msg.to_body(attempt=attempt)
    body["error"] = reason
    return DeadLetter(attempt=attempt, reason=reason, body=body)
