from __future__ import annotations

import json
import logging
import time
from enum import Enum
from typing import Any, Optional

from redis import Redis
from redis.exceptions import RedisError, ResponseError

from ..config import QueueConfig
from ..errors import ChannelError, QueueError
from ..metrics.registry import (
    QUEUE_MESSAGES_ACK_TOTAL,
    QUEUE_MESSAGES_PUBLISHED_TOTAL,
    QUEUE_MESSAGES_READ_TOTAL,
    QUEUE_READ_LATENCY_SECONDS,
)
from .models import Event

logger = logging.getLogger(__name__)

BODY_FIELD = "body"
HEADERS_FIELD = "headers"

# XREADGROUP ids: "0" replays this consumer's pending entries, ">" reads new ones.
_PENDING_START = "0"
_NEW_ENTRIES = ">"


def _field(fields: dict[Any, Any], name: str) -> Any:
    if name in fields:
        return fields[name]
    return fields.get(name.encode())


def _to_str(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def _decode_entry(fields: dict[Any, Any]) -> Event:
    body = _field(fields, BODY_FIELD)
    if body is None:
        body = b""
    elif isinstance(body, str):
        body = body.encode("utf-8")

    raw_headers = _field(fields, HEADERS_FIELD)
    headers: dict[str, str] = {}
    if raw_headers:
        try:
            decoded = json.loads(_to_str(raw_headers))
        except json.JSONDecodeError as exc:
            raise QueueError(f"Stream entry has malformed headers: {exc}") from exc
        if not isinstance(decoded, dict):
            raise QueueError("Stream entry headers must be a JSON object")
        headers = {str(k): str(v) for k, v in decoded.items()}

    return Event(body=body, headers=headers)


class _TxState(str, Enum):
    NEW = "new"
    OPEN = "open"
    COMPLETED = "completed"
    CLOSED = "closed"


class RedisStreamsTransaction:
    """
    Transaction over a Redis Stream consumer group.

    take() first replays entries already delivered to this consumer but never
    acknowledged (e.g. after a rolled back transaction), then reads new entries.
    commit() acknowledges every taken entry; rollback() leaves them pending so the
    next transaction sees them again.
    """

    def __init__(self, channel: "RedisStreamsChannel") -> None:
        self._channel = channel
        self._taken_ids: list[Any] = []
        self._pending_cursor: Optional[Any] = _PENDING_START
        self._state = _TxState.NEW

    def _require(self, state: _TxState, action: str) -> None:
        if self._state != state:
            raise ChannelError(f"{action}() called when transaction is {self._state.value}")

    def begin(self) -> None:
        self._require(_TxState.NEW, "begin")
        self._state = _TxState.OPEN

    def take(self) -> Optional[Event]:
        self._require(_TxState.OPEN, "take")

        while self._pending_cursor is not None:
            entry = self._channel._read_one(self._pending_cursor)
            if entry is None:
                self._pending_cursor = None
                break
            entry_id, fields = entry
            self._pending_cursor = entry_id
            if not fields:
                # entry was trimmed from the stream while pending; drop it
                self._channel._ack([entry_id])
                continue
            self._taken_ids.append(entry_id)
            return _decode_entry(fields)

        entry = self._channel._read_one(_NEW_ENTRIES)
        if entry is None:
            return None
        entry_id, fields = entry
        self._taken_ids.append(entry_id)
        return _decode_entry(fields or {})

    def commit(self) -> None:
        self._require(_TxState.OPEN, "commit")
        if self._taken_ids:
            self._channel._ack(self._taken_ids)
        self._taken_ids = []
        self._state = _TxState.COMPLETED

    def rollback(self) -> None:
        self._require(_TxState.OPEN, "rollback")
        if self._taken_ids:
            logger.info(
                "Rolled back %d entries on stream %s; they stay pending for redelivery",
                len(self._taken_ids),
                self._channel.config.stream_key,
            )
        self._taken_ids = []
        self._state = _TxState.COMPLETED

    def close(self) -> None:
        if self._state == _TxState.OPEN:
            raise ChannelError(
                "close() called when transaction is open - you must either commit or rollback first"
            )
        self._state = _TxState.CLOSED


class RedisStreamsChannel:
    """
    Channel backed by a Redis Stream and consumer group.

    Reads never block: an empty stream makes take() return None immediately.
    Delivery is at-least-once; an entry is acknowledged only when the transaction
    that took it commits.

    Usage:
        channel = RedisStreamsChannel(Redis.from_url(url), QueueConfig(
            stream_key="events", consumer_group="sinks", consumer_name="sink-1",
        ))
        channel.publish(Event(body=b'{"id": 1}', headers={"host": "a"}))
    """

    def __init__(self, redis: Redis, config: QueueConfig) -> None:
        """
        Raises:
            QueueError: If consumer group creation fails (except BUSYGROUP)
        """
        self.redis = redis
        self.config = config
        self._ensure_group()

    def _ensure_group(self) -> None:
        try:
            self.redis.xgroup_create(
                self.config.stream_key,
                self.config.consumer_group,
                id="0",
                mkstream=True,
            )
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise QueueError(f"Failed to create consumer group: {exc}") from exc
        except RedisError as exc:
            raise QueueError(f"Failed to create consumer group: {exc}") from exc

    def get_transaction(self) -> RedisStreamsTransaction:
        return RedisStreamsTransaction(self)

    def publish(self, event: Event) -> str:
        """
        Append an event to the stream and return its entry id.

        Raises:
            QueueError: If Redis operation fails
        """
        fields = {
            BODY_FIELD: event.body,
            HEADERS_FIELD: json.dumps(dict(event.headers)),
        }
        try:
            entry_id = self.redis.xadd(self.config.stream_key, fields)
        except RedisError as exc:
            raise QueueError(f"Failed to publish to stream: {exc}") from exc
        QUEUE_MESSAGES_PUBLISHED_TOTAL.labels(stream=self.config.stream_key).inc()
        return _to_str(entry_id)

    def _read_one(self, start_id: Any) -> Optional[tuple[Any, dict[Any, Any]]]:
        start_time = time.monotonic()
        try:
            response = self.redis.xreadgroup(
                self.config.consumer_group,
                self.config.consumer_name,
                {self.config.stream_key: start_id},
                count=1,
            )
        except RedisError as exc:
            raise QueueError(f"Failed to read from stream: {exc}") from exc

        if not response:
            return None
        _stream, entries = response[0]
        if not entries:
            return None

        QUEUE_MESSAGES_READ_TOTAL.labels(stream=self.config.stream_key).inc()
        QUEUE_READ_LATENCY_SECONDS.labels(stream=self.config.stream_key).observe(
            time.monotonic() - start_time
        )
        entry_id, fields = entries[0]
        return entry_id, fields

    def _ack(self, entry_ids: list[Any]) -> None:
        try:
            self.redis.xack(self.config.stream_key, self.config.consumer_group, *entry_ids)
        except RedisError as exc:
            raise QueueError(f"Failed to acknowledge entries: {exc}") from exc
        QUEUE_MESSAGES_ACK_TOTAL.labels(stream=self.config.stream_key).inc(len(entry_ids))
