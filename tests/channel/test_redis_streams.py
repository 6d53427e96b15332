from __future__ import annotations

import time

import pytest
from redis import Redis

from tablesink.channel.models import Event
from tablesink.channel.redis_streams import RedisStreamsChannel
from tablesink.config import QueueConfig
from tablesink.errors import ChannelError, QueueError
from tablesink.metrics.registry import QUEUE_MESSAGES_ACK_TOTAL, QUEUE_MESSAGES_READ_TOTAL
from tablesink.sink import BatchSink, Status


def _pending_count(redis_client: Redis, config: QueueConfig) -> int:
    return redis_client.xpending(config.stream_key, config.consumer_group)["pending"]


class TestTake:
    """Tests for taking entries inside a transaction."""

    def test_round_trips_body_and_headers(self, redis_client: Redis, queue_config: QueueConfig) -> None:
        channel = RedisStreamsChannel(redis_client, queue_config)
        channel.publish(Event(body=b'{"id": 1}', headers={"host": "a", "uid": "x1"}))

        txn = channel.get_transaction()
        txn.begin()
        event = txn.take()
        txn.commit()
        txn.close()

        assert event == Event(body=b'{"id": 1}', headers={"host": "a", "uid": "x1"})

    def test_empty_stream_does_not_block(self, redis_client: Redis, queue_config: QueueConfig) -> None:
        channel = RedisStreamsChannel(redis_client, queue_config)

        txn = channel.get_transaction()
        txn.begin()
        start = time.monotonic()
        assert txn.take() is None
        assert time.monotonic() - start < 0.5
        txn.commit()
        txn.close()

    def test_commit_acknowledges(self, redis_client: Redis, queue_config: QueueConfig) -> None:
        channel = RedisStreamsChannel(redis_client, queue_config)
        for i in range(3):
            channel.publish(Event(body=str(i).encode()))
        initial_acks = QUEUE_MESSAGES_ACK_TOTAL.labels(stream=queue_config.stream_key)._value.get()

        txn = channel.get_transaction()
        txn.begin()
        assert [txn.take().body for _ in range(3)] == [b"0", b"1", b"2"]
        assert _pending_count(redis_client, queue_config) == 3
        txn.commit()
        txn.close()

        assert _pending_count(redis_client, queue_config) == 0
        assert QUEUE_MESSAGES_ACK_TOTAL.labels(stream=queue_config.stream_key)._value.get() == initial_acks + 3

    def test_rollback_redelivers_in_next_transaction(
        self, redis_client: Redis, queue_config: QueueConfig
    ) -> None:
        channel = RedisStreamsChannel(redis_client, queue_config)
        for i in range(3):
            channel.publish(Event(body=str(i).encode()))

        txn = channel.get_transaction()
        txn.begin()
        txn.take()
        txn.take()
        txn.rollback()
        txn.close()

        txn = channel.get_transaction()
        txn.begin()
        bodies = [txn.take().body for _ in range(3)]
        assert txn.take() is None
        txn.commit()
        txn.close()

        assert bodies == [b"0", b"1", b"2"]
        assert _pending_count(redis_client, queue_config) == 0

    def test_read_metric_counts_entries(self, redis_client: Redis, queue_config: QueueConfig) -> None:
        channel = RedisStreamsChannel(redis_client, queue_config)
        channel.publish(Event(body=b"x"))
        initial = QUEUE_MESSAGES_READ_TOTAL.labels(stream=queue_config.stream_key)._value.get()

        txn = channel.get_transaction()
        txn.begin()
        txn.take()
        txn.take()
        txn.commit()
        txn.close()

        assert QUEUE_MESSAGES_READ_TOTAL.labels(stream=queue_config.stream_key)._value.get() == initial + 1

    def test_close_requires_resolution(self, redis_client: Redis, queue_config: QueueConfig) -> None:
        txn = RedisStreamsChannel(redis_client, queue_config).get_transaction()
        txn.begin()

        with pytest.raises(ChannelError):
            txn.close()

    def test_existing_group_is_reused(self, redis_client: Redis, queue_config: QueueConfig) -> None:
        RedisStreamsChannel(redis_client, queue_config)

        # second construction hits BUSYGROUP, which is not an error
        RedisStreamsChannel(redis_client, queue_config)

    def test_unreachable_redis_raises_queue_error(self, queue_config: QueueConfig) -> None:
        client = Redis(host="invalid_host", port=9999, socket_connect_timeout=0.1)

        with pytest.raises(QueueError):
            RedisStreamsChannel(client, queue_config)

        client.close()


def test_sink_drains_redis_stream(
    redis_client: Redis, queue_config: QueueConfig, make_config, events_table: str, fetch_rows
) -> None:
    channel = RedisStreamsChannel(redis_client, queue_config)
    for i in range(3):
        channel.publish(Event(body=f'{{"id": {i}, "name": "n{i}"}}'.encode(), headers={"uid": f"u{i}"}))
    sink = BatchSink(make_config(batch_size=2), channel)
    sink.start()
    try:
        assert sink.process() == Status.READY
        assert sink.process() == Status.READY
        assert sink.process() == Status.BACKOFF
    finally:
        sink.stop()

    assert fetch_rows("events") == [
        {"id": 0, "name": "n0", "uid": "u0"},
        {"id": 1, "name": "n1", "uid": "u1"},
        {"id": 2, "name": "n2", "uid": "u2"},
    ]
    assert _pending_count(redis_client, queue_config) == 0
