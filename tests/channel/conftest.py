from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Iterator

import pytest
from redis import Redis

from tablesink.config import QueueConfig

DEFAULT_TEST_REDIS_URL = "redis://127.0.0.1:6379/0"


@pytest.fixture(scope="session")
def redis_url() -> str:
    """
    Redis connection URL for channel tests.

    Set TABLESINK_TEST_REDIS_URL explicitly; docker-compose defaults are used otherwise.
    """
    return os.environ.get("TABLESINK_TEST_REDIS_URL", DEFAULT_TEST_REDIS_URL)


@pytest.fixture(scope="session")
def redis_client(redis_url: str) -> Iterator[Redis]:
    """
    Session-scoped Redis client.

    Tests using it are skipped when Redis is unreachable.
    """
    client = Redis.from_url(redis_url, decode_responses=False, socket_connect_timeout=1)
    try:
        client.ping()
    except Exception as exc:  # pragma: no cover
        client.close()
        pytest.skip(f"Redis test server is not reachable at {redis_url!r}: {exc}")

    yield client

    client.close()


@pytest.fixture
def queue_config_factory(
    redis_client: Redis, request: pytest.FixtureRequest
) -> Iterator[Callable[[], QueueConfig]]:
    """
    Factory fixture creating per-test QueueConfig instances with unique stream keys.

    Streams created through it are deleted after the test.
    """
    created: list[str] = []

    def _create() -> QueueConfig:
        test_id = uuid.uuid4().hex[:10]
        stream_key = f"test_stream_{request.node.name[:30]}_{test_id}"
        created.append(stream_key)
        return QueueConfig(
            stream_key=stream_key,
            consumer_group=f"test_group_{test_id}",
            consumer_name=f"test_consumer_{test_id}",
        )

    yield _create

    for stream_key in created:
        redis_client.delete(stream_key)


@pytest.fixture
def queue_config(queue_config_factory: Callable[[], QueueConfig]) -> QueueConfig:
    return queue_config_factory()
