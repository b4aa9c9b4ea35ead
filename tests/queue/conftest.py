from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Iterator

import pytest
from redis import Redis
from redis.exceptions import RedisError

from bulkflow.config import QueueConfig

DEFAULT_TEST_REDIS_URL = "redis://127.0.0.1:6379/0"


@pytest.fixture(scope="session")
def redis_url() -> str:
    """
    Redis connection URL for queue tests.

    Set BULKFLOW_TEST_REDIS_URL to point at another server.
    """
    return os.environ.get("BULKFLOW_TEST_REDIS_URL", DEFAULT_TEST_REDIS_URL)


@pytest.fixture(scope="session")
def redis_client(redis_url: str) -> Iterator[Redis]:
    """
    Session-scoped Redis client for tests.

    Queue tests are skipped when no Redis server is reachable.
    """
    client = Redis.from_url(redis_url, decode_responses=False)
    try:
        client.ping()
    except RedisError as exc:
        client.close()
        pytest.skip(f"Redis test server is not reachable at {redis_url!r}: {exc}")

    yield client

    client.close()


@pytest.fixture
def queue_key_factory(redis_client: Redis, request: pytest.FixtureRequest) -> Iterator[Callable[[], str]]:
    """
    Factory fixture creating per-test unique queue keys.

    Usage:
        queue_key = queue_key_factory()
    """
    created: list[str] = []

    def _create() -> str:
        queue_key = f"test_jobs_{request.node.name[:30]}_{uuid.uuid4().hex[:10]}"
        created.append(queue_key)
        return queue_key

    yield _create

    for queue_key in created:
        redis_client.delete(f"{queue_key}:pending", f"{queue_key}:executing", f"{queue_key}:payloads")


@pytest.fixture
def queue_config_factory(
    queue_key_factory: Callable[[], str],
    request: pytest.FixtureRequest,
) -> Callable[..., QueueConfig]:
    """
    Factory fixture creating per-test QueueConfig instances.

    Usage:
        config = queue_config_factory(max_read_count=5)
    """
    def _create(**overrides) -> QueueConfig:
        values = {
            "queue_key": queue_key_factory(),
            "consumer_name": f"test_consumer_{request.node.name[:20]}_{uuid.uuid4().hex[:8]}",
            "block_ms": 100,
            "max_read_count": 10,
            "claim_idle_ms": 60_000,
        }
        values.update(overrides)
        return QueueConfig(**values)

    return _create


@pytest.fixture
def queue_config(queue_config_factory: Callable[..., QueueConfig]) -> QueueConfig:
    return queue_config_factory()
