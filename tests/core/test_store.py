from __future__ import annotations

import re
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from access_tail_stats.core.models import AggregationBatch
from access_tail_stats.core.store import RedisCounterStore, StatsReader, StoreError


class RecordingPipeline:
    def __init__(self, fail: Exception | None = None) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.executions = 0
        self.exited = False
        self._fail = fail

    async def __aenter__(self) -> RecordingPipeline:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.exited = True

    def hincrby(self, key: str, field: str, amount: int = 1) -> RecordingPipeline:
        self.calls.append(("hincrby", key, field, amount))
        return self

    def sadd(self, key: str, *members: str) -> RecordingPipeline:
        self.calls.append(("sadd", key, *members))
        return self

    def zincrby(self, key: str, amount: float, member: str) -> RecordingPipeline:
        self.calls.append(("zincrby", key, amount, member))
        return self

    def set(self, key: str, value: str) -> RecordingPipeline:
        self.calls.append(("set", key, value))
        return self

    async def execute(self) -> list[Any]:
        self.executions += 1
        if self._fail is not None:
            raise self._fail
        return [1] * len(self.calls)


class FakeRedis:
    def __init__(self, fail: Exception | None = None) -> None:
        self.pipelines: list[RecordingPipeline] = []
        self.transactions: list[bool] = []
        self.closed = False
        self._fail = fail

    def pipeline(self, transaction: bool = True) -> RecordingPipeline:
        p = RecordingPipeline(self._fail)
        self.pipelines.append(p)
        self.transactions.append(transaction)
        return p

    async def ping(self) -> bool:
        if self._fail is not None:
            raise self._fail
        return True

    async def aclose(self) -> None:
        self.closed = True


def _sample_batch() -> AggregationBatch:
    batch = AggregationBatch()
    batch.hincrby("visits:hourly:2024-01-01T10", "example.com")
    batch.sadd("unique_ips:example.com", "10.0.0.1")
    batch.zincrby("stats:top_paths:example.com", "/x")
    batch.set("stats:last_update", "2024-06-01T12:00:00.000Z")
    return batch


@pytest.mark.asyncio
async def test_apply_runs_one_transaction() -> None:
    redis = FakeRedis()
    store = RedisCounterStore(redis)

    await store.apply(_sample_batch())

    assert redis.transactions == [True]
    (pipe,) = redis.pipelines
    assert pipe.calls == [
        ("hincrby", "visits:hourly:2024-01-01T10", "example.com", 1),
        ("sadd", "unique_ips:example.com", "10.0.0.1"),
        ("zincrby", "stats:top_paths:example.com", 1, "/x"),
        ("set", "stats:last_update", "2024-06-01T12:00:00.000Z"),
    ]
    assert pipe.executions == 1
    assert pipe.exited


@pytest.mark.asyncio
async def test_apply_empty_batch_is_noop() -> None:
    redis = FakeRedis()
    await RedisCounterStore(redis).apply(AggregationBatch())
    assert redis.pipelines == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused."),
        ResponseError("Command # 1 (HINCRBY stats:methods GET 1) of pipeline caused error: WRONGTYPE"),
        OSError("broken pipe"),
    ],
)
async def test_apply_wraps_backend_errors(error: Exception) -> None:
    store = RedisCounterStore(FakeRedis(fail=error))
    with pytest.raises(StoreError, match=re.escape(str(error))):
        await store.apply(_sample_batch())


@pytest.mark.asyncio
async def test_ping_and_close() -> None:
    redis = FakeRedis()
    store = RedisCounterStore(redis)
    assert await store.ping() is True
    await store.close()
    assert redis.closed

    with pytest.raises(StoreError, match="ping failed"):
        await RedisCounterStore(FakeRedis(fail=RedisConnectionError("down"))).ping()


class QueryRedis:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []

    async def hgetall(self, key: str) -> dict[str, str]:
        self.calls.append(("hgetall", key))
        return {"example.com": "3"}

    async def scard(self, key: str) -> int:
        self.calls.append(("scard", key))
        return 2

    async def get(self, key: str) -> str | None:
        self.calls.append(("get", key))
        return "2024-06-01T12:00:00.000Z"

    async def zrevrange(self, key: str, start: int, end: int, withscores: bool = False):
        self.calls.append(("zrevrange", key, start, end, withscores))
        return [("/x", 5.0), ("/y", 1.0)]


@pytest.mark.asyncio
async def test_stats_reader_keys() -> None:
    redis = QueryRedis()
    reader = StatsReader(redis)

    assert await reader.hourly_visits("2024-01-01T10") == {"example.com": "3"}
    await reader.daily_errors("2024-01-01")
    await reader.monthly_visits("2024-01")
    await reader.errors_by_status("example.com")
    await reader.status_by_host("example.com")
    await reader.total_requests()
    await reader.methods()
    assert await reader.last_update() == "2024-06-01T12:00:00.000Z"
    assert await reader.unique_ips("example.com") == 2
    await reader.hourly_unique_ips("2024-01-01T10", "example.com")
    assert await reader.top_paths("example.com", limit=2) == [("/x", 5.0), ("/y", 1.0)]

    assert redis.calls == [
        ("hgetall", "visits:hourly:2024-01-01T10"),
        ("hgetall", "errors:daily:2024-01-01"),
        ("hgetall", "visits:monthly:2024-01"),
        ("hgetall", "errors:by_status:example.com"),
        ("hgetall", "stats:status:example.com"),
        ("hgetall", "stats:total_requests"),
        ("hgetall", "stats:methods"),
        ("get", "stats:last_update"),
        ("scard", "unique_ips:example.com"),
        ("scard", "unique_ips:hourly:2024-01-01T10:example.com"),
        ("zrevrange", "stats:top_paths:example.com", 0, 1, True),
    ]


@pytest.mark.asyncio
async def test_top_paths_rejects_bad_limit() -> None:
    with pytest.raises(ValueError):
        await StatsReader(QueryRedis()).top_paths("example.com", limit=0)
