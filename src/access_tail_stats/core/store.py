"""Counter store backends and read-only queries.

Keys written (see ``aggregation.build_batch``)::

    visits:{hourly|daily|monthly}:{bucket}          Hash  host -> count (2xx)
    errors:{hourly|daily|monthly}:{bucket}          Hash  host -> count
    errors:by_status:{host}                         Hash  status -> count
    unique_ips:{host}                               Set   client addresses
    unique_ips:{hourly|daily|monthly}:{bucket}:{host}
    stats:total_requests                            Hash  host -> count
    stats:status:{host}                             Hash  status -> count
    stats:methods                                   Hash  method -> count
    stats:top_paths:{host}                          Sorted set path -> score
    stats:last_update                               String
"""

from __future__ import annotations

from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .models import AggregationBatch, MutationOp

DEFAULT_REDIS_URL = "redis://localhost:6379"


class StoreError(Exception):
    """Backend failure while applying a batch."""


class CounterStore(Protocol):
    """Store interface: apply one batch atomically (all or nothing)."""

    async def apply(self, batch: AggregationBatch) -> None:
        ...

    async def close(self) -> None:
        ...


class RedisCounterStore:
    """Apply batches as a single MULTI/EXEC transaction."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    @classmethod
    def from_url(cls, url: str = DEFAULT_REDIS_URL) -> RedisCounterStore:
        return cls(Redis.from_url(url, decode_responses=True))

    @property
    def redis(self) -> Redis:
        return self._redis

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError) as e:
            raise StoreError(f"Redis ping failed: {e}") from e

    async def apply(self, batch: AggregationBatch) -> None:
        if not batch:
            return
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for m in batch:
                    if m.op is MutationOp.HINCRBY:
                        pipe.hincrby(m.key, m.arg, m.amount)
                    elif m.op is MutationOp.SADD:
                        pipe.sadd(m.key, m.arg)
                    elif m.op is MutationOp.ZINCRBY:
                        pipe.zincrby(m.key, m.amount, m.arg)
                    elif m.op is MutationOp.SET:
                        pipe.set(m.key, m.arg)
                    else:  # pragma: no cover
                        raise StoreError(f"Unsupported mutation: {m.op}")
                await pipe.execute()
        except (RedisError, OSError) as e:
            # redis-py names the failing command in the message.
            raise StoreError(str(e)) from e

    async def close(self) -> None:
        await self._redis.aclose()


class StatsReader:
    """Read-only queries over the aggregation schema."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    # visits

    async def hourly_visits(self, hour: str) -> dict[str, str]:
        return await self._redis.hgetall(f"visits:hourly:{hour}")

    async def daily_visits(self, date: str) -> dict[str, str]:
        return await self._redis.hgetall(f"visits:daily:{date}")

    async def monthly_visits(self, month: str) -> dict[str, str]:
        return await self._redis.hgetall(f"visits:monthly:{month}")

    # errors

    async def hourly_errors(self, hour: str) -> dict[str, str]:
        return await self._redis.hgetall(f"errors:hourly:{hour}")

    async def daily_errors(self, date: str) -> dict[str, str]:
        return await self._redis.hgetall(f"errors:daily:{date}")

    async def monthly_errors(self, month: str) -> dict[str, str]:
        return await self._redis.hgetall(f"errors:monthly:{month}")

    async def errors_by_status(self, host: str) -> dict[str, str]:
        return await self._redis.hgetall(f"errors:by_status:{host}")

    # stats

    async def total_requests(self) -> dict[str, str]:
        return await self._redis.hgetall("stats:total_requests")

    async def status_by_host(self, host: str) -> dict[str, str]:
        return await self._redis.hgetall(f"stats:status:{host}")

    async def methods(self) -> dict[str, str]:
        return await self._redis.hgetall("stats:methods")

    async def last_update(self) -> str | None:
        return await self._redis.get("stats:last_update")

    async def top_paths(self, host: str, limit: int = 100) -> list[tuple[str, float]]:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        return await self._redis.zrevrange(
            f"stats:top_paths:{host}", 0, limit - 1, withscores=True
        )

    # unique_ips

    async def unique_ips(self, host: str) -> int:
        return await self._redis.scard(f"unique_ips:{host}")

    async def hourly_unique_ips(self, hour: str, host: str) -> int:
        return await self._redis.scard(f"unique_ips:hourly:{hour}:{host}")

    async def daily_unique_ips(self, date: str, host: str) -> int:
        return await self._redis.scard(f"unique_ips:daily:{date}:{host}")

    async def monthly_unique_ips(self, month: str, host: str) -> int:
        return await self._redis.scard(f"unique_ips:monthly:{month}:{host}")
