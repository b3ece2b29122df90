from __future__ import annotations

import copy
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from access_tail_stats.core.models import AggregationBatch, MutationOp
from access_tail_stats.core.store import StoreError

EXAMPLE_LINE = (
    '10.0.0.1 - 10.0.0.1 [2024-01-01T10:00:00Z] "GET https://example.com/x HTTP/1.1" '
    '200 512 "-" "curl/8" "-"'
)


class MemoryCounterStore:
    """In-memory CounterStore with all-or-nothing batches.

    ``fail_at`` makes the next batches raise StoreError when they reach that
    mutation index, after the earlier mutations were staged.
    """

    def __init__(self, fail_at: int | None = None) -> None:
        self.hashes: dict[str, dict[str, int]] = {}
        self.sets: dict[str, set[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.strings: dict[str, str] = {}
        self.fail_at = fail_at
        self.batches = 0
        self.closed = False

    async def ping(self) -> bool:
        return True

    async def apply(self, batch: AggregationBatch) -> None:
        hashes, sets, zsets, strings = copy.deepcopy(
            (self.hashes, self.sets, self.zsets, self.strings)
        )
        for i, m in enumerate(batch):
            if self.fail_at is not None and i == self.fail_at:
                raise StoreError(f"Command # {i + 1} ({m.op.value.upper()} {m.key}) failed")
            if m.op is MutationOp.HINCRBY:
                h = hashes.setdefault(m.key, {})
                h[m.arg] = h.get(m.arg, 0) + m.amount
            elif m.op is MutationOp.SADD:
                sets.setdefault(m.key, set()).add(m.arg)
            elif m.op is MutationOp.ZINCRBY:
                z = zsets.setdefault(m.key, {})
                z[m.arg] = z.get(m.arg, 0.0) + m.amount
            elif m.op is MutationOp.SET:
                strings[m.key] = m.arg
        self.hashes, self.sets, self.zsets, self.strings = hashes, sets, zsets, strings
        self.batches += 1

    async def close(self) -> None:
        self.closed = True

    def keys(self) -> set[str]:
        return set(self.hashes) | set(self.sets) | set(self.zsets) | set(self.strings)


@pytest.fixture
def make_store() -> Callable[..., MemoryCounterStore]:
    return MemoryCounterStore


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def example_line() -> str:
    return EXAMPLE_LINE


@pytest.fixture
def make_line() -> Callable[..., str]:
    def _make(
        *,
        addr: str = "10.0.0.1",
        real: str | None = None,
        ts: str = "2024-01-01T10:00:00Z",
        method: str = "GET",
        url: str = "https://example.com/x",
        status: int | str = 200,
        size: int = 512,
        referer: str = "-",
        ua: str = "curl/8",
        xff: str = "-",
    ) -> str:
        return (
            f'{addr} - {real or addr} [{ts}] "{method} {url} HTTP/1.1" '
            f'{status} {size} "{referer}" "{ua}" "{xff}"'
        )

    return _make


@pytest.fixture
def append() -> Callable[[Path, str | bytes], None]:
    def _append(path: Path, data: str | bytes) -> None:
        raw = data.encode("utf-8") if isinstance(data, str) else data
        with path.open("ab") as f:
            f.write(raw)

    return _append
