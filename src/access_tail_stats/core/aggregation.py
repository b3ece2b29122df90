"""Record-to-counters mapping.

Turns one parsed record into the batch of counter mutations it implies and
submits that batch to the store as a single transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .hosts import HostClassifier, url_path
from .models import AggregationBatch, LogRecord, RequestClass
from .store import CounterStore, StoreError
from .time_window import day_key, hour_key, month_key

logger = logging.getLogger(__name__)

# Field used in status hashes when the status could not be parsed.
INVALID_STATUS = "NaN"


def classify_status(status: int | None) -> RequestClass:
    """Classify an HTTP status.

    2xx -> SUCCESS | VALID_CLIENT, 1xx/3xx -> VALID_CLIENT,
    missing, <100 or >=400 -> ERROR.
    """
    if status is None or status < 100 or status >= 400:
        return RequestClass.ERROR
    if 200 <= status <= 299:
        return RequestClass.SUCCESS | RequestClass.VALID_CLIENT
    return RequestClass.VALID_CLIENT


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _iso_millis(dt: datetime) -> str:
    """Format like JavaScript's Date.toISOString (ms precision, Z suffix)."""
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(slots=True)
class AggregationWriter:
    """Build and apply per-record counter batches."""

    store: CounterStore
    hosts: HostClassifier = field(default_factory=HostClassifier)
    clock: Callable[[], datetime] = _utc_now

    def build_batch(self, record: LogRecord) -> AggregationBatch:
        """Return every mutation implied by ``record`` (no I/O)."""
        host = self.hosts.classify(record.url)
        hour = hour_key(record.time)
        day = day_key(record.time)
        month = month_key(record.time)
        cls = classify_status(record.status)
        status = INVALID_STATUS if record.status is None else str(record.status)

        batch = AggregationBatch()

        if RequestClass.SUCCESS in cls:
            batch.hincrby(f"visits:hourly:{hour}", host)
            batch.hincrby(f"visits:daily:{day}", host)
            batch.hincrby(f"visits:monthly:{month}", host)

        # exact unique IPs, valid clients only
        if RequestClass.VALID_CLIENT in cls:
            batch.sadd(f"unique_ips:{host}", record.remote_addr)
            batch.sadd(f"unique_ips:hourly:{hour}:{host}", record.remote_addr)
            batch.sadd(f"unique_ips:daily:{day}:{host}", record.remote_addr)
            batch.sadd(f"unique_ips:monthly:{month}:{host}", record.remote_addr)

        if RequestClass.ERROR in cls:
            batch.hincrby(f"errors:hourly:{hour}", host)
            batch.hincrby(f"errors:daily:{day}", host)
            batch.hincrby(f"errors:monthly:{month}", host)
            batch.hincrby(f"errors:by_status:{host}", status)

        batch.hincrby("stats:total_requests", host)
        batch.hincrby(f"stats:status:{host}", status)
        batch.hincrby("stats:methods", record.method)

        if RequestClass.VALID_CLIENT in cls:
            path = url_path(record.url)
            if path is not None:
                batch.zincrby(f"stats:top_paths:{host}", path)
            else:
                logger.debug("Skipping top path for malformed URL %r", record.url)

        batch.set("stats:last_update", _iso_millis(self.clock()))
        return batch

    async def apply(self, record: LogRecord) -> bool:
        """Apply the record's batch; False when the store rejected it."""
        batch = self.build_batch(record)
        try:
            await self.store.apply(batch)
        except StoreError as e:
            logger.error(
                "Store write failed, dropping %d mutations for %s %s (%s): %s",
                len(batch),
                record.method,
                record.url,
                record.time,
                e,
            )
            return False
        return True
