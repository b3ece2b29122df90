"""Tail service entrypoint.

This module wires together:
- Configuration from the environment (TAIL_*, REDIS_URL, LOG_LEVEL)
- The Redis counter store and the aggregation writer
- The file tailer (optional replay, then live tail)

Run locally:
    python -m access_tail_stats
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from access_tail_stats.core.aggregation import AggregationWriter
from access_tail_stats.core.config import ConfigError, TailConfig, load_config
from access_tail_stats.core.hosts import HostClassifier
from access_tail_stats.core.store import RedisCounterStore, StoreError
from access_tail_stats.core.tailer import FileTailer, TailError

LOGGER = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure a reasonable default logging setup."""
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _log_config(config: TailConfig) -> None:
    LOGGER.info("Log file : %s", config.log_file)
    LOGGER.info("Print    : %s", config.print_entries)
    if config.start_time is not None:
        LOGGER.info("Start time: %s", config.start_time.isoformat())
    if config.tail_off:
        LOGGER.info("Tail off")
    LOGGER.info("Redis    : %s", config.redis_url)
    allowed = ", ".join(sorted(config.allowed_hosts)) if config.allowed_hosts else "all"
    LOGGER.info("Allowed  : %s", allowed)


def build_tailer(config: TailConfig, store: RedisCounterStore) -> FileTailer:
    hosts = HostClassifier(
        allowed_hosts=config.allowed_hosts,
        max_labels=config.max_host_labels,
    )
    writer = AggregationWriter(store=store, hosts=hosts)
    return FileTailer(
        config.log_file,
        writer,
        echo=config.print_entries,
        echo_color=sys.stderr.isatty(),
    )


async def serve(config: TailConfig, store: RedisCounterStore | None = None) -> int:
    """Run the tailer until it stops; return the process exit code."""
    store = store or RedisCounterStore.from_url(config.redis_url)
    tailer = build_tailer(config, store)

    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, tailer.stop)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):  # pragma: no cover
            pass

    try:
        try:
            await store.ping()
            LOGGER.info("Redis connected")
        except StoreError as e:
            # Per-record writes keep retrying the connection; failures are logged there.
            LOGGER.warning("%s", e)

        await tailer.run(start_time=config.start_time, replay_only=config.tail_off)
        return 0
    except TailError as e:
        LOGGER.error("%s", e)
        return 1
    finally:
        LOGGER.info("Shutting down...")
        for sig in installed:
            loop.remove_signal_handler(sig)
        await store.close()


def main() -> None:
    """Start the tail service."""
    _configure_logging()
    try:
        config = load_config()
    except ConfigError as e:
        LOGGER.error("%s", e)
        raise SystemExit(1)

    _log_config(config)
    raise SystemExit(asyncio.run(serve(config)))


if __name__ == "__main__":
    main()
