"""Incremental tailing of a growing access log.

This module is the main integration point: it reads newly appended bytes,
splits them into complete lines and pushes every parsed record through the
aggregation writer, in file order.

Lifecycle::

    INITIALIZING -> (REPLAYING) -> LIVE_TAILING -> SHUTTING_DOWN

Live tailing keeps a byte watermark plus the trailing partial line in a
``TailState``. Change notifications come from a watchdog observer thread and
are marshalled onto the event loop; at most one drain runs per file and
notifications arriving meanwhile collapse into a single follow-up drain.
"""

from __future__ import annotations

import asyncio
import logging
import os
import stat
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

import aiofiles
import aiofiles.os
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .echo import format_record
from .models import LogRecord
from .parser import AccessLineParser, LineParser
from .time_window import parse_iso_dt

logger = logging.getLogger(__name__)


class TailError(Exception):
    """Fatal tailing failure; the service must exit non-zero."""


class TailStartupError(TailError):
    """The target file cannot be stat-ed or read at startup."""


class TailWatchError(TailError):
    """Watcher registration failed or the watched file went away."""


class RecordSink(Protocol):
    """Anything that can aggregate a record (see AggregationWriter)."""

    async def apply(self, record: LogRecord) -> bool:
        ...


class TailPhase(str, Enum):
    INITIALIZING = "initializing"
    REPLAYING = "replaying"
    LIVE_TAILING = "live_tailing"
    SHUTTING_DOWN = "shutting_down"


@dataclass(slots=True)
class TailState:
    """Live-tail bookkeeping for one file.

    ``size`` is the watermark of bytes already claimed by a drain and
    ``buffer`` holds the bytes after the last newline seen so far.
    """

    size: int = 0
    buffer: bytes = b""
    draining: bool = False
    pending: bool = False

    def reset(self) -> None:
        """Forget the watermark and partial line (rotation/truncation)."""
        self.size = 0
        self.buffer = b""

    def take_lines(self, chunk: bytes) -> list[bytes]:
        """Append ``chunk`` and return the complete lines it finishes."""
        lines = (self.buffer + chunk).split(b"\n")
        self.buffer = lines.pop()
        return lines


class _ChangeHandler(FileSystemEventHandler):
    """Forward watchdog events for one file onto the event loop."""

    def __init__(
        self,
        path: Path,
        loop: asyncio.AbstractEventLoop,
        *,
        on_change: Callable[[], None],
        on_fatal: Callable[[BaseException], None],
    ) -> None:
        super().__init__()
        self._path = os.path.abspath(path)
        self._loop = loop
        self._on_change = on_change
        self._on_fatal = on_fatal

    def _is_target(self, event: FileSystemEvent) -> bool:
        return not event.is_directory and os.path.abspath(os.fsdecode(event.src_path)) == self._path

    def on_modified(self, event: FileSystemEvent) -> None:
        if self._is_target(event):
            self._loop.call_soon_threadsafe(self._on_change)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if self._is_target(event):
            err = TailWatchError(f"Watched file removed: {self._path}")
            self._loop.call_soon_threadsafe(self._on_fatal, err)

    def on_moved(self, event: FileSystemEvent) -> None:
        if self._is_target(event):
            err = TailWatchError(f"Watched file moved away: {self._path}")
            self._loop.call_soon_threadsafe(self._on_fatal, err)


class FileTailer:
    """Replay and live-tail one access log into a RecordSink."""

    def __init__(
        self,
        path: str | Path,
        writer: RecordSink,
        *,
        parser: LineParser | None = None,
        echo: bool = False,
        echo_color: bool = True,
        observer_factory: Callable[[], Any] = Observer,
        watch_check_interval: float = 1.0,
        encoding: str = "utf-8",
        decode_errors: str = "replace",
    ) -> None:
        self.path = Path(path)
        self.writer = writer
        self.parser = parser or AccessLineParser()
        self.echo = echo
        self.echo_color = echo_color
        self.encoding = encoding
        self.decode_errors = decode_errors
        self.phase = TailPhase.INITIALIZING
        self.state: TailState | None = None
        self.drain_cycles = 0

        self._observer_factory = observer_factory
        self._watch_check_interval = watch_check_interval
        self._drain_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._fatal: TailError | None = None

    # ----------------------------
    # Lifecycle
    # ----------------------------

    async def run(self, *, start_time: datetime | None = None, replay_only: bool = False) -> None:
        """Run the full lifecycle until stop() or a fatal watcher error."""
        await self.initialize()

        if start_time is not None:
            await self.replay(start_time)

        if replay_only:
            logger.info("End due to tail off mode")
            self.phase = TailPhase.SHUTTING_DOWN
            return
        if self._stop_event.is_set():
            self.phase = TailPhase.SHUTTING_DOWN
            return

        await self.begin_live()
        observer = self._start_observer()
        logger.info("Tailing %s (press Ctrl+C to stop)", self.path)
        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._watch_check_interval)
                except TimeoutError:
                    if not observer.is_alive():
                        self._on_fatal(TailWatchError(f"File watcher for {self.path} stopped"))
        finally:
            self.phase = TailPhase.SHUTTING_DOWN
            observer.stop()
            await asyncio.to_thread(observer.join, 5)
            await self.wait_idle()

        if self._fatal is not None:
            raise self._fatal

    async def initialize(self) -> int:
        """Check that the file is a readable regular file; return its size."""
        self.phase = TailPhase.INITIALIZING
        try:
            st = await aiofiles.os.stat(self.path)
        except OSError as e:
            raise TailStartupError(f"Cannot stat file: {self.path}") from e
        if not stat.S_ISREG(st.st_mode) or not os.access(self.path, os.R_OK):
            raise TailStartupError(f"Not a readable file: {self.path}")
        return st.st_size

    async def begin_live(self) -> TailState:
        """Start live mode at the current end of file."""
        try:
            size = (await aiofiles.os.stat(self.path)).st_size
        except OSError as e:
            raise TailStartupError(f"Cannot stat file: {self.path}") from e
        self.state = TailState(size=size)
        self.phase = TailPhase.LIVE_TAILING
        logger.debug("Live tail of %s starts at offset %d", self.path, size)
        return self.state

    def stop(self) -> None:
        """Request shutdown; an in-flight drain is allowed to finish."""
        if not self._stop_event.is_set():
            logger.info("Stopping tail of %s", self.path)
        self._stop_event.set()

    async def wait_idle(self) -> None:
        """Wait for the in-flight drain (and its coalesced follow-up)."""
        task = self._drain_task
        if task is not None and not task.done():
            await task

    def _on_fatal(self, err: TailError) -> None:
        logger.error("Watcher error: %s", err)
        if self._fatal is None:
            self._fatal = err
        self._stop_event.set()

    def _start_observer(self) -> Any:
        handler = _ChangeHandler(
            self.path,
            asyncio.get_running_loop(),
            on_change=self.notify,
            on_fatal=self._on_fatal,
        )
        observer = self._observer_factory()
        try:
            # watchdog watches directories; the handler filters on our file.
            observer.schedule(handler, os.path.dirname(os.path.abspath(self.path)), recursive=False)
            observer.start()
        except OSError as e:
            raise TailWatchError(f"Cannot watch {self.path}: {e}") from e
        return observer

    # ----------------------------
    # Replay
    # ----------------------------

    async def replay(self, since: datetime) -> int:
        """Aggregate every record with timestamp >= ``since``, from offset 0.

        Independent of the live watermark; returns the number of records applied.
        """
        self.phase = TailPhase.REPLAYING
        logger.info("Replaying %s from %s ...", self.path, since.isoformat())

        applied = 0
        async with aiofiles.open(self.path, encoding=self.encoding, errors=self.decode_errors) as f:
            async for line in f:
                if self._stop_event.is_set():
                    logger.info("Replay interrupted after %d records", applied)
                    break
                if not line.strip():
                    continue
                record = self.parser.parse(line)
                if record is None:
                    logger.debug("[unparsed] %s", line.rstrip("\r\n"))
                    continue
                if not _at_or_after(record, since):
                    continue
                await self._handle_record(record, line)
                applied += 1

        logger.info("Replay complete (%d)", applied)
        return applied

    # ----------------------------
    # Live tailing
    # ----------------------------

    def notify(self) -> None:
        """Handle one change notification (must run on the event loop)."""
        state = self.state
        if state is None or self.phase is not TailPhase.LIVE_TAILING:
            return
        if state.draining:
            state.pending = True
            return
        state.draining = True
        self._drain_task = asyncio.get_running_loop().create_task(self._drain_loop(state))

    async def _drain_loop(self, state: TailState) -> None:
        try:
            while True:
                try:
                    await self.drain()
                except OSError as e:
                    logger.error("Watcher handler error: %s", e)
                except Exception:
                    logger.exception("Drain of %s failed", self.path)
                if not state.pending or self.phase is TailPhase.SHUTTING_DOWN:
                    break
                state.pending = False
        finally:
            state.draining = False
            state.pending = False

    async def drain(self) -> int:
        """Consume bytes appended since the watermark; return lines handled."""
        state = self.state
        if state is None:
            raise RuntimeError("drain() called before begin_live()")
        self.drain_cycles += 1

        size = (await aiofiles.os.stat(self.path)).st_size
        if size < state.size:
            logger.warning(
                "%s shrank from %d to %d bytes (rotated/truncated), restarting at 0",
                self.path,
                state.size,
                size,
            )
            state.reset()
        if size == state.size:
            return 0

        start = state.size
        state.size = size  # claim [start, size) before awaiting the read
        async with aiofiles.open(self.path, "rb") as f:
            await f.seek(start)
            chunk = await f.read(size - start)

        handled = 0
        for raw in state.take_lines(chunk):
            line = raw.decode(self.encoding, errors=self.decode_errors)
            if not line.strip():
                continue
            await self._process_line(line)
            handled += 1
        return handled

    async def _process_line(self, line: str) -> None:
        record = self.parser.parse(line)
        if record is None:
            logger.warning("[unparsed] %s", line.strip())
            return
        await self._handle_record(record, line)

    async def _handle_record(self, record: LogRecord, line: str) -> None:
        if self.echo:
            logger.info("%s", format_record(record, color=self.echo_color))
        try:
            await self.writer.apply(record)
        except Exception:
            logger.exception("Failed to process line: %s", line.strip())


def _at_or_after(record: LogRecord, since: datetime) -> bool:
    try:
        return parse_iso_dt(record.time) >= since
    except ValueError:
        return False
