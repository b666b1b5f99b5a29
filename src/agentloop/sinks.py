"""Log and status sinks plus the background emitter that feeds them.

Sinks are fire-and-forget collaborators: the loop hands entries to a
:class:`BackgroundEmitter`, which drains a bounded queue on its own task.
Sink failures are logged locally and never reach the control loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Protocol

from agentloop.types import LogEntry

logger = logging.getLogger(__name__)


class LogSink(Protocol):
    async def append(self, entry: LogEntry) -> None: ...


class StatusSink(Protocol):
    async def notify(self, text: str) -> None: ...


# =============================================================================
# Implementations
# =============================================================================


class JsonlLogSink:
    """Append-only JSONL log file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def append(self, entry: LogEntry) -> None:
        await asyncio.to_thread(self._write, entry.to_dict())

    def _write(self, item: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(item) + "\n")

    def read(self, tail: int | None = None) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        rows: list[dict[str, Any]] = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return rows[-tail:] if tail else rows


class MemoryLogSink:
    """Bounded in-memory log, most recent entries kept."""

    def __init__(self, limit: int = 500) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=limit)

    async def append(self, entry: LogEntry) -> None:
        self._entries.append(entry)

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)


class LoggingStatusSink:
    """Narrates status updates through the standard logger."""

    def __init__(self, name: str = "agentloop.status") -> None:
        self._logger = logging.getLogger(name)

    async def notify(self, text: str) -> None:
        self._logger.info("%s", text)


class MemoryStatusSink:
    def __init__(self) -> None:
        self.updates: list[str] = []

    async def notify(self, text: str) -> None:
        self.updates.append(text)


# =============================================================================
# Background emitter
# =============================================================================


class BackgroundEmitter:
    """Bounded queue of side-effect callables drained by one asyncio task.

    ``emit`` never blocks and never raises: when the queue is full the item
    is dropped with a warning. The drain task is started lazily on the
    running loop.
    """

    def __init__(self, max_size: int = 256) -> None:
        self._queue: asyncio.Queue[Callable[[], Awaitable[Any]]] = asyncio.Queue(maxsize=max_size)
        self._task: asyncio.Task[None] | None = None
        self.dropped = 0
        self.failed = 0

    def emit(self, fn: Callable[[], Awaitable[Any]]) -> None:
        try:
            self._ensure_started()
        except RuntimeError:
            # No running event loop (synchronous caller); nothing can drain it.
            self.dropped += 1
            logger.debug("No running event loop; dropping side effect")
            return
        try:
            self._queue.put_nowait(fn)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Background queue full; dropping side effect (%d dropped)", self.dropped)

    def log(self, sink: LogSink | None, entry: LogEntry) -> None:
        if sink is not None:
            self.emit(lambda: sink.append(entry))

    def notify(self, sink: StatusSink | None, text: str) -> None:
        if sink is not None:
            self.emit(lambda: sink.notify(text))

    async def flush(self) -> None:
        """Wait until every queued side effect has run."""
        if self._task is None:
            return
        await self._queue.join()

    async def close(self) -> None:
        if self._task is None:
            return
        await self.flush()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def _ensure_started(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(
                self._drain(), name="agentloop-background-emitter",
            )

    async def _drain(self) -> None:
        while True:
            fn = await self._queue.get()
            try:
                await fn()
            except Exception as exc:
                self.failed += 1
                logger.warning("Background side effect failed: %s", exc)
            finally:
                self._queue.task_done()
