"""Pull-based task dispatcher.

Pulls assignable work from the :class:`TaskQueue`, runs each assignment as its
own asyncio task that sends a ``task_request`` over the bus, and feeds the
response back into the queue's retry bookkeeping.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from agentloop.bus import CommunicationBus
from agentloop.errors import AgentLoopError
from agentloop.registry import WorkerRegistry
from agentloop.task_queue import TaskQueue
from agentloop.types import (
    Message,
    MessageKind,
    Task,
    TaskKind,
    TaskPriority,
    TaskStatus,
    WorkerResult,
    WorkerStatus,
)

logger = logging.getLogger(__name__)

QUEUE_SENDER = "TaskQueue"


class TaskDispatcher:
    """Runs queued tasks on idle workers within the queue's in-flight cap."""

    def __init__(
        self,
        queue: TaskQueue,
        bus: CommunicationBus,
        registry: WorkerRegistry,
    ) -> None:
        self._queue = queue
        self._bus = bus
        self._registry = registry
        self._running: dict[str, asyncio.Task[None]] = {}
        self._closed = False

    @property
    def active_count(self) -> int:
        return len(self._running)

    def pump(self) -> list[Task]:
        """Start every assignment the queue will currently give out."""
        if self._closed:
            return []
        started: list[Task] = []
        for task in self._queue.next_assignable(self._queue.capacity_remaining):
            worker = task.assigned_worker
            if worker is None:
                logger.error("Task %s came back from the queue without a worker", task.id)
                continue
            self._queue.mark_in_progress(task.id, worker)
            self._registry.set_status(worker, WorkerStatus.RUNNING)
            runner = asyncio.get_running_loop().create_task(
                self._execute(task, worker), name=f"agentloop-task-{task.id}",
            )
            self._running[task.id] = runner
            runner.add_done_callback(lambda fut, tid=task.id: self._on_done(tid, fut))
            logger.info("Dispatched task %s to %s (priority=%s)", task.id, worker, task.priority)
            started.append(task)
        return started

    def submit(
        self,
        kind: str,
        priority: TaskPriority | str,
        payload: Any = None,
        **kwargs: Any,
    ) -> str:
        task_id = self._queue.add_task(kind, priority, payload, **kwargs)
        self.pump()
        return task_id

    def submit_emergency_burst(
        self,
        count: int = 5,
        kind: str = TaskKind.LEAD_GENERATION,
        payload_factory: Callable[[int], Any] | None = None,
    ) -> list[str]:
        """Admit *count* emergency tasks at once, then dispatch what fits."""
        logger.warning("Emergency burst: queueing %d %s tasks", count, kind)
        ids = [
            self._queue.add_task(
                kind,
                TaskPriority.EMERGENCY,
                payload_factory(i) if payload_factory else {"batch_index": i, "urgent": True},
            )
            for i in range(count)
        ]
        self.pump()
        return ids

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until nothing is in flight and nothing pending can be assigned.

        Raises :class:`TimeoutError` if that does not happen within *timeout*.
        """
        async def _until_idle() -> None:
            while True:
                self.pump()
                if not self._running:
                    return
                await asyncio.wait(set(self._running.values()), return_when=asyncio.FIRST_COMPLETED)

        await asyncio.wait_for(_until_idle(), timeout)

    async def shutdown(self) -> None:
        """Stop dispatching and cancel in-flight executions."""
        self._closed = True
        runners = [r for r in self._running.values() if not r.done()]
        for runner in runners:
            runner.cancel()
        if runners:
            logger.info("Cancelling %d in-flight task executions", len(runners))
            await asyncio.wait(runners)
        self._running.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _execute(self, task: Task, worker: str) -> None:
        started = time.monotonic()
        request = Message(
            sender=QUEUE_SENDER,
            recipient=worker,
            kind=MessageKind.TASK_REQUEST,
            payload={"task_id": task.id, "kind": task.kind, "payload": task.payload.to_wire()},
            priority=TaskPriority(task.priority),
        )
        try:
            response = await self._bus.send(request)
        except asyncio.CancelledError:
            self._registry.set_status(worker, WorkerStatus.IDLE)
            raise
        except AgentLoopError as exc:
            response = None
            logger.warning("Bus error while running task %s: %s", task.id, exc)
        except Exception:
            response = None
            logger.exception("Delivery of task %s to %s failed", task.id, worker)

        result = response.payload if response is not None else None
        if not isinstance(result, WorkerResult):
            result = WorkerResult(success=False, message="No response from worker")

        self._registry.set_status(worker, WorkerStatus.IDLE)
        self._registry.record_outcome(worker, result.message)
        if result.success:
            self._queue.mark_completed(task.id)
        else:
            self._queue.mark_failed(task.id, result.message)
        logger.debug(
            "Task %s finished on %s in %.3fs (success=%s)",
            task.id, worker, time.monotonic() - started, result.success,
        )

    def _on_done(self, task_id: str, fut: asyncio.Task[None]) -> None:
        self._running.pop(task_id, None)
        if not fut.cancelled() and fut.exception() is not None:
            self._fail_crashed(task_id, fut.exception())
        if not self._closed:
            self.pump()

    def _fail_crashed(self, task_id: str, exc: BaseException) -> None:
        logger.error("Task execution %s crashed: %s", task_id, exc)
        task = self._queue.get(task_id)
        if task is None or task.status != TaskStatus.IN_PROGRESS:
            return
        if task.assigned_worker:
            self._registry.set_status(task.assigned_worker, WorkerStatus.IDLE)
        self._queue.mark_failed(task_id, f"Execution crashed: {exc}")
