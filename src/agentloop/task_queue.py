"""Priority task queue with retry semantics and an in-flight cap."""

from __future__ import annotations

import bisect
import itertools
import logging
from typing import Any

from agentloop.errors import (
    InvalidPriorityError,
    InvalidTransitionError,
    RetriesExhaustedError,
    TaskNotFoundError,
)
from agentloop.registry import WorkerRegistry
from agentloop.sinks import BackgroundEmitter, StatusSink
from agentloop.types import (
    QueueStats,
    Task,
    TaskPriority,
    TaskStatus,
    WorkerStatus,
    make_payload,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Lifecycle
# =============================================================================

TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.ASSIGNED}),
    TaskStatus.ASSIGNED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.FAILED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    # A failed task with retries left goes straight back to pending.
    TaskStatus.FAILED: frozenset({TaskStatus.PENDING}),
}

_IN_FLIGHT: frozenset[TaskStatus] = frozenset({TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS})


def validate_priority(value: Any) -> TaskPriority:
    try:
        return TaskPriority(value)
    except ValueError:
        raise InvalidPriorityError(value) from None


# =============================================================================
# TaskQueue
# =============================================================================


class TaskQueue:
    """Pending tasks ordered emergency > high > medium > low, FIFO within a class.

    The queue never dispatches on its own. A dispatcher pulls work with
    :meth:`next_assignable` and reports back through the ``mark_*`` methods.
    At most ``max_concurrent_tasks`` tasks are in flight (assigned or in
    progress) at once; the pending backlog is unbounded.
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        *,
        max_concurrent_tasks: int = 10,
        default_max_retries: int = 3,
        capability_map: dict[str, str] | None = None,
        status_sink: StatusSink | None = None,
        emitter: BackgroundEmitter | None = None,
    ) -> None:
        self._registry = registry
        self.max_concurrent_tasks = max(1, max_concurrent_tasks)
        self.default_max_retries = default_max_retries
        self.capability_map: dict[str, str] = dict(capability_map or {})
        self._status_sink = status_sink
        self._emitter = emitter or BackgroundEmitter()

        self._tasks: dict[str, Task] = {}
        self._archive: list[Task] = []
        # Sorted list of (-rank, seq, task_id); seq is fixed at admission.
        self._pending: list[tuple[int, int, str]] = []
        self._order: dict[str, tuple[int, int, str]] = {}
        self._seq = itertools.count()
        self._busy_workers: set[str] = set()
        self._retries_exhausted = 0

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def submit(self, task: Task) -> str:
        """Admit *task* in priority order and return its id.

        Raises :class:`InvalidPriorityError` for unknown priority classes.
        """
        task.priority = validate_priority(task.priority)
        if task.id in self._tasks:
            logger.debug("Task %s already queued", task.id)
            return task.id
        task.status = TaskStatus.PENDING
        if task.capability is None:
            task.capability = self.capability_map.get(task.kind)
        key = (-task.priority.rank, next(self._seq), task.id)
        self._order[task.id] = key
        self._tasks[task.id] = task
        bisect.insort(self._pending, key)
        logger.info("Queued task %s (kind=%s, priority=%s)", task.id, task.kind, task.priority)
        self._narrate(f"Added {task.kind} task to queue (Priority: {task.priority})")
        return task.id

    def add_task(
        self,
        kind: str,
        priority: TaskPriority | str,
        payload: Any = None,
        *,
        capability: str | None = None,
        max_retries: int | None = None,
    ) -> str:
        task = Task(
            kind=kind,
            priority=validate_priority(priority),
            payload=make_payload(kind, payload),
            capability=capability,
            max_retries=max_retries if max_retries is not None else self.default_max_retries,
        )
        return self.submit(task)

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> int:
        return sum(1 for t in self._tasks.values() if t.status in _IN_FLIGHT)

    @property
    def capacity_remaining(self) -> int:
        return max(0, self.max_concurrent_tasks - self.in_flight)

    def next_assignable(self, capacity_remaining: int) -> list[Task]:
        """Reserve up to *capacity_remaining* pending tasks, highest priority first.

        Tasks whose required capability has no idle worker are skipped and
        stay pending. Returned tasks are ``assigned`` with a reserved worker.
        """
        limit = min(capacity_remaining, self.capacity_remaining)
        picked: list[Task] = []
        if limit <= 0:
            return picked
        for key in list(self._pending):
            if len(picked) >= limit:
                break
            task = self._tasks[key[2]]
            worker = self._find_idle_worker(task)
            if worker is None:
                logger.debug("No idle worker for task %s (capability=%s)", task.id, task.capability)
                continue
            self._transition(task, TaskStatus.ASSIGNED)
            self._pending.remove(key)
            task.assigned_worker = worker
            self._busy_workers.add(worker)
            picked.append(task)
            self._narrate(f"Assigned {task.kind} task to {worker}")
        return picked

    def mark_in_progress(self, task_id: str, worker_name: str) -> None:
        task = self._require(task_id)
        self._transition(task, TaskStatus.IN_PROGRESS)
        if task.assigned_worker and task.assigned_worker != worker_name:
            self._busy_workers.discard(task.assigned_worker)
        task.assigned_worker = worker_name
        self._busy_workers.add(worker_name)

    def mark_completed(self, task_id: str) -> None:
        task = self._require(task_id)
        self._transition(task, TaskStatus.COMPLETED)
        task.completed_at = utc_now_iso()
        self._release_worker(task)
        self._archive_task(task)
        logger.info("Task %s completed by %s", task.id, task.assigned_worker)
        self._narrate(f"Task completed: {task.kind} by {task.assigned_worker}")

    def mark_failed(self, task_id: str, reason: str = "") -> None:
        """Record a failure; re-enqueue at the same priority while retries remain."""
        task = self._require(task_id)
        self._transition(task, TaskStatus.FAILED)
        self._release_worker(task)
        task.retry_count += 1
        task.last_error = reason or None

        if task.retry_count < task.max_retries:
            # Same priority, same FIFO position. Retries are not escalated.
            self._transition(task, TaskStatus.PENDING)
            task.assigned_worker = None
            bisect.insort(self._pending, self._order[task.id])
            logger.info(
                "Retrying task %s (attempt %d/%d): %s",
                task.id, task.retry_count + 1, task.max_retries, reason,
            )
            self._narrate(
                f"Retrying failed task: {task.kind} (Attempt {task.retry_count + 1}/{task.max_retries})"
            )
            return

        task.completed_at = utc_now_iso()
        task.terminal_error = RetriesExhaustedError(task.id, task.retry_count, reason)
        self._retries_exhausted += 1
        self._archive_task(task)
        logger.warning("Task %s failed permanently after %d attempts", task.id, task.retry_count)
        self._narrate(f"Task failed permanently: {task.kind} after {task.max_retries} attempts")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        if task is not None:
            return task
        return next((t for t in self._archive if t.id == task_id), None)

    def get_tasks(self, status: TaskStatus | str | None = None) -> list[Task]:
        everything = self.pending_tasks() + [
            t for t in self._tasks.values() if t.status in _IN_FLIGHT
        ] + list(self._archive)
        if status is None:
            return everything
        wanted = TaskStatus(status)
        return [t for t in everything if t.status == wanted]

    def pending_tasks(self) -> list[Task]:
        """Pending tasks in dispatch order."""
        return [self._tasks[key[2]] for key in self._pending]

    def has_pending(self) -> bool:
        return bool(self._pending)

    def stats(self) -> QueueStats:
        active = list(self._tasks.values())
        return QueueStats(
            pending=len(self._pending),
            assigned=sum(1 for t in active if t.status == TaskStatus.ASSIGNED),
            in_progress=sum(1 for t in active if t.status == TaskStatus.IN_PROGRESS),
            completed=sum(1 for t in self._archive if t.status == TaskStatus.COMPLETED),
            failed=sum(1 for t in self._archive if t.status == TaskStatus.FAILED),
            retries_exhausted=self._retries_exhausted,
            busy_workers=len(self._busy_workers),
            capacity=self.max_concurrent_tasks,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_idle_worker(self, task: Task) -> str | None:
        candidates = (
            self._registry.list_by_capability(task.capability)
            if task.capability
            else self._registry.all()
        )
        for worker in candidates:
            if worker.status == WorkerStatus.IDLE and worker.name not in self._busy_workers:
                return worker.name
        return None

    def _require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _transition(self, task: Task, target: TaskStatus) -> None:
        if target not in TRANSITIONS[task.status]:
            raise InvalidTransitionError(task.id, task.status.value, target.value)
        task.status = target

    def _release_worker(self, task: Task) -> None:
        if task.assigned_worker:
            self._busy_workers.discard(task.assigned_worker)

    def _archive_task(self, task: Task) -> None:
        self._tasks.pop(task.id, None)
        self._order.pop(task.id, None)
        self._archive.append(task)

    def _narrate(self, text: str) -> None:
        self._emitter.notify(self._status_sink, text)
