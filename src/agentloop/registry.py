"""Worker registry: the fixed set of named workers a loop can dispatch to."""

from __future__ import annotations

import logging
from typing import Any

from agentloop.errors import WorkerNotFoundError
from agentloop.types import (
    MAX_PRIORITY_WEIGHT,
    MIN_PRIORITY_WEIGHT,
    Worker,
    WorkerHandler,
    WorkerStatus,
)

logger = logging.getLogger(__name__)


class WorkerRegistry:
    """Holds workers by name, in registration order.

    Registration is idempotent: a second ``register`` for a known name keeps
    the original entry untouched.
    """

    def __init__(self) -> None:
        self._workers: dict[str, Worker] = {}

    def register(
        self,
        name: str,
        capability: str,
        handler: WorkerHandler | None = None,
        priority: int = MIN_PRIORITY_WEIGHT,
    ) -> Worker:
        existing = self._workers.get(name)
        if existing is not None:
            logger.debug("Worker %s already registered (capability=%s)", name, existing.capability)
            return existing
        worker = Worker(
            name=name,
            capability=capability,
            priority=_clamp(priority, MIN_PRIORITY_WEIGHT, MAX_PRIORITY_WEIGHT),
            handler=handler,
        )
        self._workers[name] = worker
        logger.info("Registered worker %s (capability=%s)", name, capability)
        return worker

    def get(self, name: str) -> Worker | None:
        return self._workers.get(name)

    def require(self, name: str) -> Worker:
        worker = self._workers.get(name)
        if worker is None:
            raise WorkerNotFoundError(name)
        return worker

    def all(self) -> list[Worker]:
        return list(self._workers.values())

    def names(self) -> list[str]:
        return list(self._workers.keys())

    def list_by_capability(self, tag: str) -> list[Worker]:
        return [w for w in self._workers.values() if w.capability == tag]

    def set_status(self, name: str, status: WorkerStatus) -> None:
        self.require(name).status = WorkerStatus(status)

    def adjust_priority(
        self,
        name: str,
        delta: int,
        clamp: tuple[int, int] = (MIN_PRIORITY_WEIGHT, MAX_PRIORITY_WEIGHT),
    ) -> int:
        """Shift a worker's priority weight by *delta*, clamped to *clamp*."""
        worker = self.require(name)
        worker.priority = _clamp(worker.priority + delta, clamp[0], clamp[1])
        return worker.priority

    def record_outcome(self, name: str, text: str) -> None:
        self.require(name).last_outcome = text

    def snapshot(self) -> list[dict[str, Any]]:
        return [w.to_dict() for w in self._workers.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._workers

    def __len__(self) -> int:
        return len(self._workers)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))
