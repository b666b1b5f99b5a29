"""Agentloop error hierarchy."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Category of error for classification and handling."""

    ADMISSION = "admission"
    WORKER = "worker"
    ROUTING = "routing"
    QUEUE = "queue"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


class AgentLoopError(Exception):
    """Base error for all agentloop exceptions."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.details: dict[str, Any] = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, category={self.category!r})"


class InvalidPriorityError(AgentLoopError):
    """Task submitted with an unrecognised priority class."""

    def __init__(self, priority: Any) -> None:
        super().__init__(
            f"Invalid task priority: {priority!r} (expected low, medium, high or emergency)",
            category=ErrorCategory.ADMISSION,
        )
        self.priority = priority


class WorkerTimeoutError(AgentLoopError):
    """Worker invocation exceeded its time bound."""

    def __init__(self, worker: str, timeout: float) -> None:
        super().__init__(
            f"Worker '{worker}' timed out after {timeout}s",
            category=ErrorCategory.WORKER,
            retryable=True,
        )
        self.worker = worker
        self.timeout = timeout


class WorkerNotFoundError(AgentLoopError):
    """Dispatch or hand-off references an unregistered worker."""

    def __init__(self, worker: str) -> None:
        super().__init__(f"Worker not found: {worker}", category=ErrorCategory.ROUTING)
        self.worker = worker


class RetriesExhaustedError(AgentLoopError):
    """Task reached its retry limit. Recorded on the task, never raised by the queue."""

    def __init__(self, task_id: str, attempts: int, reason: str = "") -> None:
        msg = f"Task {task_id} failed permanently after {attempts} attempts"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, category=ErrorCategory.QUEUE)
        self.task_id = task_id
        self.attempts = attempts
        self.reason = reason


class TaskNotFoundError(AgentLoopError):
    """Requested task id is not known to the queue."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}", category=ErrorCategory.QUEUE)
        self.task_id = task_id


class InvalidTransitionError(AgentLoopError):
    """Task status change violates the lifecycle."""

    def __init__(self, task_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Task {task_id}: illegal transition {current} -> {target}",
            category=ErrorCategory.QUEUE,
        )
        self.task_id = task_id
        self.current = current
        self.target = target


class ConfigurationError(AgentLoopError):
    """Invalid or missing configuration."""

    def __init__(self, message: str) -> None:
        super().__init__(message, category=ErrorCategory.CONFIGURATION, retryable=False)
