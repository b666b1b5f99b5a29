"""Core types for the adaptive agent loop.

Defines workers, tasks, messages, worker results and loop metrics shared by
the registry, task queue, communication bus and loop controller.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# =============================================================================
# Enums
# =============================================================================


class WorkerStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class TaskStatus(StrEnum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


class TaskKind(StrEnum):
    ERROR_FIX = "error_fix"
    SYSTEM_REPAIR = "system_repair"
    CODE_GENERATION = "code_generation"
    OPTIMIZATION = "optimization"
    LEAD_GENERATION = "lead_generation"


class MessageKind(StrEnum):
    TASK_REQUEST = "task_request"
    TASK_RESPONSE = "task_response"
    ERROR_ALERT = "error_alert"
    STATUS_UPDATE = "status_update"
    COLLABORATION = "collaboration"


class LoopState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    RECOVERY = "recovery"
    STOPPED = "stopped"


PRIORITY_RANK: dict[TaskPriority, int] = {
    TaskPriority.EMERGENCY: 4,
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}

BROADCAST = "ALL"

MIN_PRIORITY_WEIGHT = 1
MAX_PRIORITY_WEIGHT = 5


# =============================================================================
# Worker results
# =============================================================================


@dataclass(slots=True)
class WorkerResult:
    """Outcome of a single worker invocation."""

    success: bool
    message: str = ""
    next_worker: str | None = None
    should_continue: bool = True
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Any) -> WorkerResult:
        """Normalise whatever a handler returned into a ``WorkerResult``.

        Handlers may return a ``WorkerResult``, a mapping with ``success`` /
        ``message`` / ``nextWorker`` style keys, or ``None`` (treated as a
        failure with no message).
        """
        if isinstance(raw, WorkerResult):
            return raw
        if isinstance(raw, dict):
            next_worker = raw.get("next_worker", raw.get("nextWorker"))
            should_continue = raw.get("should_continue", raw.get("shouldContinue", True))
            message = raw.get("message", raw.get("output", ""))
            data = raw.get("data")
            return cls(
                success=bool(raw.get("success", False)),
                message=str(message) if message is not None else "",
                next_worker=str(next_worker) if next_worker else None,
                should_continue=should_continue is not False,
                data=dict(data) if isinstance(data, dict) else {},
            )
        if raw is None:
            return cls(success=False, message="Worker returned no result")
        return cls(success=False, message=f"Unsupported worker result: {type(raw).__name__}")


WorkerHandler = Callable[[dict[str, Any]], Awaitable[Any]]


# =============================================================================
# Worker
# =============================================================================


@dataclass
class Worker:
    """A named, capability-tagged unit of execution."""

    name: str
    capability: str
    status: WorkerStatus = WorkerStatus.IDLE
    priority: int = MIN_PRIORITY_WEIGHT
    last_outcome: str = ""
    handler: WorkerHandler | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "capability": self.capability,
            "status": self.status.value,
            "priority": self.priority,
            "last_outcome": self.last_outcome,
        }


# =============================================================================
# Task payloads
# =============================================================================


@dataclass(frozen=True, slots=True)
class KnownPayload:
    """Payload for a recognised task kind. Fields are forwarded untouched."""

    kind: TaskKind
    fields: dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return {"kind": self.kind.value, **self.fields}


@dataclass(frozen=True, slots=True)
class OpaquePayload:
    """Payload the scheduler knows nothing about."""

    blob: Any = None

    def to_wire(self) -> Any:
        return self.blob


TaskPayload = KnownPayload | OpaquePayload


def make_payload(kind: str, raw: Any) -> TaskPayload:
    if isinstance(raw, KnownPayload | OpaquePayload):
        return raw
    if kind in TaskKind.__members__.values() and (raw is None or isinstance(raw, dict)):
        return KnownPayload(kind=TaskKind(kind), fields=dict(raw or {}))
    return OpaquePayload(blob=raw)


# =============================================================================
# Task
# =============================================================================


@dataclass
class Task:
    """A unit of queued work."""

    kind: str
    priority: TaskPriority | str
    payload: TaskPayload = field(default_factory=OpaquePayload)
    id: str = field(default_factory=lambda: new_id("task"))
    capability: str | None = None
    assigned_worker: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    created_at: str = field(default_factory=utc_now_iso)
    completed_at: str | None = None
    last_error: str | None = None
    terminal_error: Exception | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "priority": str(self.priority),
            "capability": self.capability,
            "assigned_worker": self.assigned_worker,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
            "last_error": self.last_error,
        }


@dataclass(slots=True)
class QueueStats:
    pending: int = 0
    assigned: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    retries_exhausted: int = 0
    busy_workers: int = 0
    capacity: int = 0


# =============================================================================
# Messages
# =============================================================================


@dataclass(frozen=True, slots=True)
class Message:
    """An immutable bus message."""

    sender: str
    recipient: str
    kind: MessageKind
    payload: Any = None
    priority: TaskPriority = TaskPriority.MEDIUM
    id: str = field(default_factory=lambda: new_id("msg"))
    timestamp: str = field(default_factory=utc_now_iso)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient == BROADCAST


# =============================================================================
# Loop metrics and log entries
# =============================================================================


@dataclass(slots=True)
class LoopMetrics:
    cycles: int = 0
    handoffs: int = 0
    collaborations: int = 0
    errors: int = 0
    recoveries: int = 0
    consecutive_errors: int = 0
    period: float = 0.0
    recovery_mode: bool = False
    last_worker: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Counters that survive a restart when resume is enabled.
RESUMABLE_COUNTERS: tuple[str, ...] = ("cycles", "handoffs", "collaborations", "errors", "recoveries")


@dataclass(slots=True)
class LogEntry:
    worker: str
    action: str
    result: str
    cycle: int | None = None
    level: str = "info"  # "info" | "warning" | "error" | "success"
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
