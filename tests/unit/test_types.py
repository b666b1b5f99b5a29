"""Tests for core types and the error hierarchy."""

from __future__ import annotations

import pytest

from agentloop.errors import (
    AgentLoopError,
    ErrorCategory,
    InvalidPriorityError,
    RetriesExhaustedError,
    WorkerTimeoutError,
)
from agentloop.types import (
    KnownPayload,
    Message,
    MessageKind,
    OpaquePayload,
    Task,
    TaskKind,
    TaskPriority,
    WorkerResult,
    make_payload,
)


class TestWorkerResult:
    def test_from_dict_accepts_both_key_styles(self) -> None:
        snake = WorkerResult.from_raw({"success": True, "next_worker": "B", "should_continue": False})
        camel = WorkerResult.from_raw({"success": True, "nextWorker": "B", "shouldContinue": False})
        assert snake == camel
        assert snake.should_continue is False

    def test_data_is_kept(self) -> None:
        result = WorkerResult.from_raw({"success": True, "data": {"errors_detected": 2}})
        assert result.data == {"errors_detected": 2}

    def test_unsupported_values_fail(self) -> None:
        assert WorkerResult.from_raw(None).success is False
        assert WorkerResult.from_raw(42).message == "Unsupported worker result: int"


class TestPayloadsAndTasks:
    def test_make_payload(self) -> None:
        assert make_payload("error_fix", {"a": 1}) == KnownPayload(kind=TaskKind.ERROR_FIX, fields={"a": 1})
        assert make_payload("error_fix", ["not", "a", "dict"]) == OpaquePayload(blob=["not", "a", "dict"])
        assert make_payload("custom", {"a": 1}) == OpaquePayload(blob={"a": 1})
        assert KnownPayload(kind=TaskKind.OPTIMIZATION).to_wire() == {"kind": "optimization"}

    def test_task_defaults(self) -> None:
        task = Task(kind="optimization", priority=TaskPriority.LOW)
        assert task.id.startswith("task_")
        assert task.max_retries == 3
        assert task.to_dict()["status"] == "pending"

    def test_priority_rank(self) -> None:
        ranks = [p.rank for p in (TaskPriority.LOW, TaskPriority.MEDIUM, TaskPriority.HIGH, TaskPriority.EMERGENCY)]
        assert ranks == [1, 2, 3, 4]

    def test_message_is_frozen(self) -> None:
        msg = Message(sender="a", recipient="ALL", kind=MessageKind.ERROR_ALERT)
        assert msg.is_broadcast
        with pytest.raises(AttributeError):
            msg.sender = "b"  # type: ignore[misc]


class TestErrors:
    def test_categories_and_retryability(self) -> None:
        assert InvalidPriorityError("urgent").category == ErrorCategory.ADMISSION
        timeout = WorkerTimeoutError("w", 10)
        assert timeout.retryable is True
        assert isinstance(timeout, AgentLoopError)
        exhausted = RetriesExhaustedError("task_1", 3, "flaky")
        assert "after 3 attempts: flaky" in str(exhausted)
