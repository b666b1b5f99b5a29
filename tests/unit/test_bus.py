"""Tests for the communication bus."""

from __future__ import annotations

from typing import Any

import pytest

from agentloop.bus import CommunicationBus
from agentloop.errors import WorkerNotFoundError, WorkerTimeoutError
from agentloop.registry import WorkerRegistry
from agentloop.types import Message, MessageKind, TaskPriority, WorkerResult
from tests.helpers import counting_handler, failing_handler, hanging_handler, ok_handler


def _bus(**kwargs: Any) -> tuple[CommunicationBus, WorkerRegistry]:
    reg = WorkerRegistry()
    return CommunicationBus(reg, **kwargs), reg


class TestSend:
    @pytest.mark.asyncio
    async def test_task_request_round_trip(self) -> None:
        bus, reg = _bus()
        calls: list[dict[str, Any]] = []
        reg.register("Fixer", "repair", counting_handler(calls))
        response = await bus.send(
            Message(sender="Queue", recipient="Fixer", kind=MessageKind.TASK_REQUEST, payload={"x": 1})
        )
        assert response is not None
        assert response.kind == MessageKind.TASK_RESPONSE
        assert response.sender == "Fixer"
        assert response.recipient == "Queue"
        assert isinstance(response.payload, WorkerResult)
        assert response.payload.success
        assert calls[0]["input"] == {"x": 1}
        assert [m.kind for m in bus.history()] == [MessageKind.TASK_REQUEST, MessageKind.TASK_RESPONSE]

    @pytest.mark.asyncio
    async def test_failing_handler_still_answers(self) -> None:
        bus, reg = _bus()
        reg.register("Fixer", "repair", failing_handler("kaput"))
        response = await bus.send(Message(sender="Q", recipient="Fixer", kind=MessageKind.TASK_REQUEST))
        assert response is not None
        assert response.payload.success is False
        assert "kaput" in response.payload.message

    @pytest.mark.asyncio
    async def test_timeout_answers_with_failure(self) -> None:
        bus, reg = _bus(call_timeout=0.05)
        reg.register("Slow", "x", hanging_handler())
        response = await bus.send(Message(sender="Q", recipient="Slow", kind=MessageKind.TASK_REQUEST))
        assert response.payload.success is False
        assert "timed out" in response.payload.message

    @pytest.mark.asyncio
    async def test_unregistered_recipient_is_recorded_only(self) -> None:
        bus, _ = _bus()
        response = await bus.send(Message(sender="Q", recipient="Ghost", kind=MessageKind.TASK_REQUEST))
        assert response is None
        assert len(bus.history()) == 1

    @pytest.mark.asyncio
    async def test_non_request_kinds_are_not_routed(self) -> None:
        bus, reg = _bus()
        calls: list[dict[str, Any]] = []
        reg.register("A", "x", counting_handler(calls))
        assert await bus.send(Message(sender="Q", recipient="A", kind=MessageKind.STATUS_UPDATE)) is None
        assert calls == []

    @pytest.mark.asyncio
    async def test_history_is_bounded(self) -> None:
        bus, _ = _bus(history_size=3)
        for i in range(5):
            await bus.send(Message(sender=f"s{i}", recipient="r", kind=MessageKind.STATUS_UPDATE))
        assert [m.sender for m in bus.history()] == ["s2", "s3", "s4"]
        assert bus.stats()["total_messages"] == 5
        assert [m.sender for m in bus.recent(2)] == ["s3", "s4"]


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_partial_delivery(self) -> None:
        bus, _ = _bus()

        def bad(message: Message) -> None:
            raise RuntimeError("subscriber broke")

        bus.subscribe("b", bad)
        delivered = await bus.broadcast(MessageKind.STATUS_UPDATE, {"ok": True}, ["a", "b", "c"])
        assert [m.recipient for m in delivered] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_error_alert_targets_registered_only(self) -> None:
        bus, reg = _bus()
        reg.register("Fixer", "repair")
        delivered = await bus.broadcast_error_alert({"type": "db"}, ["Fixer", "Ghost"])
        assert [m.recipient for m in delivered] == ["Fixer"]
        assert delivered[0].priority == TaskPriority.EMERGENCY
        assert any(m.is_broadcast for m in bus.history())

    @pytest.mark.asyncio
    async def test_coordinate_error_fixing_round_robin(self) -> None:
        bus, reg = _bus()
        a_calls: list[dict[str, Any]] = []
        b_calls: list[dict[str, Any]] = []
        reg.register("A", "repair", counting_handler(a_calls))
        reg.register("B", "repair", counting_handler(b_calls))
        responses = await bus.coordinate_error_fixing(["e1", "e2", "e3"], ["A", "B"])
        assert len(responses) == 3
        assert [c["input"]["error"] for c in a_calls] == ["e1", "e3"]
        assert [c["input"]["error"] for c in b_calls] == ["e2"]


class TestHandoff:
    @pytest.mark.asyncio
    async def test_handoff_passes_previous_output(self) -> None:
        bus, reg = _bus()
        calls: list[dict[str, Any]] = []
        reg.register("Next", "x", counting_handler(calls))
        result = await bus.coordinate_handoff("First", "Next", "draft v1", {"cycle": 4})
        assert result.success
        assert calls[0]["previous_output"] == "draft v1"
        assert calls[0]["from_worker"] == "First"
        assert calls[0]["cycle"] == 4

    @pytest.mark.asyncio
    async def test_handoff_to_unknown_worker(self) -> None:
        bus, _ = _bus()
        with pytest.raises(WorkerNotFoundError):
            await bus.coordinate_handoff("First", "Ghost", "out")

    @pytest.mark.asyncio
    async def test_handoff_timeout_propagates(self) -> None:
        bus, reg = _bus()
        reg.register("Slow", "x", hanging_handler())
        with pytest.raises(WorkerTimeoutError):
            await bus.coordinate_handoff("First", "Slow", "out", timeout=0.05)


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self) -> None:
        bus, reg = _bus()
        reg.register("A", "x", ok_handler())
        received: list[Message] = []
        cb = received.append
        bus.subscribe("A", cb)
        await bus.send(Message(sender="Q", recipient="A", kind=MessageKind.STATUS_UPDATE))
        bus.unsubscribe("A", cb)
        await bus.send(Message(sender="Q", recipient="A", kind=MessageKind.STATUS_UPDATE))
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_history_filter_by_worker(self) -> None:
        bus, _ = _bus()
        await bus.send(Message(sender="A", recipient="B", kind=MessageKind.STATUS_UPDATE))
        await bus.send(Message(sender="C", recipient="D", kind=MessageKind.STATUS_UPDATE))
        assert len(bus.history("A")) == 1
        assert len(bus.history("B")) == 1
        assert bus.history("Z") == []
