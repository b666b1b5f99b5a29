"""Tests for hand-offs and collaboration."""

from __future__ import annotations

from typing import Any

import pytest

from agentloop.bus import CommunicationBus
from agentloop.collaboration import CollaborationCoordinator
from agentloop.goals import GoalTask
from agentloop.registry import WorkerRegistry
from agentloop.types import WorkerResult, WorkerStatus
from tests.helpers import counting_handler, failing_handler, ok_handler


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _coordinator(**kwargs: Any) -> tuple[CollaborationCoordinator, WorkerRegistry, FakeClock]:
    reg = WorkerRegistry()
    clock = FakeClock()
    coord = CollaborationCoordinator(reg, CommunicationBus(reg), clock=clock, **kwargs)
    return coord, reg, clock


class TestHandoff:
    @pytest.mark.asyncio
    async def test_single_handoff(self) -> None:
        coord, reg, _ = _coordinator()
        calls: list[dict[str, Any]] = []
        reg.register("B", "x", counting_handler(calls))
        outcome = await coord.handle_handoff("A", WorkerResult(success=True, message="draft", next_worker="B"))
        assert outcome.chain == ["B"]
        assert outcome.hops == 1
        assert calls[0]["previous_output"] == "draft"
        assert calls[0]["goal_context"] == {"goal": "default", "subgoal": "none"}

    @pytest.mark.asyncio
    async def test_should_continue_false_suppresses(self) -> None:
        coord, reg, _ = _coordinator()
        reg.register("B", "x", ok_handler())
        outcome = await coord.handle_handoff(
            "A", WorkerResult(success=True, next_worker="B", should_continue=False)
        )
        assert not outcome.performed
        assert outcome.skipped_reason == "worker asked to stop"

    @pytest.mark.asyncio
    async def test_rate_limited(self) -> None:
        coord, reg, clock = _coordinator(interval=5.0)
        reg.register("B", "x", ok_handler())
        first = WorkerResult(success=True, next_worker="B")
        assert (await coord.handle_handoff("A", first)).hops == 1
        clock.now += 4.9
        assert (await coord.handle_handoff("A", first)).skipped_reason == "rate limited"
        clock.now += 1.0
        assert (await coord.handle_handoff("A", first)).hops == 1

    @pytest.mark.asyncio
    async def test_unknown_target_is_skipped(self) -> None:
        coord, _, _ = _coordinator()
        outcome = await coord.handle_handoff("A", WorkerResult(success=True, next_worker="Ghost"))
        assert outcome.skipped_reason == "unknown worker"
        assert outcome.failed_worker is None
        assert coord.ready()

    @pytest.mark.asyncio
    async def test_chain_follows_next_worker_up_to_limit(self) -> None:
        coord, reg, _ = _coordinator(max_chain=3)
        reg.register("B", "x", ok_handler("b", next_worker="C"))
        reg.register("C", "x", ok_handler("c", next_worker="D"))
        reg.register("D", "x", ok_handler("d", next_worker="E"))
        reg.register("E", "x", ok_handler("e"))
        outcome = await coord.handle_handoff(
            "A",
            WorkerResult(success=True, next_worker="B"),
            GoalTask(goal="g", subgoal="s", priority=1),
        )
        assert outcome.chain == ["B", "C", "D"]
        assert outcome.hops == 3

    @pytest.mark.asyncio
    async def test_failing_target_is_reported(self) -> None:
        coord, reg, _ = _coordinator()
        reg.register("B", "x", failing_handler())
        outcome = await coord.handle_handoff("A", WorkerResult(success=True, next_worker="B"))
        assert outcome.failed_worker == "B"
        assert outcome.hops == 0
        assert isinstance(outcome.error, RuntimeError)
        assert reg.get("B").status == WorkerStatus.ERROR


class TestCollaboration:
    @pytest.mark.asyncio
    async def test_invokes_collaborator_with_topic(self) -> None:
        coord, reg, _ = _coordinator(collaborator="Hub")
        calls: list[dict[str, Any]] = []
        reg.register("Hub", "collaboration", counting_handler(calls))
        ok = await coord.initiate_collaboration(15, GoalTask(goal="Expand", subgoal="s", priority=1))
        assert ok
        assert calls == [{"action": "coordinate", "topic": "Expand", "cycle": 15}]

    @pytest.mark.asyncio
    async def test_missing_or_failing_collaborator(self) -> None:
        coord, reg, _ = _coordinator(collaborator="Hub")
        assert await coord.initiate_collaboration(1) is False
        reg.register("Hub", "collaboration", failing_handler())
        assert await coord.initiate_collaboration(2) is False
