"""Tests for the goal engine and worker selection."""

from __future__ import annotations

import random
from collections import Counter

from agentloop.goals import GoalEngine, GoalTask
from agentloop.registry import WorkerRegistry
from agentloop.selection import WorkerSelector, route_subgoal, weighted_choice


class TestGoalEngine:
    def test_subgoals_expand_from_goal(self) -> None:
        engine = GoalEngine([("Ship v2", 1)], regenerate_with=[])
        subgoals = [engine.next_subgoal().subgoal for _ in range(4)]
        assert subgoals == [
            "Research and analyze Ship v2",
            "Develop strategy for Ship v2",
            "Implement solutions for Ship v2",
            "Evaluate results of Ship v2",
        ]
        assert engine.next_subgoal() is None

    def test_round_robin_in_priority_order(self) -> None:
        engine = GoalEngine([("low", 1), ("high", 3), ("mid", 2)])
        goals = [engine.next_subgoal().goal for _ in range(4)]
        assert goals == ["high", "mid", "low", "high"]

    def test_regenerates_when_exhausted(self) -> None:
        engine = GoalEngine([("only", 1)], regenerate_with=[("fresh", 2)])
        for _ in range(4):
            engine.next_subgoal()
        task = engine.next_subgoal()
        assert task == GoalTask(goal="fresh", subgoal="Research and analyze fresh", priority=2)
        assert engine.regenerations == 1

    def test_default_goals_and_active_view(self) -> None:
        engine = GoalEngine()
        active = engine.active_goals()
        assert len(active) == 3
        assert [g["priority"] for g in active] == [3, 2, 1]
        engine.next_subgoal()
        assert engine.active_goals()[0]["remaining"] == 3
        engine.clear()
        assert engine.active_goals() == []


class TestRouting:
    def test_keyword_routes(self) -> None:
        assert route_subgoal("Research and analyze pricing") == "research"
        assert route_subgoal("Build a knowledge base") == "learning"
        assert route_subgoal("Develop strategy for growth") == "strategy"
        assert route_subgoal("Coordinate the release") == "collaboration"
        assert route_subgoal("Implement solutions for X") is None


class TestWorkerSelector:
    def test_goal_routes_to_strongest_match(self) -> None:
        reg = WorkerRegistry()
        reg.register("General", "general", priority=5)
        reg.register("R1", "research", priority=2)
        reg.register("R2", "research", priority=4)
        selector = WorkerSelector(reg, rng=random.Random(1))
        task = GoalTask(goal="g", subgoal="Research and analyze g", priority=1)
        assert selector.select(goal_task=task).name == "R2"

    def test_recovery_prefers_stable_workers(self) -> None:
        reg = WorkerRegistry()
        reg.register("Shaky", "x", priority=1)
        reg.register("Steady", "x", priority=3)
        reg.register("Solid", "x", priority=5)
        selector = WorkerSelector(reg, rng=random.Random(3))
        picks = {selector.select(recovery_mode=True).name for _ in range(50)}
        assert picks == {"Steady", "Solid"}

    def test_recovery_falls_back_when_nothing_stable(self) -> None:
        reg = WorkerRegistry()
        reg.register("A", "x", priority=1)
        reg.register("B", "x", priority=2)
        selector = WorkerSelector(reg)
        assert selector.select(recovery_mode=True).name == "A"

    def test_reserved_workers_excluded(self) -> None:
        reg = WorkerRegistry()
        reg.register("Supervisor", "monitor", priority=5)
        reg.register("Worker", "x", priority=1)
        selector = WorkerSelector(reg, reserved={"Supervisor"}, rng=random.Random(0))
        assert {selector.select().name for _ in range(30)} == {"Worker"}

    def test_reserved_only_registry_still_selects(self) -> None:
        reg = WorkerRegistry()
        reg.register("Supervisor", "monitor")
        selector = WorkerSelector(reg, reserved={"Supervisor"})
        assert selector.select().name == "Supervisor"

    def test_empty_registry(self) -> None:
        assert WorkerSelector(WorkerRegistry()).select() is None

    def test_weighted_distribution(self) -> None:
        reg = WorkerRegistry()
        reg.register("light", "x", priority=1)
        reg.register("heavy", "x", priority=4)
        rng = random.Random(42)
        counts = Counter(weighted_choice(reg.all(), rng).name for _ in range(10_000))
        share = counts["heavy"] / 10_000
        assert 0.77 < share < 0.83
