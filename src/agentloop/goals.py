"""Long-term goals broken down into subgoals that steer worker selection."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

SUBGOAL_TEMPLATES: tuple[str, ...] = (
    "Research and analyze {goal}",
    "Develop strategy for {goal}",
    "Implement solutions for {goal}",
    "Evaluate results of {goal}",
)

INITIAL_GOALS: tuple[tuple[str, int], ...] = (
    ("System optimization and efficiency improvement", 3),
    ("Enhanced inter-agent collaboration", 2),
    ("Knowledge acquisition and processing", 1),
)

REGENERATED_GOALS: tuple[tuple[str, int], ...] = (
    ("Advanced system capabilities development", 3),
    ("Cross-domain knowledge integration", 2),
    ("Autonomous decision-making enhancement", 1),
)


@dataclass(slots=True)
class GoalTask:
    """One subgoal handed to the loop for a single cycle."""

    goal: str
    subgoal: str
    priority: int


@dataclass(slots=True)
class _Goal:
    goal: str
    priority: int
    subgoals: deque[str] = field(default_factory=deque)


class GoalEngine:
    """Round-robin source of subgoals across prioritised long-term goals.

    Goals are kept in descending priority order (stable for equal
    priorities). Each call to :meth:`next_subgoal` takes the next subgoal
    from the next goal that still has one; once every goal is exhausted the
    engine regenerates a fresh goal set.
    """

    def __init__(
        self,
        goals: Iterable[tuple[str, int]] | None = None,
        regenerate_with: Iterable[tuple[str, int]] = REGENERATED_GOALS,
    ) -> None:
        self._goals: list[_Goal] = []
        self._cursor = 0
        self._regenerate_with = list(regenerate_with)
        self.regenerations = 0
        for goal, priority in (INITIAL_GOALS if goals is None else goals):
            self.set_long_term_goal(goal, priority)

    def set_long_term_goal(self, goal: str, priority: int = 1) -> None:
        subgoals = deque(t.format(goal=goal) for t in SUBGOAL_TEMPLATES)
        self._goals.append(_Goal(goal=goal, priority=priority, subgoals=subgoals))
        self._goals.sort(key=lambda g: -g.priority)
        logger.info("Set goal: %s (priority=%d)", goal, priority)

    def next_subgoal(self) -> GoalTask | None:
        """Return the next subgoal, or ``None`` when there is nothing to regenerate."""
        task = self._take()
        if task is not None:
            return task
        if not self._regenerate_with:
            return None
        self._regenerate()
        return self._take()

    def active_goals(self) -> list[dict[str, Any]]:
        return [
            {"goal": g.goal, "remaining": len(g.subgoals), "priority": g.priority}
            for g in self._goals
        ]

    def clear(self) -> None:
        self._goals.clear()
        self._cursor = 0

    def _take(self) -> GoalTask | None:
        count = len(self._goals)
        for offset in range(count):
            index = (self._cursor + offset) % count
            goal = self._goals[index]
            if goal.subgoals:
                self._cursor = (index + 1) % count
                return GoalTask(goal=goal.goal, subgoal=goal.subgoals.popleft(), priority=goal.priority)
        return None

    def _regenerate(self) -> None:
        logger.info("All subgoals exhausted; regenerating goals")
        self.regenerations += 1
        self.clear()
        for goal, priority in self._regenerate_with:
            self.set_long_term_goal(goal, priority)
