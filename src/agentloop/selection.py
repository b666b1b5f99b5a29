"""Worker selection: recovery bias, goal routing and weighted random choice."""

from __future__ import annotations

import bisect
import itertools
import logging
import random
from collections.abc import Iterable

from agentloop.goals import GoalTask
from agentloop.registry import WorkerRegistry
from agentloop.types import Worker

logger = logging.getLogger(__name__)

# Ordered; the first keyword found in a subgoal decides the capability.
GOAL_ROUTES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("research", "analy"), "research"),
    (("learn", "knowledge", "memory"), "learning"),
    (("strateg", "plan"), "strategy"),
    (("collaborat", "coordinat"), "collaboration"),
)


def route_subgoal(subgoal: str) -> str | None:
    """Map a subgoal's wording to the capability tag that should handle it."""
    text = subgoal.lower()
    for keywords, capability in GOAL_ROUTES:
        if any(k in text for k in keywords):
            return capability
    return None


def weighted_choice(workers: list[Worker], rng: random.Random) -> Worker:
    """Pick a worker with probability proportional to its priority weight."""
    cumulative = list(itertools.accumulate(max(1, w.priority) for w in workers))
    point = rng.random() * cumulative[-1]
    index = bisect.bisect_right(cumulative, point)
    return workers[min(index, len(workers) - 1)]


class WorkerSelector:
    """Chooses the worker for a cycle.

    In recovery mode a random stable worker (weight at or above the
    stability threshold) is preferred. Otherwise a goal subgoal routes to the
    strongest worker with the matching capability, and failing that the pick
    is weighted random over the pool.
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        *,
        stability_threshold: int = 3,
        reserved: Iterable[str] = (),
        rng: random.Random | None = None,
    ) -> None:
        self._registry = registry
        self.stability_threshold = stability_threshold
        self._reserved = set(reserved)
        self._rng = rng or random.Random()

    def candidates(self) -> list[Worker]:
        workers = self._registry.all()
        pool = [w for w in workers if w.name not in self._reserved]
        return pool or workers

    def select(self, *, recovery_mode: bool = False, goal_task: GoalTask | None = None) -> Worker | None:
        pool = self.candidates()
        if not pool:
            return None

        if recovery_mode:
            stable = [w for w in pool if w.priority >= self.stability_threshold]
            if stable:
                worker = self._rng.choice(stable)
                logger.debug("Recovery pick %s from %d stable workers", worker.name, len(stable))
                return worker
            logger.debug("No stable workers; falling back to %s", pool[0].name)
            return pool[0]

        if goal_task is not None:
            capability = route_subgoal(goal_task.subgoal)
            if capability:
                matches = [w for w in pool if w.capability == capability]
                if matches:
                    # max() keeps the first of equal weights
                    worker = max(matches, key=lambda w: w.priority)
                    logger.debug("Goal %r routed to %s", goal_task.subgoal, worker.name)
                    return worker

        return weighted_choice(pool, self._rng)
