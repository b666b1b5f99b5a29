"""Worker hand-offs and periodic multi-worker collaboration."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from agentloop.bus import CommunicationBus
from agentloop.errors import WorkerNotFoundError
from agentloop.goals import GoalTask
from agentloop.invoke import invoke_safely
from agentloop.registry import WorkerRegistry
from agentloop.sinks import BackgroundEmitter, LogSink
from agentloop.types import LogEntry, WorkerResult, WorkerStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HandoffOutcome:
    """What happened when a worker's result named a successor."""

    chain: list[str] = field(default_factory=list)
    results: list[WorkerResult] = field(default_factory=list)
    skipped_reason: str | None = None
    failed_worker: str | None = None
    error: Exception | None = None

    @property
    def hops(self) -> int:
        """Hand-offs that completed successfully."""
        return sum(1 for r in self.results if r.success)

    @property
    def performed(self) -> bool:
        return bool(self.chain)


class CollaborationCoordinator:
    """Follows hand-off chains and drives the collaboration worker.

    Hand-offs are rate limited: a new chain starts only when at least
    ``interval`` seconds have passed since the last successful hand-off.
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        bus: CommunicationBus,
        *,
        interval: float = 5.0,
        max_chain: int = 3,
        timeout: float = 10.0,
        collaborator: str = "",
        log_sink: LogSink | None = None,
        emitter: BackgroundEmitter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self.interval = interval
        self.max_chain = max(1, max_chain)
        self.timeout = timeout
        self.collaborator = collaborator
        self._log_sink = log_sink
        self._emitter = emitter or BackgroundEmitter()
        self._clock = clock
        self._last_handoff: float | None = None

    def ready(self) -> bool:
        if self._last_handoff is None:
            return True
        return self._clock() - self._last_handoff >= self.interval

    async def handle_handoff(
        self,
        source: str,
        result: WorkerResult,
        goal_task: GoalTask | None = None,
        *,
        cycle: int | None = None,
    ) -> HandoffOutcome:
        outcome = HandoffOutcome()
        if not result.next_worker:
            outcome.skipped_reason = "no successor"
            return outcome
        if not result.should_continue:
            outcome.skipped_reason = "worker asked to stop"
            return outcome
        if not self.ready():
            outcome.skipped_reason = "rate limited"
            logger.debug("Hand-off %s -> %s rate limited", source, result.next_worker)
            return outcome

        goal_context = (
            {"goal": goal_task.goal, "subgoal": goal_task.subgoal}
            if goal_task is not None
            else {"goal": "default", "subgoal": "none"}
        )
        current, current_result = source, result
        while len(outcome.chain) < self.max_chain:
            target = current_result.next_worker
            if not target or target == current or not current_result.should_continue:
                break
            logger.info("Hand-off %s -> %s", current, target)
            try:
                next_result = await self._bus.coordinate_handoff(
                    current,
                    target,
                    current_result.message,
                    {"goal_context": goal_context, "previous_worker": current, "cycle": cycle},
                    timeout=self.timeout,
                )
            except asyncio.CancelledError:
                raise
            except WorkerNotFoundError as exc:
                logger.warning("Hand-off target %s is not registered; skipping", exc.worker)
                if not outcome.chain:
                    outcome.skipped_reason = "unknown worker"
                break
            except Exception as exc:
                logger.warning("Hand-off to %s failed: %s", target, exc)
                outcome.chain.append(target)
                outcome.failed_worker = target
                outcome.error = exc
                self._log(target, f"Handoff from {current}", f"Error: {exc}", cycle, "error")
                break

            outcome.chain.append(target)
            outcome.results.append(next_result)
            self._registry.record_outcome(target, next_result.message)
            self._log(
                target,
                f"Handoff from {current}",
                next_result.message or "No response",
                cycle,
                "success" if next_result.success else "error",
            )
            if not next_result.success:
                outcome.failed_worker = target
                break
            self._last_handoff = self._clock()
            current, current_result = target, next_result

        if outcome.failed_worker:
            self._registry.set_status(outcome.failed_worker, WorkerStatus.ERROR)
        return outcome

    async def initiate_collaboration(self, cycle: int, goal_task: GoalTask | None = None) -> bool:
        """Ask the collaboration worker to coordinate around the current goal."""
        worker = self._registry.get(self.collaborator) if self.collaborator else None
        if worker is None:
            logger.debug("No collaboration worker registered")
            return False
        context = {
            "action": "coordinate",
            "topic": goal_task.goal if goal_task is not None else "System optimization",
            "cycle": cycle,
        }
        result, exc = await invoke_safely(worker, context, self.timeout)
        if exc is not None:
            logger.warning("Collaboration error: %s", exc)
            return False
        if not result.success:
            return False
        self._log(
            worker.name,
            "Multi-agent collaboration",
            result.message or "Collaboration initiated",
            cycle,
            "success",
        )
        return True

    def _log(self, worker: str, action: str, text: str, cycle: int | None, level: str) -> None:
        self._emitter.log(
            self._log_sink,
            LogEntry(worker=worker, action=action, result=text, cycle=cycle, level=level),
        )
