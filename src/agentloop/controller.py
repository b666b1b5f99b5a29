"""Adaptive loop controller.

Runs the timer-driven control loop: periodic health checks and
meta-analysis, worker selection, bounded dispatch, hand-offs,
collaboration, and per-cycle bookkeeping. Cycles are strictly sequential;
the next one is scheduled only after the previous one has settled.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

from agentloop.bus import CommunicationBus
from agentloop.collaboration import CollaborationCoordinator
from agentloop.config.loader import resolve_handler
from agentloop.config.schema import AgentLoopYamlConfig, LoopConfig, RolesConfig
from agentloop.dispatcher import TaskDispatcher
from agentloop.goals import GoalEngine, GoalTask
from agentloop.invoke import invoke_safely, invoke_with_timeout
from agentloop.recovery import (
    CadencePolicy,
    RecoveryState,
    normalize_success_rate,
    record_outcome,
    reset_window,
    rolling_success_rate,
)
from agentloop.registry import WorkerRegistry
from agentloop.selection import WorkerSelector
from agentloop.sinks import (
    BackgroundEmitter,
    JsonlLogSink,
    LoggingStatusSink,
    LogSink,
    StatusSink,
)
from agentloop.state_store import LoopStateSnapshot, LoopStateStore
from agentloop.task_queue import TaskQueue
from agentloop.types import (
    RESUMABLE_COUNTERS,
    LogEntry,
    LoopMetrics,
    LoopState,
    TaskPriority,
    Worker,
    WorkerResult,
    WorkerStatus,
)

logger = logging.getLogger(__name__)


def _count_errors(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int | float):
        return max(0, int(value))
    if isinstance(value, list | tuple | set | dict):
        return len(value)
    return 0


class AdaptiveLoopController:
    """One control loop over one worker registry.

    ``start()`` launches the loop as an asyncio task; ``stop()`` cancels it
    between or during cycles. Worker calls already in flight when the loop is
    stopped are left to finish and their results are discarded.
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        *,
        config: LoopConfig | None = None,
        roles: RolesConfig | None = None,
        bus: CommunicationBus | None = None,
        queue: TaskQueue | None = None,
        goals: GoalEngine | None = None,
        log_sink: LogSink | None = None,
        status_sink: StatusSink | None = None,
        state_store: LoopStateStore | None = None,
        emitter: BackgroundEmitter | None = None,
        resume_counts: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or LoopConfig()
        self.roles = roles or RolesConfig()
        self.registry = registry
        self.emitter = emitter or BackgroundEmitter()
        self.log_sink = log_sink
        self.status_sink = status_sink
        self.state_store = state_store
        self.resume_counts = resume_counts

        self.bus = bus or CommunicationBus(
            registry,
            call_timeout=self.config.worker_timeout_seconds,
            status_sink=status_sink,
            emitter=self.emitter,
        )
        self.queue = queue or TaskQueue(registry, status_sink=status_sink, emitter=self.emitter)
        self.dispatcher = TaskDispatcher(self.queue, self.bus, registry)
        self.goals = goals if goals is not None else GoalEngine()
        self.selector = WorkerSelector(
            registry,
            stability_threshold=self.config.stability_threshold,
            reserved=self.roles.names(),
            rng=rng,
        )
        self.collaboration = CollaborationCoordinator(
            registry,
            self.bus,
            interval=self.config.handoff_interval_seconds,
            max_chain=self.config.max_handoff_chain,
            timeout=self.config.worker_timeout_seconds,
            collaborator=self.roles.collaborator,
            log_sink=log_sink,
            emitter=self.emitter,
        )
        self.cadence = CadencePolicy(self.config)
        self.recovery = RecoveryState(window=self.config.success_window)

        self.metrics = LoopMetrics(period=self.config.period_seconds)
        self.state = LoopState.IDLE
        self._task: asyncio.Task[None] | None = None
        self._session_cycles = 0
        self._resumed = False

    # ------------------------------------------------------------------
    # Construction from YAML config
    # ------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        cfg: AgentLoopYamlConfig,
        *,
        log_sink: LogSink | None = None,
        status_sink: StatusSink | None = None,
        rng: random.Random | None = None,
    ) -> AdaptiveLoopController:
        """Build a controller, registry and sinks from a parsed config file.

        Raises :class:`ConfigurationError` if a worker handler cannot be
        imported.
        """
        registry = WorkerRegistry()
        for wc in cfg.workers:
            handler = resolve_handler(wc.handler) if wc.handler else None
            registry.register(wc.name, wc.capability, handler, priority=wc.priority)

        emitter = BackgroundEmitter(max_size=cfg.sinks.queue_size)
        if status_sink is None:
            status_sink = LoggingStatusSink()
        if log_sink is None:
            log_sink = JsonlLogSink(cfg.persistence.log_path)

        bus = CommunicationBus(
            registry,
            history_size=cfg.bus.history_size,
            call_timeout=cfg.bus.call_timeout_seconds,
            status_sink=status_sink,
            emitter=emitter,
        )
        queue = TaskQueue(
            registry,
            max_concurrent_tasks=cfg.queue.max_concurrent_tasks,
            default_max_retries=cfg.queue.default_max_retries,
            capability_map=cfg.queue.capability_map,
            status_sink=status_sink,
            emitter=emitter,
        )
        goals = GoalEngine([(g.goal, g.priority) for g in cfg.goals]) if cfg.goals else GoalEngine()

        return cls(
            registry,
            config=cfg.loop,
            roles=cfg.roles,
            bus=bus,
            queue=queue,
            goals=goals,
            log_sink=log_sink,
            status_sink=status_sink,
            state_store=LoopStateStore(cfg.persistence.state_path),
            emitter=emitter,
            resume_counts=cfg.persistence.resume_counts,
            rng=rng,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and self.state != LoopState.STOPPED

    def start(self) -> bool:
        """Launch the loop on the running event loop. Returns False if already running."""
        if self.running:
            logger.warning("Loop already running")
            return False
        if self.resume_counts and not self._resumed:
            self._resume_from_store()
        self._resumed = True

        self._session_cycles = 0
        self.state = LoopState.RECOVERY if self.metrics.recovery_mode else LoopState.RUNNING
        self._task = asyncio.get_running_loop().create_task(self._run(), name="agentloop-control-loop")
        logger.info("Adaptive loop started (period=%.2fs)", self.metrics.period)
        self._narrate("Adaptive loop started")
        self._persist()
        return True

    async def stop(self) -> None:
        """Cancel the loop task. No further cycle starts after this returns."""
        task = self._task
        self.state = LoopState.STOPPED
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Adaptive loop stopped after %d cycles", self.metrics.cycles)
        self._narrate("Adaptive loop stopped")
        self._persist()

    async def wait(self) -> None:
        """Block until the loop finishes on its own (``max_cycles``) or is stopped."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    async def close(self) -> None:
        """Stop the loop and everything it started, flushing pending side effects."""
        await self.stop()
        await self.dispatcher.shutdown()
        await self.emitter.close()

    def reset(self) -> None:
        """Zero every counter and return the period to baseline."""
        self.metrics = LoopMetrics(period=self.config.period_seconds)
        reset_window(self.recovery)
        if self.state == LoopState.RECOVERY:
            self.state = LoopState.RUNNING
        logger.info("Loop metrics reset")
        self._persist()

    def get_metrics(self) -> dict[str, Any]:
        m = self.metrics
        return {
            "cycles": m.cycles,
            "errors": m.errors,
            "recoveries": m.recoveries,
            "handoffs": m.handoffs,
            "collaborations": m.collaborations,
            "period": m.period,
            "recovery_mode": m.recovery_mode,
            "last_worker": m.last_worker,
            "consecutive_errors": m.consecutive_errors,
            "state": self.state.value,
        }

    def submit_task(
        self,
        kind: str,
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        payload: Any = None,
        **kwargs: Any,
    ) -> str:
        """Queue ad hoc work for the dispatcher, outside the cycle."""
        return self.dispatcher.submit(kind, priority, payload, **kwargs)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        max_cycles = self.config.max_cycles
        while self.state != LoopState.STOPPED:
            await self.run_cycle()
            if max_cycles is not None and self._session_cycles >= max_cycles:
                logger.info("Reached max_cycles=%d; stopping", max_cycles)
                self.state = LoopState.STOPPED
                self._narrate(f"Loop finished after {self._session_cycles} cycles")
                self._persist()
                break
            await asyncio.sleep(self.metrics.period)

    async def run_cycle(self) -> None:
        """Execute exactly one cycle. Exceptions are absorbed into the metrics."""
        self.metrics.cycles += 1
        self._session_cycles += 1
        cycle = self.metrics.cycles
        try:
            await self._cycle(cycle)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Cycle %d failed", cycle)
            self.metrics.errors += 1
            self.metrics.consecutive_errors += 1
            self._enter_recovery(f"cycle error: {exc}")
            self.metrics.period = self.cadence.slow_down(self.metrics.period)
            self._log("AdaptiveLoop", "Cycle error", f"Error: {exc}", cycle, "error")

        if self.state != LoopState.STOPPED:
            self.state = LoopState.RECOVERY if self.metrics.recovery_mode else LoopState.RUNNING
        self._narrate(
            f"Cycle {cycle}: worker={self.metrics.last_worker or '-'} "
            f"period={self.metrics.period:.2f}s recovery={self.metrics.recovery_mode}"
        )
        self._persist()

    async def _cycle(self, cycle: int) -> None:
        cfg = self.config

        if cycle % cfg.health_check_every == 0:
            await self._health_check(cycle)

        if cycle % cfg.meta_analysis_every == 0:
            await self._meta_analysis(cycle)

        goal_task = None if self.metrics.recovery_mode else self.goals.next_subgoal()
        worker = self.selector.select(recovery_mode=self.metrics.recovery_mode, goal_task=goal_task)
        if worker is None:
            logger.warning("No workers registered; skipping dispatch for cycle %d", cycle)
            self._log("AdaptiveLoop", "Selection", "No workers available", cycle, "warning")
            return

        result = await self._dispatch(worker, goal_task, cycle)

        if result is not None:
            outcome = await self.collaboration.handle_handoff(worker.name, result, goal_task, cycle=cycle)
            self.metrics.handoffs += outcome.hops
            if outcome.failed_worker:
                self.metrics.errors += 1
                self.registry.adjust_priority(outcome.failed_worker, -cfg.failure_weight_delta)

        if cycle % cfg.collaboration_every == 0:
            if await self.collaboration.initiate_collaboration(cycle, goal_task):
                self.metrics.collaborations += 1

    # ------------------------------------------------------------------
    # Cycle steps
    # ------------------------------------------------------------------

    async def _dispatch(self, worker: Worker, goal_task: GoalTask | None, cycle: int) -> WorkerResult | None:
        self.registry.set_status(worker.name, WorkerStatus.RUNNING)
        self.metrics.last_worker = worker.name
        context: dict[str, Any] = {
            "cycle": cycle,
            "recovery_mode": self.metrics.recovery_mode,
            "goal": goal_task.goal if goal_task else None,
            "subgoal": goal_task.subgoal if goal_task else None,
        }
        try:
            result = await invoke_with_timeout(worker, context, self.config.worker_timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._record_failure(worker.name, f"Error: {exc}", cycle)
            return None

        if result.success:
            self._record_success(worker.name, result.message, cycle)
        else:
            self._record_failure(worker.name, result.message or "Worker reported failure", cycle)
        return result

    async def _health_check(self, cycle: int) -> None:
        supervisor = self.registry.get(self.roles.supervisor) if self.roles.supervisor else None
        if supervisor is None:
            self._settle_if_clean()
            return
        try:
            result = await invoke_with_timeout(
                supervisor,
                {"action": "health_check", "cycle": cycle, "metrics": self.get_metrics()},
                self.config.worker_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Health check failed: %s", exc)
            self.metrics.errors += 1
            self.metrics.consecutive_errors += 1
            self._enter_recovery("health check failed")
            self.metrics.period = self.cadence.slow_down(self.metrics.period)
            self._log(supervisor.name, "Health check", f"Error: {exc}", cycle, "error")
            return

        detected = _count_errors(result.data.get("errors_detected"))
        if detected > 0:
            logger.warning("Health check found %d errors", detected)
            self._enter_recovery(f"{detected} errors detected")
            self.metrics.period = self.cadence.slow_down(self.metrics.period)
            self._log(supervisor.name, "Health check", f"{detected} errors detected", cycle, "warning")
            await self._invoke_recovery_worker(cycle, result.data.get("errors_detected"))
            return

        self._settle_if_clean()
        self._log(supervisor.name, "Health check", result.message or "System healthy", cycle, "info")

    def _settle_if_clean(self) -> None:
        if self.metrics.consecutive_errors != 0:
            return
        if self.metrics.recovery_mode:
            self.metrics.recovery_mode = False
            logger.info("Health check clean; leaving recovery mode")
            self._narrate("System stabilized; leaving recovery mode")
        self.metrics.period = self.cadence.relax(self.metrics.period)

    async def _invoke_recovery_worker(self, cycle: int, errors: Any) -> None:
        worker = self.registry.get(self.roles.recovery) if self.roles.recovery else None
        if worker is None:
            return
        result, exc = await invoke_safely(
            worker,
            {"action": "recover", "errors": errors, "cycle": cycle},
            self.config.worker_timeout_seconds,
        )
        if exc is None and result.success:
            self.metrics.consecutive_errors = max(0, self.metrics.consecutive_errors - 1)
            self._log(worker.name, "Error recovery", result.message or "Recovered", cycle, "success")
        else:
            self._log(worker.name, "Error recovery", result.message, cycle, "error")

    async def _meta_analysis(self, cycle: int) -> None:
        rate: float | None = None
        analyst = self.registry.get(self.roles.analyst) if self.roles.analyst else None
        if analyst is not None:
            result, exc = await invoke_safely(
                analyst,
                {"action": "analyze", "cycle": cycle, "metrics": self.get_metrics()},
                self.config.worker_timeout_seconds,
            )
            if exc is None:
                rate = normalize_success_rate(result.data.get("success_rate"))
        if rate is None:
            rate = rolling_success_rate(self.recovery)
        if rate is None or self.metrics.recovery_mode:
            return

        before = self.metrics.period
        self.metrics.period = self.cadence.adapt_to_success_rate(before, rate)
        if self.metrics.period != before:
            logger.info(
                "Meta-analysis: success rate %.0f%%, period %.2fs -> %.2fs",
                rate * 100, before, self.metrics.period,
            )

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _record_success(self, name: str, message: str, cycle: int) -> None:
        self.metrics.consecutive_errors = 0
        self.registry.adjust_priority(name, self.config.success_weight_delta)
        self.registry.set_status(name, WorkerStatus.IDLE)
        self.registry.record_outcome(name, message)
        record_outcome(self.recovery, True)
        self._log(name, "Execute", message or "Completed", cycle, "success")

    def _record_failure(self, name: str, message: str, cycle: int) -> None:
        self.metrics.consecutive_errors += 1
        self.metrics.errors += 1
        self.registry.adjust_priority(name, -self.config.failure_weight_delta)
        self.registry.set_status(name, WorkerStatus.ERROR)
        self.registry.record_outcome(name, message)
        record_outcome(self.recovery, False)
        logger.warning("Worker %s failed: %s", name, message)
        self._log(name, "Execute", message, cycle, "error")
        if (
            self.metrics.consecutive_errors >= self.config.consecutive_error_threshold
            and not self.metrics.recovery_mode
        ):
            self._enter_recovery(f"{self.metrics.consecutive_errors} consecutive errors")
            self.metrics.period = self.cadence.slow_down(self.metrics.period)

    def _enter_recovery(self, reason: str) -> None:
        if self.metrics.recovery_mode:
            return
        self.metrics.recovery_mode = True
        self.metrics.recoveries += 1
        if self.state != LoopState.STOPPED:
            self.state = LoopState.RECOVERY
        logger.warning("Entering recovery mode: %s", reason)
        self._narrate(f"Entering recovery mode: {reason}")

    def _resume_from_store(self) -> None:
        if self.state_store is None:
            return
        snapshot = self.state_store.load()
        if snapshot is None:
            return
        for name in RESUMABLE_COUNTERS:
            value = snapshot.metrics.get(name)
            if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
                setattr(self.metrics, name, value)
        logger.info("Resumed counters from %s (cycles=%d)", self.state_store.path, self.metrics.cycles)

    def _persist(self) -> None:
        if self.state_store is None:
            return
        self.state_store.save(
            LoopStateSnapshot(
                running=self.running,
                recovery_mode=self.metrics.recovery_mode,
                state=self.state.value,
                metrics=self.get_metrics(),
                workers=self.registry.snapshot(),
            )
        )

    def _log(self, worker: str, action: str, text: str, cycle: int | None, level: str) -> None:
        self.emitter.log(
            self.log_sink,
            LogEntry(worker=worker, action=action, result=text, cycle=cycle, level=level),
        )

    def _narrate(self, text: str) -> None:
        self.emitter.notify(self.status_sink, text)
