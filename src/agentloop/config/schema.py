"""Configuration schema for agentloop YAML files."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class LoopConfig:
    period_seconds: float = 3.0
    min_period_seconds: float = 0.5
    max_period_seconds: float = 30.0
    max_cycles: int | None = None
    worker_timeout_seconds: float = 10.0
    health_check_every: int = 5
    meta_analysis_every: int = 10
    collaboration_every: int = 15
    recovery_slowdown_factor: float = 1.5
    relax_factor: float = 0.9  # multiplicative decay back toward period_seconds
    meta_speedup_factor: float = 0.9
    meta_slowdown_factor: float = 1.2
    success_high_water: float = 0.85
    success_low_water: float = 0.60
    success_window: int = 20  # recent outcomes used when no analyst reports a rate
    consecutive_error_threshold: int = 3
    stability_threshold: int = 3
    success_weight_delta: int = 1
    failure_weight_delta: int = 2
    handoff_interval_seconds: float = 5.0
    max_handoff_chain: int = 3


@dataclass(slots=True)
class QueueConfig:
    max_concurrent_tasks: int = 10
    default_max_retries: int = 3
    capability_map: dict[str, str] = field(
        default_factory=lambda: {
            "error_fix": "repair",
            "system_repair": "repair",
            "code_generation": "codegen",
            "optimization": "optimization",
            "lead_generation": "lead_generation",
        }
    )


@dataclass(slots=True)
class BusConfig:
    history_size: int = 200
    call_timeout_seconds: float = 10.0


@dataclass(slots=True)
class RolesConfig:
    """Designated system workers, by name. Empty string disables the role."""

    supervisor: str = ""
    analyst: str = ""
    collaborator: str = ""
    recovery: str = ""

    def names(self) -> set[str]:
        return {n for n in (self.supervisor, self.analyst, self.collaborator, self.recovery) if n}


@dataclass(slots=True)
class WorkerConfig:
    name: str
    capability: str
    handler: str = ""  # "package.module:attribute"
    priority: int = 1


@dataclass(slots=True)
class GoalConfig:
    goal: str
    priority: int = 1


@dataclass(slots=True)
class PersistenceConfig:
    state_path: str = ".agentloop/state.json"
    log_path: str = ".agentloop/log.jsonl"
    resume_counts: bool = True


@dataclass(slots=True)
class SinksConfig:
    queue_size: int = 256


@dataclass(slots=True)
class AgentLoopYamlConfig:
    version: int = 1
    loop: LoopConfig = field(default_factory=LoopConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    bus: BusConfig = field(default_factory=BusConfig)
    roles: RolesConfig = field(default_factory=RolesConfig)
    workers: list[WorkerConfig] = field(default_factory=list)
    goals: list[GoalConfig] = field(default_factory=list)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    sinks: SinksConfig = field(default_factory=SinksConfig)
