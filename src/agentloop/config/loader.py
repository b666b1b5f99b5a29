"""YAML config loader for agentloop."""

from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Any

import yaml

from agentloop.config.schema import (
    AgentLoopYamlConfig,
    BusConfig,
    GoalConfig,
    LoopConfig,
    PersistenceConfig,
    QueueConfig,
    RolesConfig,
    SinksConfig,
    WorkerConfig,
)
from agentloop.errors import ConfigurationError
from agentloop.types import WorkerHandler

logger = logging.getLogger(__name__)


def load_agentloop_yaml(path: str | Path) -> AgentLoopYamlConfig:
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) if p.exists() else {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Malformed YAML in {p}: {exc}") from exc
    return parse_agentloop_config(raw)


def parse_agentloop_config(raw: Any) -> AgentLoopYamlConfig:
    if not isinstance(raw, dict):
        raw = {}

    loop = LoopConfig(**_pick(_section(raw, "loop"), LoopConfig))
    queue = QueueConfig(**_pick(_section(raw, "queue"), QueueConfig))
    bus = BusConfig(**_pick(_section(raw, "bus"), BusConfig))
    roles = RolesConfig(**_pick(_section(raw, "roles"), RolesConfig))
    persistence = PersistenceConfig(**_pick(_section(raw, "persistence"), PersistenceConfig))
    sinks = SinksConfig(**_pick(_section(raw, "sinks"), SinksConfig))

    workers: list[WorkerConfig] = []
    raw_workers = raw.get("workers", [])
    if isinstance(raw_workers, list):
        for item in raw_workers:
            if isinstance(item, dict) and "name" in item and "capability" in item:
                workers.append(WorkerConfig(**_pick(item, WorkerConfig)))
            else:
                logger.warning("Ignoring worker entry without name/capability: %r", item)

    goals: list[GoalConfig] = []
    raw_goals = raw.get("goals", [])
    if isinstance(raw_goals, list):
        for item in raw_goals:
            if isinstance(item, str):
                goals.append(GoalConfig(goal=item))
            elif isinstance(item, dict) and "goal" in item:
                goals.append(GoalConfig(**_pick(item, GoalConfig)))

    cfg = AgentLoopYamlConfig(
        version=int(raw.get("version", 1)),
        loop=loop,
        queue=queue,
        bus=bus,
        roles=roles,
        workers=workers,
        goals=goals,
        persistence=persistence,
        sinks=sinks,
    )
    validate_config(cfg)
    return cfg


def validate_config(cfg: AgentLoopYamlConfig) -> None:
    """Raise ``ConfigurationError`` for values the controller cannot run with."""
    loop = cfg.loop
    if loop.min_period_seconds <= 0:
        raise ConfigurationError("loop.min_period_seconds must be > 0")
    if not loop.min_period_seconds <= loop.period_seconds <= loop.max_period_seconds:
        raise ConfigurationError(
            "loop.period_seconds must lie between min_period_seconds and max_period_seconds"
        )
    if loop.worker_timeout_seconds <= 0:
        raise ConfigurationError("loop.worker_timeout_seconds must be > 0")
    for name in ("health_check_every", "meta_analysis_every", "collaboration_every"):
        if getattr(loop, name) < 1:
            raise ConfigurationError(f"loop.{name} must be >= 1")
    if loop.max_cycles is not None and loop.max_cycles < 1:
        raise ConfigurationError("loop.max_cycles must be >= 1 when set")
    if not 0.0 <= loop.success_low_water <= loop.success_high_water <= 1.0:
        raise ConfigurationError("loop.success_low_water <= success_high_water must lie in [0, 1]")
    if loop.recovery_slowdown_factor < 1.0 or loop.meta_slowdown_factor < 1.0:
        raise ConfigurationError("slowdown factors must be >= 1.0")
    if not 0.0 < loop.relax_factor <= 1.0 or not 0.0 < loop.meta_speedup_factor <= 1.0:
        raise ConfigurationError("relax_factor and meta_speedup_factor must lie in (0, 1]")
    if loop.meta_analysis_every <= loop.health_check_every:
        logger.warning(
            "meta_analysis_every (%d) <= health_check_every (%d); meta-analysis will run as often as health checks",
            loop.meta_analysis_every, loop.health_check_every,
        )
    if cfg.queue.max_concurrent_tasks < 1:
        raise ConfigurationError("queue.max_concurrent_tasks must be >= 1")
    if cfg.queue.default_max_retries < 1:
        raise ConfigurationError("queue.default_max_retries must be >= 1")
    if cfg.bus.history_size < 1:
        raise ConfigurationError("bus.history_size must be >= 1")
    if cfg.sinks.queue_size < 1:
        raise ConfigurationError("sinks.queue_size must be >= 1")

    names = [w.name for w in cfg.workers]
    dupes = {n for n in names if names.count(n) > 1}
    if dupes:
        logger.warning("Duplicate worker names in config (first entry wins): %s", ", ".join(sorted(dupes)))
    for role in cfg.roles.names():
        if cfg.workers and role not in names:
            raise ConfigurationError(f"Role worker '{role}' is not declared under workers")


def resolve_handler(spec: str) -> WorkerHandler:
    """Import a worker handler from a ``module:attribute`` path."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Handler must look like 'module:attribute', got {spec!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import handler module {module_name!r}: {exc}") from exc
    target: Any = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ConfigurationError(f"Handler {spec!r} not found") from exc
    if not callable(target):
        raise ConfigurationError(f"Handler {spec!r} is not callable")
    return target


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key, {})
    return value if isinstance(value, dict) else {}


def _pick(raw: dict[str, Any], model_type: type[Any]) -> dict[str, Any]:
    allowed = set(model_type.__dataclass_fields__.keys())
    return {k: v for k, v in raw.items() if k in allowed}
