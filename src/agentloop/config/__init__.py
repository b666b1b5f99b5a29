"""Agentloop configuration."""

from agentloop.config.loader import load_agentloop_yaml, parse_agentloop_config, resolve_handler
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

__all__ = [
    "AgentLoopYamlConfig",
    "BusConfig",
    "GoalConfig",
    "LoopConfig",
    "PersistenceConfig",
    "QueueConfig",
    "RolesConfig",
    "SinksConfig",
    "WorkerConfig",
    "load_agentloop_yaml",
    "parse_agentloop_config",
    "resolve_handler",
]
