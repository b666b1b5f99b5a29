"""Global test fixtures for agentloop."""

from __future__ import annotations

import random
from typing import Any

import pytest

from agentloop.config.schema import LoopConfig, RolesConfig
from agentloop.controller import AdaptiveLoopController
from agentloop.registry import WorkerRegistry
from agentloop.sinks import MemoryLogSink, MemoryStatusSink
from agentloop.state_store import LoopStateStore


@pytest.fixture
def registry() -> WorkerRegistry:
    return WorkerRegistry()


@pytest.fixture
def log_sink() -> MemoryLogSink:
    return MemoryLogSink()


@pytest.fixture
def status_sink() -> MemoryStatusSink:
    return MemoryStatusSink()


@pytest.fixture
def make_controller(registry: WorkerRegistry, log_sink: MemoryLogSink, status_sink: MemoryStatusSink):
    """Factory for controllers with in-memory sinks and a seeded RNG."""

    def _make(
        roles: RolesConfig | None = None,
        *,
        state_store: LoopStateStore | None = None,
        resume_counts: bool = False,
        **loop_overrides: Any,
    ) -> AdaptiveLoopController:
        return AdaptiveLoopController(
            registry,
            config=LoopConfig(**loop_overrides),
            roles=roles,
            log_sink=log_sink,
            status_sink=status_sink,
            state_store=state_store,
            resume_counts=resume_counts,
            rng=random.Random(7),
        )

    return _make
