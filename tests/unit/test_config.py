"""Tests for agentloop YAML config loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from agentloop.config.loader import load_agentloop_yaml, parse_agentloop_config, resolve_handler
from agentloop.errors import ConfigurationError

SAMPLE = """\
version: 1
loop:
  period_seconds: 2
  max_cycles: 5
  health_check_every: 3
  unknown_knob: ignored
queue:
  max_concurrent_tasks: 4
roles:
  supervisor: Watcher
workers:
  - name: Watcher
    capability: monitor
  - name: Researcher
    capability: research
    priority: 3
    handler: "tests.helpers.workers:ok_handler"
  - just a string
goals:
  - Grow revenue
  - goal: Reduce churn
    priority: 2
"""


class TestLoadConfig:
    def test_defaults_when_missing(self, tmp_path: Path) -> None:
        cfg = load_agentloop_yaml(tmp_path / "absent.yaml")
        assert cfg.loop.period_seconds == 3.0
        assert cfg.loop.worker_timeout_seconds == 10.0
        assert cfg.queue.max_concurrent_tasks == 10
        assert cfg.queue.capability_map["error_fix"] == "repair"
        assert cfg.workers == []

    def test_sample_file(self, tmp_path: Path) -> None:
        path = tmp_path / "agentloop.yaml"
        path.write_text(SAMPLE, encoding="utf-8")
        cfg = load_agentloop_yaml(path)
        assert cfg.loop.period_seconds == 2
        assert cfg.loop.max_cycles == 5
        assert cfg.loop.health_check_every == 3
        assert cfg.queue.max_concurrent_tasks == 4
        assert cfg.roles.supervisor == "Watcher"
        assert [w.name for w in cfg.workers] == ["Watcher", "Researcher"]
        assert cfg.workers[1].priority == 3
        assert [(g.goal, g.priority) for g in cfg.goals] == [("Grow revenue", 1), ("Reduce churn", 2)]

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("loop: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_agentloop_yaml(path)


class TestValidation:
    @pytest.mark.parametrize(
        "raw",
        [
            {"loop": {"period_seconds": 100}},
            {"loop": {"min_period_seconds": 0}},
            {"loop": {"worker_timeout_seconds": 0}},
            {"loop": {"health_check_every": 0}},
            {"loop": {"max_cycles": 0}},
            {"loop": {"success_low_water": 0.9, "success_high_water": 0.5}},
            {"loop": {"recovery_slowdown_factor": 0.5}},
            {"loop": {"relax_factor": 1.5}},
            {"queue": {"max_concurrent_tasks": 0}},
            {"bus": {"history_size": 0}},
            {"roles": {"analyst": "Ghost"}, "workers": [{"name": "A", "capability": "x"}]},
        ],
    )
    def test_invalid_values_rejected(self, raw) -> None:
        with pytest.raises(ConfigurationError):
            parse_agentloop_config(raw)

    def test_non_mapping_yields_defaults(self) -> None:
        cfg = parse_agentloop_config(["not", "a", "mapping"])
        assert cfg.loop.health_check_every == 5

    def test_sinks_section_only_sizes_the_emitter(self) -> None:
        cfg = parse_agentloop_config({"sinks": {"queue_size": 8, "memory_log_limit": 5}})
        assert cfg.sinks.queue_size == 8
        assert not hasattr(cfg.sinks, "memory_log_limit")


class TestResolveHandler:
    def test_resolves_module_attribute(self) -> None:
        from tests.helpers.workers import ok_handler

        assert resolve_handler("tests.helpers.workers:ok_handler") is ok_handler

    @pytest.mark.parametrize(
        "spec",
        ["no_colon", "missing.module.xyz:handler", "tests.helpers.workers:nope", ":attr"],
    )
    def test_bad_specs(self, spec: str) -> None:
        with pytest.raises(ConfigurationError):
            resolve_handler(spec)
