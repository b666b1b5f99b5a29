"""Shared test helpers for the agentloop test suite."""

from __future__ import annotations

from tests.helpers.workers import (
    counting_handler,
    failing_handler,
    hanging_handler,
    ok_handler,
    result_handler,
)

__all__ = [
    "counting_handler",
    "failing_handler",
    "hanging_handler",
    "ok_handler",
    "result_handler",
]
