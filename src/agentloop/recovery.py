"""Loop recovery: cadence adjustments and the rolling success window.

Provides the two adaptive behaviours of the control loop:
- Cadence policy: slows the cycle period under errors, relaxes it back toward
  baseline once healthy, and tunes it from observed success rates
- Recovery state: rolling window of recent invocation outcomes, used when no
  analyst worker reports a success rate
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from agentloop.config.schema import LoopConfig

logger = logging.getLogger(__name__)

# =============================================================================
# Cadence Policy
# =============================================================================


class CadencePolicy:
    """Period arithmetic over a :class:`LoopConfig`. All methods are pure."""

    def __init__(self, config: LoopConfig) -> None:
        self._config = config

    @property
    def baseline(self) -> float:
        return self._config.period_seconds

    def clamp(self, period: float) -> float:
        return max(self._config.min_period_seconds, min(self._config.max_period_seconds, period))

    def slow_down(self, period: float) -> float:
        """Multiply by the recovery slowdown factor, capped at the maximum period."""
        return min(period * self._config.recovery_slowdown_factor, self._config.max_period_seconds)

    def relax(self, period: float) -> float:
        """Decay toward baseline. Periods at or below baseline are left alone."""
        if period <= self.baseline:
            return period
        return max(period * self._config.relax_factor, self.baseline)

    def adapt_to_success_rate(self, period: float, rate: float) -> float:
        """Speed up above the high-water mark, slow down below the low-water mark."""
        if rate > self._config.success_high_water:
            return max(period * self._config.meta_speedup_factor, self._config.min_period_seconds)
        if rate < self._config.success_low_water:
            return min(period * self._config.meta_slowdown_factor, self._config.max_period_seconds)
        return period


def normalize_success_rate(value: Any) -> float | None:
    """Accept a 0..1 fraction or a 0..100 percentage; anything else is ``None``."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    rate = float(value)
    if rate != rate or rate < 0:  # NaN or negative
        return None
    if rate > 1:
        rate /= 100.0
    return min(rate, 1.0)


# =============================================================================
# Recovery State
# =============================================================================


@dataclass
class RecoveryState:
    """Mutable state tracked across a run for recovery decisions."""

    window: int = 20
    outcomes: deque[bool] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self.outcomes = deque(self.outcomes, maxlen=max(1, self.window))


def record_outcome(state: RecoveryState, success: bool) -> None:
    state.outcomes.append(success)


def rolling_success_rate(state: RecoveryState) -> float | None:
    """Fraction of successes in the window, or ``None`` before any outcome."""
    if not state.outcomes:
        return None
    return sum(state.outcomes) / len(state.outcomes)


def reset_window(state: RecoveryState) -> None:
    state.outcomes.clear()
