"""Loop state snapshot persistence.

The controller writes a small JSON snapshot after every cycle so an external
supervisor can observe progress, and so a restarted loop can resume its
counters.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agentloop.types import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LoopStateSnapshot:
    running: bool
    recovery_mode: bool
    state: str
    metrics: dict[str, Any] = field(default_factory=dict)
    workers: list[dict[str, Any]] = field(default_factory=list)
    updated_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "recovery_mode": self.recovery_mode,
            "state": self.state,
            "metrics": self.metrics,
            "workers": self.workers,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> LoopStateSnapshot:
        metrics = raw.get("metrics", {})
        workers = raw.get("workers", [])
        return cls(
            running=bool(raw.get("running", False)),
            recovery_mode=bool(raw.get("recovery_mode", False)),
            state=str(raw.get("state", "idle")),
            metrics=metrics if isinstance(metrics, dict) else {},
            workers=[w for w in workers if isinstance(w, dict)] if isinstance(workers, list) else [],
            updated_at=str(raw.get("updated_at", "")),
        )


class LoopStateStore:
    """Atomic JSON snapshot file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def save(self, snapshot: LoopStateSnapshot) -> bool:
        """Write *snapshot*. Returns False (and logs) instead of raising on IO errors."""
        try:
            write_json_atomic(self.path, snapshot.to_dict())
            return True
        except OSError as exc:
            logger.warning("Could not persist loop state to %s: %s", self.path, exc)
            return False

    def load(self) -> LoopStateSnapshot | None:
        raw = read_json(self.path, default=None)
        if not isinstance(raw, dict):
            return None
        return LoopStateSnapshot.from_dict(raw)

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove %s: %s", self.path, exc)


def read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return default


def write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    payload = json.dumps(data, indent=2) + "\n"
    with tmp.open("w", encoding="utf-8") as handle:
        handle.write(payload)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp, path)
