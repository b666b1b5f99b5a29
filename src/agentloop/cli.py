"""CLI entrypoint for agentloop."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import click

from agentloop.config.loader import load_agentloop_yaml
from agentloop.controller import AdaptiveLoopController
from agentloop.errors import ConfigurationError
from agentloop.sinks import JsonlLogSink
from agentloop.state_store import LoopStateStore

logger = logging.getLogger(__name__)


@click.group()
def main() -> None:
    """Agentloop adaptive multi-worker scheduler."""


async def _run_controller(controller: AdaptiveLoopController) -> None:
    controller.start()
    try:
        await controller.wait()
    finally:
        await controller.close()


@main.command("run")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--max-cycles", type=click.IntRange(min=1), default=None, help="Stop after N cycles")
@click.option("--debug", "debug_flag", is_flag=True, help="Enable debug logging")
def run_command(config_path: Path, max_cycles: int | None, debug_flag: bool) -> None:
    """Run the control loop described by CONFIG_PATH."""
    logging.basicConfig(
        level=logging.DEBUG if debug_flag else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        cfg = load_agentloop_yaml(config_path)
        if max_cycles is not None:
            cfg.loop.max_cycles = max_cycles
        controller = AdaptiveLoopController.from_config(cfg)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    if not len(controller.registry):
        raise click.ClickException("No workers configured")

    try:
        asyncio.run(_run_controller(controller))
    except KeyboardInterrupt:
        click.echo("Interrupted")
    click.echo(json.dumps(controller.get_metrics(), indent=2))


@main.command("status")
@click.argument("state_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--workers/--no-workers", "show_workers", default=True, help="Show per-worker state")
def status_command(state_path: Path, show_workers: bool) -> None:
    """Show the last persisted loop snapshot."""
    snapshot = LoopStateStore(state_path).load()
    if snapshot is None:
        raise click.ClickException(f"No loop state at {state_path}")
    m = snapshot.metrics
    click.echo(
        f"state={snapshot.state} running={snapshot.running} recovery_mode={snapshot.recovery_mode}"
    )
    click.echo(
        f"cycles={m.get('cycles', 0)} errors={m.get('errors', 0)} recoveries={m.get('recoveries', 0)} "
        f"handoffs={m.get('handoffs', 0)} collaborations={m.get('collaborations', 0)} "
        f"period={m.get('period', 0)}"
    )
    click.echo(f"last_worker={m.get('last_worker') or '-'} updated_at={snapshot.updated_at}")
    if show_workers:
        for w in snapshot.workers:
            click.echo(
                f"  {w.get('name')}: {w.get('status')} priority={w.get('priority')} "
                f"capability={w.get('capability')}"
            )


@main.command("log")
@click.argument("log_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--tail", default=30, help="How many recent entries to show")
@click.option("--worker", default=None, help="Filter by worker name")
def log_command(log_path: Path, tail: int, worker: str | None) -> None:
    """Show recent loop log entries."""
    rows = JsonlLogSink(log_path).read()
    if not rows:
        click.echo(f"No log entries at {log_path}")
        return
    if worker:
        rows = [r for r in rows if r.get("worker") == worker]
    for row in rows[-max(tail, 1):]:
        click.echo(
            f"[{row.get('level', 'info')}] cycle={row.get('cycle')} {row.get('worker')}: "
            f"{row.get('action')} -> {row.get('result')}"
        )


@main.command("reset")
@click.argument("state_path", type=click.Path(dir_okay=False, path_type=Path))
def reset_command(state_path: Path) -> None:
    """Delete the persisted snapshot so the next run starts from zero."""
    if not state_path.exists():
        click.echo(f"Nothing to reset at {state_path}")
        return
    LoopStateStore(state_path).clear()
    click.echo(f"Removed {state_path}")


if __name__ == "__main__":
    main()
