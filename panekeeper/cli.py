#!/usr/bin/env python3
"""
Module: cli
Purpose: Command-line interface for Panekeeper worker pane supervision

Each invocation is a fresh process, so tracked pane and pid ids are
rebuilt from the file control store (reconciled against the live
multiplexer and process table) before any command runs.

Key Functions:
    - cli(): Main CLI group
    - spawn(): Start a worker in a new pane (or standalone session)
    - stop(): Run the shutdown sequence for one or more workers
    - close(): Close panes by id
    - panes() / workers() / history(): Inspection

Usage:
    panekeeper spawn SNTGreen --cwd ~/src/app --input "Fix the build"
    panekeeper workers
    panekeeper stop team-sntgreen001 --reason "task complete"
    panekeeper close 12 13 --force
"""

import click
import json
import sys
from pathlib import Path

from . import __version__
from .config import Config, DEFAULT_CONFIG_PATH
from .exceptions import PanekeeperError, StopFailure
from .shutdown import StageOutcome
from .spawner import WorkerConfig
from .supervisor import WorkerSupervisor
from .utils import setup_logging


@click.group()
@click.version_option(version=__version__)
@click.option('--config', '-c', type=click.Path(), help='Configuration file path')
@click.pass_context
def cli(ctx, config):
    """Panekeeper - worker pane lifecycle supervision"""
    ctx.ensure_object(dict)

    # Load configuration
    config_path = Path(config) if config else DEFAULT_CONFIG_PATH
    ctx.obj['config_path'] = config_path
    try:
        ctx.obj['config'] = Config.load(config_path)
    except (PanekeeperError, OSError) as e:
        click.echo(f"Error: Failed to load configuration: {e}", err=True)
        sys.exit(1)

    # Setup logging
    setup_logging(ctx.obj['config'].log_level)


def _supervisor(ctx, reconcile: bool = True) -> WorkerSupervisor:
    """Supervisor for this invocation, with state restored from the store"""
    supervisor = ctx.obj.get('supervisor')
    if supervisor is None:
        try:
            supervisor = WorkerSupervisor.from_config(ctx.obj['config'])
        except PanekeeperError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        ctx.obj['supervisor'] = supervisor

    if reconcile:
        supervisor.reconcile(log_events=False)
    return supervisor


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@cli.command()
@click.option('--state-dir', type=click.Path(), help='Directory for launcher scripts and records')
@click.pass_context
def init(ctx, state_dir):
    """Initialize Panekeeper configuration"""
    config_file = ctx.obj['config_path']
    if config_file.exists():
        click.confirm("Configuration already exists. Overwrite?", abort=True)

    # Create default configuration
    config = Config()
    if state_dir:
        config.set('state_dir', str(Path(state_dir).expanduser().resolve()))
    config.save(config_file)
    click.echo(f"Created configuration at {config_file}")

    (config.state_dir / 'launchers').mkdir(parents=True, exist_ok=True)

    click.echo("Panekeeper initialized successfully!")


@cli.command()
@click.argument('name')
@click.option('--id', 'worker_id', help='Worker id (generated from NAME if omitted)')
@click.option('--cwd', type=click.Path(), default='.', help='Working directory for the worker')
@click.option('--command', 'command', help='Command to run instead of the configured worker command')
@click.option('--model', help='Model passed to the worker command')
@click.option('--input', 'initial_input', help='Initial input passed to the worker')
@click.pass_context
def spawn(ctx, name, worker_id, cwd, command, model, initial_input):
    """Start a worker in a new pane

    Falls back to a standalone session when no multiplexer server is
    reachable; such workers have no pane id but are still tracked by pid.
    """
    config = ctx.obj['config']
    supervisor = _supervisor(ctx)

    worker = WorkerConfig(
        name=name,
        command=command.split() if command else config.worker_command,
        model=model
    )
    work_dir = str(Path(cwd).expanduser().resolve())

    try:
        result = supervisor.spawn(worker, worker_id, work_dir, initial_input)
    except (PanekeeperError, ValueError) as e:
        _fail(str(e))

    spawned_id = worker_id or supervisor.registry.worker_by_pid(result.os_pid)
    pane = result.pane_id if result.pane_tracked else 'untracked'
    click.echo(f"Spawned {spawned_id} (pid {result.os_pid}, pane {pane})")


@cli.command()
@click.argument('worker_ids', nargs=-1)
@click.option('--all', '-a', 'stop_all', is_flag=True, help='Stop every tracked worker')
@click.option('--reason', '-r', default='manual stop', help='Reason recorded with the stop')
@click.pass_context
def stop(ctx, worker_ids, stop_all, reason):
    """Stop workers, trying every shutdown stage"""
    supervisor = _supervisor(ctx)

    if stop_all:
        worker_ids = sorted(supervisor.running_workers())
    if not worker_ids:
        _fail("Please provide worker ids or use --all")

    if len(worker_ids) == 1:
        try:
            report = supervisor.stop(worker_ids[0], reason)
        except StopFailure as e:
            for error in (e.report.errors if e.report else []):
                click.echo(f"  {error}", err=True)
            _fail(str(e))
        except PanekeeperError as e:
            _fail(str(e))

        for result in report.results:
            if result.outcome != StageOutcome.SKIPPED:
                click.echo(f"  {result.stage.value}: {result.outcome.value} {result.detail}".rstrip())
        if report.survivors:
            click.echo(f"Warning: still running: {report.survivors}", err=True)
        click.echo(f"Worker {worker_ids[0]} stopped")
        return

    errors = supervisor.stop_many(worker_ids, reason)
    for error in errors:
        click.echo(f"  {error}", err=True)
    click.echo(f"Stopped {len(worker_ids) - len(errors)} of {len(worker_ids)} workers")
    if errors:
        sys.exit(1)


@cli.command()
@click.argument('pane_ids', nargs=-1, type=int, required=True)
@click.option('--force', '-f', is_flag=True, help='Kill immediately without Ctrl+C / exit')
@click.pass_context
def close(ctx, pane_ids, force):
    """Close panes by id"""
    supervisor = _supervisor(ctx, reconcile=False)

    failures = supervisor.close_panes(pane_ids, graceful=not force)
    for pane_id, error in failures.items():
        click.echo(f"  pane {pane_id}: {error}", err=True)
    click.echo(f"Closed {len(pane_ids) - len(failures)} of {len(pane_ids)} panes")
    if failures:
        sys.exit(1)


@cli.command()
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
@click.pass_context
def panes(ctx, as_json):
    """List panes known to the multiplexer server"""
    supervisor = _supervisor(ctx, reconcile=False)

    try:
        pane_list = supervisor.list_panes()
    except PanekeeperError as e:
        _fail(str(e))

    if as_json:
        click.echo(json.dumps([p.to_dict() for p in pane_list], indent=2))
        return

    if not pane_list:
        click.echo("No panes found")
        return

    for pane in pane_list:
        marker = '*' if pane.is_active else ' '
        click.echo(f"{marker} {pane.pane_id:>4}  {pane.title:<40}  {pane.cwd}")


@cli.command()
@click.pass_context
def workers(ctx):
    """List tracked workers"""
    supervisor = _supervisor(ctx)

    running = supervisor.running_workers()
    if not running:
        click.echo("No running workers")
        return

    click.echo(f"Running Workers ({len(running)}):")
    for worker_id, pid in sorted(running.items()):
        pane_id = supervisor.get_pane_id(worker_id)
        pane = pane_id if pane_id is not None else 'untracked'
        alive = 'alive' if supervisor.is_running(pid) else 'gone'
        click.echo(f"  {worker_id}  pid {pid} ({alive})  pane {pane}")


@cli.command()
@click.argument('worker_id')
@click.option('--limit', '-l', type=int, default=20, help='Number of events to show')
@click.pass_context
def history(ctx, worker_id, limit):
    """Show pane lifecycle events for a worker, newest first"""
    supervisor = _supervisor(ctx, reconcile=False)

    events = supervisor.pane_history(worker_id, limit)
    if not events:
        click.echo(f"No pane history for {worker_id}")
        return

    for event in events:
        pane = event.pane_id if event.pane_id is not None else '-'
        line = f"{event.timestamp:%Y-%m-%d %H:%M:%S}  {event.action.value:<10}  pane {pane}"
        if event.details:
            line += f"  {event.details}"
        click.echo(line)


@cli.command()
@click.pass_context
def reconcile(ctx):
    """Restore tracking from the store and mark vanished workers crashed"""
    supervisor = _supervisor(ctx, reconcile=False)

    report = supervisor.reconcile(log_events=True)
    if not report.server_reachable:
        click.echo("Multiplexer server not reachable; no pane is considered live")
    click.echo(f"Reattached: {', '.join(report.reattached) or '-'}")
    click.echo(f"Detached:   {', '.join(report.detached) or '-'}")
    click.echo(f"Crashed:    {', '.join(report.crashed) or '-'}")


@cli.command()
@click.argument('pane_id', type=int)
@click.argument('text')
@click.option('--no-execute', is_flag=True, help='Do not press Enter after the text')
@click.pass_context
def send(ctx, pane_id, text, no_execute):
    """Type TEXT into a pane"""
    supervisor = _supervisor(ctx, reconcile=False)

    try:
        supervisor.mux.send_text(pane_id, text, execute=not no_execute)
    except PanekeeperError as e:
        _fail(str(e))


@cli.command()
@click.argument('pane_id', type=int)
@click.option('--lines', '-n', type=int, help='Only the last N lines')
@click.pass_context
def read(ctx, pane_id, lines):
    """Print the rendered text of a pane"""
    supervisor = _supervisor(ctx, reconcile=False)

    try:
        text = supervisor.mux.get_text(pane_id, start_line=-lines if lines else None)
    except PanekeeperError as e:
        _fail(str(e))
    click.echo(text, nl=False)


@cli.command()
@click.pass_context
def cleanup(ctx):
    """Remove launcher scripts of workers that are no longer tracked"""
    supervisor = _supervisor(ctx)

    removed = supervisor.cleanup_launchers()
    click.echo(f"Removed {removed} launcher scripts")


if __name__ == '__main__':
    cli()
