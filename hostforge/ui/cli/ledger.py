"""
CLI commands for the run ledger — past runs and their step entries.

Thin wrappers over ``hostforge.core.persistence``. Read-only.

Usage::

    hostforge ledger runs
    hostforge ledger runs --limit 5 --json
    hostforge ledger show
    hostforge ledger show run-20250101-120000-abc123
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from hostforge.core.models.runbook import Runbook


def _load(ctx: click.Context, as_json: bool) -> tuple[Runbook, Path]:
    """Load the runbook and the directory its state lives in."""
    from hostforge.core.config.loader import ConfigError, load_runbook, resolve_runbook_path, runbook_root

    try:
        path = resolve_runbook_path(ctx.obj.get("config_path"))
        runbook = load_runbook(path, ctx.obj.get("host_overrides"))
    except ConfigError as e:
        if as_json:
            click.echo(json.dumps({"error": str(e)}, indent=2))
        else:
            click.secho(f"❌ {e}", fg="red")
        sys.exit(1)
    return runbook, runbook_root(path)


@click.group()
def ledger() -> None:
    """Ledger — what every run did, step by step."""


@ledger.command("runs")
@click.option("--limit", "-n", default=20, type=int, help="Show the N most recent runs.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def runs(ctx: click.Context, limit: int, as_json: bool) -> None:
    """List recent runs against the runbook's host."""
    from hostforge.core.persistence.run_history import RunHistory

    runbook, root = _load(ctx, as_json)
    records = RunHistory(root=root).read_recent(limit, host=runbook.host.key)

    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        click.echo("No runs recorded yet.")
        return

    colors = {"complete": "green", "partial": "yellow", "aborted": "red"}
    click.secho(f"\n📜 Runs on {runbook.host.display}\n", fg="cyan", bold=True)
    for record in reversed(records):
        summary = ", ".join(f"{n} {s}" for s, n in record.counts.items() if n)
        click.echo(f"   {record.run_id}  ", nl=False)
        click.secho(f"{record.status.value:<8}", fg=colors.get(record.status.value, "white"), nl=False)
        click.echo(f"  {summary}")
        if record.failed_steps:
            click.echo(f"      failed: {', '.join(record.failed_steps)}")
    click.echo()


@ledger.command("show")
@click.argument("run_id", required=False)
@click.option("--all", "show_all", is_flag=True, help="Include pending entries.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, run_id: str | None, show_all: bool, as_json: bool) -> None:
    """Show the ledger entries of one run (default: the latest)."""
    from hostforge.core.models.ledger import StepStatus
    from hostforge.core.persistence.ledger import default_ledger_path, read_ledger

    runbook, root = _load(ctx, as_json)
    entries = read_ledger(default_ledger_path(root, runbook.host.key))

    if run_id is None:
        if not entries:
            click.echo("No ledger entries yet.")
            return
        run_id = entries[-1].run_id

    selected = [e for e in entries if e.run_id == run_id]
    if not selected:
        click.secho(f"❌ No entries for run {run_id}", fg="red")
        sys.exit(1)
    if not show_all:
        selected = [e for e in selected if e.status != StepStatus.PENDING]

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in selected], indent=2))
        return

    markers = {
        "satisfied": ("✓", "green"),
        "succeeded": ("✓", "green"),
        "failed": ("✗", "red"),
        "skipped": ("⊘", "yellow"),
        "pending": ("·", "white"),
    }
    click.secho(f"\n📜 {run_id}\n", fg="cyan", bold=True)
    for entry in selected:
        icon, color = markers.get(entry.status.value, ("·", "white"))
        click.echo(f"   {entry.timestamp[11:19]} ", nl=False)
        click.secho(f"{icon} {entry.step_id}", fg=color, nl=False)
        click.echo(f"  {entry.status.value}" + (f" [{entry.source}]" if entry.source else ""))
        if entry.error_kind or entry.message:
            kind = f"{entry.error_kind}: " if entry.error_kind else ""
            click.echo(f"      {kind}{entry.message}")
        if entry.blocked_by:
            click.echo(f"      blocked by {entry.blocked_by}")
    click.echo()
