"""
hostforge — CLI entrypoint.

Usage:
    hostforge --help
    hostforge plan
    hostforge apply --dry-run
    hostforge apply --confirm disable-password-auth
    hostforge status
    hostforge config check
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click

from hostforge import __version__
from hostforge.core.observability.logging_config import resolve_level, setup_from_env

_STATE_STYLE = {
    "satisfied": ("✓", "green"),
    "trusted": ("✓", "green"),
    "succeeded": ("✓", "green"),
    "unsatisfied": ("→", "cyan"),
    "unprobed": ("·", "white"),
    "unknown": ("?", "yellow"),
    "failed": ("✗", "red"),
    "skipped": ("⊘", "yellow"),
    "pending": ("·", "white"),
    "blocked": ("⊘", "yellow"),
    "blocked-confirmation": ("⊘", "yellow"),
    "blocked-fallback": ("⊘", "yellow"),
}

_RUN_COLOR = {"complete": "green", "partial": "yellow", "aborted": "red"}


def _style(state: str) -> tuple[str, str]:
    return _STATE_STYLE.get(state, ("·", "white"))


@click.group()
@click.version_option(version=__version__, prog_name="hostforge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to runbook.yml (default: auto-detect).",
)
@click.option("--host", "address", default=None, help="Target host address (overrides the runbook).")
@click.option("--user", default=None, help="SSH user (overrides the runbook).")
@click.option("--port", type=int, default=None, help="SSH port (overrides the runbook).")
@click.option(
    "--identity",
    "-i",
    "identity_file",
    default=None,
    help="SSH private key file (overrides the runbook).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    address: str | None,
    user: str | None,
    port: int | None,
    identity_file: str | None,
) -> None:
    """hostforge — idempotent, resumable host bootstrap."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["host_overrides"] = {
        "address": address,
        "user": user,
        "port": port,
        "identity_file": identity_file,
    }

    # ── Logging setup (once, at process start) ──────────────────
    setup_from_env(resolve_level(debug=debug, verbose=verbose, quiet=quiet))


def _common(ctx: click.Context) -> dict[str, Any]:
    return {
        "config_path": ctx.obj.get("config_path"),
        "host_overrides": ctx.obj.get("host_overrides"),
    }


def _fail(message: str, as_json: bool, extra: dict[str, Any] | None = None) -> None:
    if as_json:
        click.echo(json.dumps({"error": message, **(extra or {})}, indent=2))
    else:
        click.secho(f"❌ {message}", fg="red")
    sys.exit(1)


# ── plan ────────────────────────────────────────────────────────


@cli.command()
@click.option("--step", "-s", "steps", multiple=True, help="Only this step (and its dependencies).")
@click.option("--confirm", "confirmed", multiple=True, help="Confirm a connectivity-risk step.")
@click.option("--no-probe", is_flag=True, help="Show the order only; don't probe the host.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(
    ctx: click.Context,
    steps: tuple[str, ...],
    confirmed: tuple[str, ...],
    no_probe: bool,
    as_json: bool,
) -> None:
    """Show the computed order and what apply would do with each step.

    Examples:

        hostforge plan

        hostforge plan --no-probe --json

        hostforge plan --step enable-firewall
    """
    from hostforge.core.use_cases.plan import plan_runbook

    result = plan_runbook(
        **_common(ctx),
        steps=list(steps) or None,
        confirmed=confirmed,
        probe=not no_probe,
    )

    if result.error:
        _fail(result.error, as_json, {"cycle": result.cycle} if result.cycle else None)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    run_plan = result.plan
    assert run_plan is not None

    click.secho(f"\n📋 {run_plan.runbook} → {run_plan.host}", fg="cyan", bold=True)
    if not run_plan.probed:
        click.echo("   (not probed)")
    click.echo()

    for row in run_plan.rows:
        icon, color = _style(row.state)
        risk = " [connectivity-risk]" if row.risk == "connectivity-risk" else ""
        click.secho(f"   {row.position:>2}. {icon} {row.step_id}", fg=color, nl=False)
        click.echo(f"{risk}  {row.state}" + (f" ({row.reason})" if row.reason else ""))
        if ctx.obj.get("verbose") and row.description:
            click.echo(f"         {row.description}")

    if run_plan.blocked:
        click.echo()
        click.secho(f"   Blocked: {', '.join(run_plan.blocked)}", fg="yellow")

    click.echo()


# ── apply ───────────────────────────────────────────────────────


@cli.command()
@click.option("--dry-run", is_flag=True, help="Probe and report; run no action, write nothing.")
@click.option("--step", "-s", "steps", multiple=True, help="Only this step (and its dependencies).")
@click.option("--confirm", "confirmed", multiple=True, help="Confirm a connectivity-risk step.")
@click.option(
    "--policy",
    type=click.Choice(["trust-ledger", "always-reverify"]),
    default=None,
    help="Ledger policy (default: from the runbook).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def apply(
    ctx: click.Context,
    dry_run: bool,
    steps: tuple[str, ...],
    confirmed: tuple[str, ...],
    policy: str | None,
    as_json: bool,
) -> None:
    """Run the runbook against the host.

    Connectivity-risk steps never run silently: each needs its own
    --confirm, and a succeeded fallback-access check in the ledger.

    Examples:

        hostforge apply --dry-run

        hostforge apply

        hostforge apply --confirm disable-password-auth --confirm restart-ssh
    """
    from hostforge.core.models.runbook import LedgerPolicy
    from hostforge.core.use_cases.apply import apply_runbook

    result = apply_runbook(
        **_common(ctx),
        steps=list(steps) or None,
        confirmed=confirmed,
        policy=LedgerPolicy(policy) if policy else None,
        dry_run=dry_run,
    )

    if result.error:
        _fail(result.error, as_json, {"cycle": result.cycle} if result.cycle else None)

    report = result.report
    assert report is not None

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if report.ok else 1)

    mode_label = "[dry-run] " if dry_run else ""
    click.secho(f"\n⚡ {mode_label}{report.runbook} → {report.host}", fg="cyan", bold=True)
    click.echo(f"   Run: {report.run_id}")
    click.echo()

    verbose = ctx.obj.get("verbose", False)
    for step in report.steps:
        icon, color = _style(step.status.value)
        label = step.status.value + (" (simulated)" if step.simulated else "")
        click.secho(f"   {icon} {step.step_id}", fg=color, nl=False)
        timing = f" ({step.duration_ms}ms)" if step.duration_ms else ""
        click.echo(f"  {label}{timing}")

        if step.status.value in ("failed", "skipped") and step.message:
            kind = f"{step.error_kind}: " if step.error_kind else ""
            click.echo(f"     │ {kind}{step.message}")
        if step.status.value == "failed":
            output = step.stderr or step.stdout
            for line in output.strip().split("\n")[-5:] if output.strip() else []:
                click.echo(f"     │ {line}")
            if step.rollback:
                click.secho(f"     ↩ {step.rollback}", fg="yellow")
        elif verbose and step.stdout.strip():
            for line in step.stdout.strip().split("\n")[:10]:
                click.echo(f"     │ {line}")

    # Summary
    click.echo()
    counts = report.counts
    summary = ", ".join(f"{n} {s}" for s, n in counts.items() if n)
    click.secho(
        f"   Result: {report.status.value} — {summary}",
        fg=_RUN_COLOR.get(report.status.value, "white"),
        bold=True,
    )
    if report.interrupted:
        click.secho("   Interrupted: remaining steps left pending.", fg="red")
    click.echo()

    if not report.ok:
        sys.exit(1)


# ── status ──────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the last run and the latest ledger status of every step."""
    from hostforge.core.use_cases.status import get_status

    result = get_status(**_common(ctx))

    if result.error:
        _fail(result.error, as_json)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    runbook = result.runbook
    assert runbook is not None
    quiet = ctx.obj.get("quiet", False)

    if not quiet:
        click.secho(f"\n📋 {runbook.name} → {runbook.host.display}", fg="cyan", bold=True)
        if runbook.description:
            click.echo(f"   {runbook.description}")
        click.echo()

    last = result.last_run
    if last is None:
        click.echo("   No runs recorded yet.")
    else:
        click.echo(f"   Last run: {last.run_id} — ", nl=False)
        click.secho(last.status.value, fg=_RUN_COLOR.get(last.status.value, "white"))
        click.echo(f"     at {last.ended_at} ({result.run_count} runs total)")

    click.echo()
    click.secho(f"   Steps: {len(runbook.steps)}", fg="white", bold=True)
    for step in runbook.steps:
        entry = result.latest.get(step.id)
        state = entry.status.value if entry else "pending"
        icon, color = _style(state)
        click.secho(f"     {icon} {step.id}", fg=color, nl=False)
        click.echo(f"  {state}" + (f"  ({entry.run_id})" if entry else ""))

    click.echo()


# ── config ──────────────────────────────────────────────────────


@cli.group()
def config() -> None:
    """Runbook configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate runbook.yml: schema, dependencies and cycles."""
    from hostforge.core.use_cases.config_check import check_config

    result = check_config(**_common(ctx))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.runbook is not None  # guaranteed when valid
        click.secho("✅ Runbook is valid", fg="green", bold=True)
        click.echo(f"   Runbook: {result.runbook.name}")
        click.echo(f"   Host: {result.runbook.host.display}")
        click.echo(f"   Steps: {len(result.runbook.steps)}")
    else:
        click.secho("❌ Runbook errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(1)


# ── health ──────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def health(ctx: click.Context, as_json: bool) -> None:
    """Show transport health — can each step target be reached?"""
    from hostforge.adapters.registry import TransportRegistry
    from hostforge.core.config.loader import ConfigError, load_runbook, resolve_runbook_path, runbook_root
    from hostforge.core.observability.health import check_system_health
    from hostforge.core.persistence.ledger import RunLedger, default_ledger_path

    try:
        config_path = resolve_runbook_path(ctx.obj.get("config_path"))
        runbook = load_runbook(config_path, ctx.obj.get("host_overrides"))
    except ConfigError as e:
        _fail(str(e), as_json)
        return

    # Fallback evidence only matters when something is gated on it
    fallback = None
    ledger = None
    if any(s.is_connectivity_risk for s in runbook.steps):
        fallback = runbook.settings.fallback_step
        ledger = RunLedger.open(
            default_ledger_path(runbook_root(config_path), runbook.host.key),
            run_id="health",
            persist=False,
        )

    registry = TransportRegistry.for_host(runbook.host, runbook.settings)
    try:
        system_health = check_system_health(registry, ledger, fallback)
    finally:
        registry.close()

    if as_json:
        click.echo(json.dumps(system_health.to_dict(), indent=2))
        sys.exit(0 if system_health.status == "healthy" else 1)

    status_icons = {
        "healthy": ("💚", "green"),
        "degraded": ("🟡", "yellow"),
        "unhealthy": ("🔴", "red"),
        "unknown": ("❔", "white"),
    }
    icon, color = status_icons.get(system_health.status, ("❔", "white"))

    click.echo()
    click.secho(f"{icon} Health: {system_health.status.upper()}", fg=color, bold=True)
    click.echo(f"   {runbook.host.display} — {system_health.timestamp}")
    click.echo()

    for component in system_health.components:
        c_icon, c_color = status_icons.get(component.status, ("❔", "white"))
        click.secho(f"   {c_icon} {component.name}", fg=c_color, bold=True)
        click.echo(f"      {component.message}")

        if ctx.obj.get("verbose") and component.details:
            for key, val in component.details.items():
                click.echo(f"      {key}: {val}")

    click.echo()
    if system_health.status != "healthy":
        sys.exit(1)


# ── Register sub-command groups from hostforge/ui/cli/ ───────────

from hostforge.ui.cli.ledger import ledger  # noqa: E402

cli.add_command(ledger)


if __name__ == "__main__":
    cli()
