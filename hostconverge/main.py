"""
hostconverge — CLI entrypoint.

Usage:
    hostconverge --help
    hostconverge converge --role client --target 10.0.1.50 --elk-host 10.0.1.81
    hostconverge plan --role server
    hostconverge status elasticsearch --target localhost
    hostconverge config check
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from hostconverge import __version__
from hostconverge.core.observability.logging_config import setup_logging

if TYPE_CHECKING:
    from hostconverge.core.models.result import ConvergenceResult

_OUTCOME_STYLE = {
    "applied": ("✓", "green"),
    "already_satisfied": ("⊘", "white"),
    "would_apply": ("…", "cyan"),
    "failed": ("✗", "red"),
}

_STATUS_COLOR = {"success": "green", "partial_failure": "yellow", "fatal": "red"}


@click.group()
@click.version_option(version=__version__, prog_name="hostconverge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to role settings YAML (default: ./hostconverge.yml if present).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """hostconverge — converge ELK hosts to their declared state."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("HCV_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("HCV_LOG_FILE"),
        log_file_level=os.environ.get("HCV_LOG_FILE_LEVEL"),
    )


# ── converge ────────────────────────────────────────────────────


@cli.command()
@click.option("--role", type=click.Choice(["server", "client"]), default=None, help="Role to converge.")
@click.option(
    "--target",
    "-t",
    "targets",
    multiple=True,
    required=True,
    help="Target host (repeatable). 'localhost' converges this machine.",
)
@click.option("--dry-run", is_flag=True, help="Inspect only; report what would change.")
@click.option("--timeout", type=float, default=None, help="Overall time budget in seconds.")
@click.option("--mock", is_flag=True, help="Simulate targets in memory.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--report", "report_path", type=click.Path(dir_okay=False), default=None, help="Write the JSON report to FILE.")
@click.option("--elk-host", default=None, help="ELK server address (client role).")
@click.option(
    "--output-mode",
    type=click.Choice(["logstash", "elasticsearch"]),
    default=None,
    help="Where filebeat ships to (client role).",
)
@click.option(
    "--root",
    "root",
    type=click.Path(file_okay=False),
    default=None,
    help="For localhost: directory standing in for '/'.",
)
@click.pass_context
def converge(
    ctx: click.Context,
    role: str | None,
    targets: tuple[str, ...],
    dry_run: bool,
    timeout: float | None,
    mock: bool,
    as_json: bool,
    report_path: str | None,
    elk_host: str | None,
    output_mode: str | None,
    root: str | None,
) -> None:
    """Converge targets to a role's desired state."""
    from hostconverge.core.use_cases.converge import run_converge

    try:
        result = run_converge(
            targets=list(targets),
            role=role,
            config_path=ctx.obj.get("config_path"),
            overrides={"elk_host": elk_host, "output_mode": output_mode},
            dry_run=dry_run,
            timeout=timeout,
            mock_mode=mock,
            report_path=Path(report_path) if report_path else None,
            root=Path(root) if root else None,
        )
    except OSError as e:
        click.secho(f"❌ Cannot write report: {e}", fg="red", err=True)
        sys.exit(2)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(result.exit_code)

    quiet = ctx.obj.get("quiet", False)
    for run in result.results:
        _print_run(run, quiet)

    status = result.overall_status.value
    click.secho(f"{status}", fg=_STATUS_COLOR.get(status, "white"), bold=True)
    if result.report_path:
        click.echo(f"   📄 Report: {result.report_path}")
    sys.exit(result.exit_code)


def _print_run(run: ConvergenceResult, quiet: bool) -> None:
    mode = " (dry-run)" if run.dry_run else ""
    click.secho(f"\n🖥  {run.target} — {run.role_name}{mode}", fg="cyan", bold=True)
    for step in run.per_step:
        marker, color = _OUTCOME_STYLE[step.outcome.value]
        if quiet and step.outcome.value == "already_satisfied":
            continue
        click.secho(f"   {marker} {step.step_name}", fg=color, nl=False)
        click.echo(f"  {step.message}" if step.message else "")
        if step.error is not None:
            click.secho(f"      [{step.error.kind.value}] {step.error.message}", fg="red")
            for line in step.error.detail.get("log_tail", [])[-20:]:
                click.echo(f"      │ {line}")
    status = run.overall_status.value
    click.echo("   → ", nl=False)
    click.secho(status, fg=_STATUS_COLOR.get(status, "white"), nl=False)
    if run.failed_at:
        click.echo(f" (stopped at {run.failed_at})")
    else:
        click.echo()


# ── plan ────────────────────────────────────────────────────────


@cli.command()
@click.option("--role", type=click.Choice(["server", "client"]), default=None, help="Role to plan.")
@click.option("--elk-host", default=None, help="ELK server address (client role).")
@click.option("--output-mode", type=click.Choice(["logstash", "elasticsearch"]), default=None)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(
    ctx: click.Context,
    role: str | None,
    elk_host: str | None,
    output_mode: str | None,
    as_json: bool,
) -> None:
    """Show the steps a converge run would take, without touching a host."""
    from hostconverge.core.use_cases.plan import build_plan

    result = build_plan(
        role=role,
        config_path=ctx.obj.get("config_path"),
        overrides={"elk_host": elk_host, "output_mode": output_mode},
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(2 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(2)

    assert result.role is not None
    click.secho(f"\n📋 Role: {result.role.role_name}", fg="cyan", bold=True)
    for i, step in enumerate(result.steps, 1):
        click.echo(f"   {i:2d}. {step}")
    click.echo()


# ── status ──────────────────────────────────────────────────────


@cli.command()
@click.argument("unit")
@click.option("--target", "-t", default="localhost", show_default=True, help="Target host.")
@click.option("--lines", "-n", type=int, default=20, show_default=True, help="Journal lines to show.")
@click.option("--mock", is_flag=True, help="Query a simulated host.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def status(unit: str, target: str, lines: int, mock: bool, as_json: bool) -> None:
    """Show a systemd unit's state and recent logs."""
    from hostconverge.core.use_cases.status import get_unit_status

    result = get_unit_status(target, unit, mock_mode=mock, log_lines=max(lines, 1))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {unit} on {target}: {result.error}", fg="red", err=True)
        sys.exit(1)

    st = result.status
    assert st is not None
    color = "green" if st.running else "red"
    click.secho(f"\n⚙️  {unit} on {target}", fg="cyan", bold=True)
    click.echo("   State:   ", nl=False)
    click.secho(f"{st.active_state} ({st.sub_state})", fg=color)
    click.echo(f"   Enabled: {st.unit_file_state}")
    if st.log_tail:
        click.echo()
        click.secho("   Recent log:", fg="white", bold=True)
        for line in st.log_tail:
            click.echo(f"     {line}")
    for err in st.errors:
        click.secho(f"   ⚠️  {err}", fg="yellow")
    click.echo()


# ── config ──────────────────────────────────────────────────────


@cli.group()
def config() -> None:
    """Role settings commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate role settings (file + environment)."""
    from hostconverge.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 2)

    if result.valid:
        assert result.settings is not None
        click.secho("✅ Settings are valid", fg="green", bold=True)
        click.echo(f"   Role: {result.settings.role or '(not set)'}")
        if result.settings.elk_host:
            click.echo(f"   ELK host: {result.settings.elk_host}")
        click.echo(f"   Output: {result.settings.output_mode}")
    else:
        click.secho("❌ Settings errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(2)

    click.echo()


if __name__ == "__main__":
    cli()
