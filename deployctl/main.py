"""
deployctl — CLI entrypoint.

Usage:
    deployctl --help
    deployctl install
    deployctl status
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from deployctl import __version__
from deployctl.core.observability.logging_config import setup_logging

EXIT_FAILED = 1
EXIT_CONFLICT = 2


@click.group()
@click.version_option(version=__version__, prog_name="deployctl")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to deploy.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """deployctl — install and maintain a self-hosted application."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("DEPLOYCTL_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("DEPLOYCTL_LOG_FILE"),
        log_file_level=os.environ.get("DEPLOYCTL_LOG_FILE_LEVEL"),
    )


def _load_settings(ctx: click.Context):
    """Load deploy.yml or exit with the validation error."""
    from deployctl.core.config.loader import load_settings
    from deployctl.core.errors import ConfigError

    try:
        return load_settings(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(EXIT_FAILED)


def _exit_code_for(kind: str | None) -> int:
    from deployctl.core.errors import ErrorKind

    return EXIT_CONFLICT if kind == ErrorKind.RESOURCE_CONFLICT else EXIT_FAILED


# ── install ─────────────────────────────────────────────────────


@cli.command()
@click.option("--reconfigure", is_flag=True, help="Re-run resources and service of a complete install.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use simulated adapters (no real execution).")
@click.pass_context
def install(ctx: click.Context, reconfigure: bool, as_json: bool, mock: bool) -> None:
    """Run the next incomplete install phase(s).

    Examples:

        deployctl install

        deployctl install --reconfigure
    """
    from deployctl.core.use_cases.install import run_install

    settings = _load_settings(ctx)
    result = run_install(settings, reconfigure=reconfigure, mock_mode=mock)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if not result.ok:
            sys.exit(_exit_code_for(result.error_kind))
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", bold=True)
        if result.failed_phase or result.failed_resource:
            click.echo(f"   Phase:    {result.failed_phase or '-'}")
            click.echo(f"   Resource: {result.failed_resource or '-'}")
        click.echo(f"   Kind:     {result.error_kind}")
        click.echo(f"   State:    {result.phase_after}")
        if result.output and not ctx.obj.get("quiet"):
            click.echo()
            for line in result.output.strip().splitlines()[-15:]:
                click.echo(f"     │ {line}")
        click.echo()
        sys.exit(_exit_code_for(result.error_kind))

    report = result.report
    if report is None:
        click.secho("❌ Install finished without a phase report", fg="red")
        sys.exit(EXIT_FAILED)

    mode_label = "[mock] " if mock else ""
    click.secho(f"\n🚀 {mode_label}install — {settings.app_name}", fg="cyan", bold=True)
    if result.reconfigured:
        click.secho("   Reconfiguring a complete installation", fg="yellow")

    if not report.phases:
        click.secho("   ✓ Installation already complete — nothing to do", fg="green")

    for outcome in report.phases:
        click.secho(f"   Phase: {outcome.name}", fg="white", bold=True)
        for res in outcome.results:
            if res.skipped:
                click.secho(f"     ⊘ {res.resource} ", fg="yellow", nl=False)
                click.echo("(skipped)")
            elif res.already_present:
                click.secho(f"     ✓ {res.resource} ", fg="green", nl=False)
                click.echo("(already present)")
            else:
                click.secho(f"     ✓ {res.resource} ", fg="green", nl=False)
                click.echo("(created)")

    if report.warnings:
        click.echo()
        click.secho("   ⚠️  Warnings:", fg="yellow")
        for warn in report.warnings:
            click.echo(f"     • {warn}")

    click.echo()
    click.echo(f"   State: {result.phase_before} → {result.phase_after}")
    if report.paused:
        click.echo()
        click.secho(f"   ⏸  {report.message}", fg="yellow", bold=True)
    click.echo()


# ── status ──────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use simulated adapters (no real execution).")
@click.pass_context
def status(ctx: click.Context, as_json: bool, mock: bool) -> None:
    """Diagnose the installation (exit code = number of errors)."""
    from deployctl.adapters.registry import build_registry
    from deployctl.core.persistence.state_file import load_state
    from deployctl.core.use_cases.install import effective_settings
    from deployctl.core.use_cases.status import Severity, diagnose

    settings = _load_settings(ctx)
    state = load_state(settings.state_path)
    settings = effective_settings(settings, state)
    registry = build_registry(settings, mock_mode=mock)
    report = diagnose(settings, registry, state)

    if as_json:
        data = report.to_dict()
        data["adapters"] = registry.adapter_status()
        click.echo(json.dumps(data, indent=2))
        sys.exit(report.exit_code)

    click.secho(f"\n📋 {settings.app_name}", fg="cyan", bold=True)
    click.echo(f"   Project: {settings.project_root}")
    click.echo(f"   Phase:   {report.phase}")
    click.echo()

    if ctx.obj.get("verbose") and report.environment:
        click.echo(f"   Environment ({settings.env_path}):")
        for name, value in report.environment.items():
            click.echo(f"     {name}={value}")
        click.echo()

    if not report.issues:
        click.secho("   ✅ Healthy — no issues found", fg="green", bold=True)
        click.echo()
        return

    for issue in report.issues:
        if issue.severity == Severity.ERROR:
            click.secho(f"   ✗ {issue.subject}", fg="red", bold=True)
        else:
            click.secho(f"   ⚠️  {issue.subject}", fg="yellow")
        if issue.details:
            click.echo(f"      {issue.details}")
        if issue.remediation_hint:
            click.echo(f"      → {issue.remediation_hint}")

    click.echo()
    color = "red" if report.error_count else "yellow"
    click.secho(
        f"   {report.error_count} error(s), {report.warning_count} warning(s)",
        fg=color,
        bold=True,
    )
    click.echo()
    sys.exit(report.exit_code)


# ── reset / unlock ──────────────────────────────────────────────


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.option("--clean", is_flag=True, help="Also remove the service unit, database and role.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use simulated adapters (no real execution).")
@click.pass_context
def reset(ctx: click.Context, yes: bool, clean: bool, as_json: bool, mock: bool) -> None:
    """Forget install progress and clear the run lock."""
    from deployctl.core.use_cases.reset import reset_installation

    settings = _load_settings(ctx)

    if not yes:
        what = "state, lock, service unit, database and role" if clean else "install state and lock"
        click.confirm(f"Reset {settings.app_name} ({what})?", abort=True)

    result = reset_installation(settings, clean=clean, mock_mode=mock)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if not result.ok:
            sys.exit(_exit_code_for(result.error_kind))
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(_exit_code_for(result.error_kind))

    for resource in result.cleaned:
        click.secho(f"   🗑  {resource}", fg="white")
    for err in result.teardown_errors:
        click.secho(f"   ✗ {err}", fg="red")

    click.secho(f"✅ Reset complete (was: {result.phase_before})", fg="green", bold=True)
    if clean:
        click.echo(f"   Environment file kept; backup in {settings.project_root}")
    if result.teardown_errors:
        sys.exit(EXIT_FAILED)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def unlock(ctx: click.Context, yes: bool) -> None:
    """Remove a stale run lock."""
    from deployctl.core.persistence.run_lock import holder_alive, read_holder
    from deployctl.core.use_cases.reset import unlock_installation

    settings = _load_settings(ctx)
    holder = read_holder(settings.lock_path)

    if holder is None:
        click.secho("✓ No run lock present", fg="green")
        return

    click.echo(f"   Lock: {settings.lock_path}")
    click.echo(f"   Held by pid {holder.get('pid', '?')} ({holder.get('command', '')}) "
               f"since {holder.get('acquired_at', '?')}")
    if holder_alive(holder):
        click.secho("   ⚠️  That process is still running", fg="yellow", bold=True)

    if not yes:
        click.confirm("Remove the run lock?", abort=True)

    result = unlock_installation(settings)
    if result.removed:
        click.secho("✅ Run lock removed", fg="green", bold=True)
    else:
        click.secho("✓ Run lock was already gone", fg="green")


# ── backup / history ────────────────────────────────────────────


@cli.command()
@click.option("--keep", default=None, type=click.IntRange(min=1),
              help="Number of archives to keep (default: backup.keep, 5).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def backup(ctx: click.Context, keep: int | None, as_json: bool) -> None:
    """Archive the project directory into <project>/backups/."""
    from deployctl.core.use_cases.backup import create_backup

    settings = _load_settings(ctx)
    result = create_backup(settings, keep=keep or settings.backup.keep)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(EXIT_FAILED)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(EXIT_FAILED)

    size_mb = result.size_bytes / (1024 * 1024)
    click.secho(f"✅ Backup created: {result.path}", fg="green", bold=True)
    click.echo(f"   Size: {size_mb:.1f} MB")
    if result.removed:
        click.echo(f"   Removed {len(result.removed)} old backup(s), {result.kept} kept")


@cli.command()
@click.option("-n", "count", default=10, type=int, show_default=True, help="Number of entries.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent runs from the audit ledger."""
    from deployctl.core.persistence.audit import AuditWriter

    settings = _load_settings(ctx)
    entries = AuditWriter(settings.audit_path).read_recent(count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No runs recorded yet.")
        return

    status_colors = {"ok": "green", "paused": "yellow", "skipped": "white", "failed": "red"}
    click.echo()
    for entry in entries:
        click.echo(f"   {entry.timestamp[:19]}  {entry.command:<8} ", nl=False)
        click.secho(f"{entry.status:<11}", fg=status_colors.get(entry.status, "white"), nl=False)
        phases = f"{entry.phase_before or '-'} → {entry.phase_after or '-'}"
        click.echo(f" {phases}  ({entry.duration_ms}ms)")
        if entry.errors and ctx.obj.get("verbose"):
            for err in entry.errors:
                click.echo(f"     │ {err}")
    click.echo()


if __name__ == "__main__":
    cli()
