"""
converge — CLI entrypoint.

Usage:
    converge run --manifest manifests/ubuntu-desktop.yml --dry-run
    converge plan --only package,apt-repository
    converge validate
    converge status
    converge kinds

Exit codes: 0 all actions succeeded or were skipped, 1 an action
failed (or the run was cancelled), 2 malformed manifest.
"""

from __future__ import annotations

import json
import os
import signal
import sys
import threading
from pathlib import Path

import click

from converge import __version__
from converge.core.engine.reporter import EXIT_MANIFEST, format_duration, format_record
from converge.core.models.record import ExecutionRecord, Outcome
from converge.core.observability.logging_config import resolve_level, setup_logging

_OUTCOME_STYLE = {
    Outcome.SUCCEEDED: ("✓", "green"),
    Outcome.SKIPPED: ("⊘", "yellow"),
    Outcome.FAILED: ("✗", "red"),
    Outcome.DEPENDENCY_FAILED: ("↷", "red"),
    Outcome.CANCELLED: ("■", "magenta"),
}

_STATUS_COLOR = {"ok": "green", "partial": "yellow", "failed": "red", "cancelled": "magenta"}

manifest_option = click.option(
    "--manifest",
    "-m",
    "manifest_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to the manifest (default: find converge.yml upwards).",
)
json_option = click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")


def _parse_only(values: tuple[str, ...]) -> list[str] | None:
    """``--only a,b --only c`` → ``[a, b, c]``."""
    kinds = [k.strip() for v in values for k in v.split(",") if k.strip()]
    return kinds or None


@click.group()
@click.version_option(version=__version__, prog_name="converge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """converge — declarative, idempotent machine provisioning."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get("CONVERGE_LOG_FILE"),
        log_file_level=os.environ.get("CONVERGE_LOG_FILE_LEVEL"),
    )


def _print_manifest_error(error: str, errors: list[str]) -> None:
    click.secho(f"❌ {error}", fg="red")
    if len(errors) > 1:
        for err in errors:
            click.echo(f"   • {err}")


def _echo_record(record: ExecutionRecord) -> None:
    icon, color = _OUTCOME_STYLE[record.outcome]
    click.secho(f"   {icon} ", fg=color, nl=False)
    click.echo(format_record(record))


# ── run ─────────────────────────────────────────────────────────────


@cli.command()
@manifest_option
@click.option("--dry-run", is_flag=True, help="Plan and report, change nothing.")
@click.option("--only", "only", multiple=True, help="Restrict to kinds (comma-separated).")
@click.option("--parallelism", "-p", type=click.IntRange(min=1), default=None,
              help="Apply independent resources on N workers.")
@click.option("--state-dir", default=None, help="Where to keep state and audit files.")
@json_option
@click.pass_context
def run(
    ctx: click.Context,
    manifest_path: Path | None,
    dry_run: bool,
    only: tuple[str, ...],
    parallelism: int | None,
    state_dir: str | None,
    as_json: bool,
) -> None:
    """Converge this machine to a manifest.

    Examples:

        converge run --manifest manifests/ubuntu-desktop.yml

        converge run --dry-run --only package,snap

        converge run -p 4
    """
    from converge.core.use_cases.run import run_manifest

    cancel = threading.Event()

    def _on_sigint(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()
        click.secho(
            "\n⏹  Cancelling after the current action (Ctrl-C again to abort)…",
            fg="yellow",
            err=True,
        )

    quiet = ctx.obj.get("quiet", False)
    if not as_json and not quiet:
        mode_label = "[dry-run] " if dry_run else ""
        click.secho(f"\n⚡ {mode_label}converge run", fg="cyan", bold=True)

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        result = run_manifest(
            manifest_path,
            dry_run=dry_run,
            only=_parse_only(only),
            parallelism=parallelism,
            state_dir=state_dir,
            cancel_event=cancel,
            on_record=None if as_json else _echo_record,
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        _print_manifest_error(result.error, result.errors)
        sys.exit(result.exit_code)

    summary = result.summary
    assert summary is not None

    click.echo()
    color = _STATUS_COLOR.get(summary.status, "white")
    click.secho(
        f"   Result: {summary.succeeded} succeeded, {summary.skipped} skipped, "
        f"{summary.failed} failed, {summary.dependency_failed} skipped-due-to-dependency-failure"
        + (f", {summary.cancelled} cancelled" if summary.cancelled else ""),
        fg=color,
        bold=True,
    )
    click.echo(f"   Duration: {format_duration(summary.duration_ms)}")

    if summary.failures:
        click.echo()
        click.secho("   Failures:", fg="red", bold=True)
        for record in summary.failures:
            click.echo(f"     • {record.resource_id} ({record.outcome.value}): {record.error_detail}")

    click.echo()
    sys.exit(result.exit_code)


# ── plan ────────────────────────────────────────────────────────────


@cli.command()
@manifest_option
@click.option("--only", "only", multiple=True, help="Restrict to kinds (comma-separated).")
@json_option
@click.pass_context
def plan(ctx: click.Context, manifest_path: Path | None, only: tuple[str, ...], as_json: bool) -> None:
    """Show the actions a run would take."""
    from converge.core.use_cases.plan import plan_manifest

    result = plan_manifest(manifest_path, only=_parse_only(only))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        _print_manifest_error(result.error, result.errors)
        sys.exit(result.exit_code)

    execution_plan = result.plan
    assert execution_plan is not None

    click.secho(f"\n📋 Plan — {execution_plan.manifest_name or result.manifest_path}", fg="cyan", bold=True)
    click.echo(f"   Actions: {execution_plan.total_actions} | Changes: {execution_plan.pending_changes}")
    click.echo()

    for action in execution_plan.actions:
        if action.changes:
            click.secho(f"   + {action.verb.value:<9}", fg="green", nl=False)
        else:
            click.secho(f"   = {action.verb.value:<9}", fg="white", dim=True, nl=False)
        click.echo(f" {action.resource_id}  ({action.rationale})")
        deps = execution_plan.dependencies.get(action.resource_id)
        if deps and ctx.obj.get("verbose"):
            click.echo(f"       after: {', '.join(deps)}")

    click.echo()


# ── validate ────────────────────────────────────────────────────────


@cli.command()
@manifest_option
@json_option
def validate(manifest_path: Path | None, as_json: bool) -> None:
    """Check a manifest without touching the machine."""
    from converge.core.use_cases.validate import validate_manifest_file

    result = validate_manifest_file(manifest_path)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.valid:
        assert result.manifest is not None
        click.secho("✅ Manifest is valid", fg="green", bold=True)
        click.echo(f"   Manifest: {result.manifest.name or result.manifest_path}")
        click.echo(f"   Resources: {len(result.manifest.resources)}")
    else:
        click.secho("❌ Manifest errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    sys.exit(result.exit_code)


# ── status ──────────────────────────────────────────────────────────


@cli.command()
@manifest_option
@click.option("--state-dir", default=None, help="Where state and audit files are kept.")
@json_option
@click.pass_context
def status(ctx: click.Context, manifest_path: Path | None, state_dir: str | None, as_json: bool) -> None:
    """Show what the last run did."""
    from converge.core.use_cases.status import get_status

    result = get_status(manifest_path, state_dir=state_dir)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(EXIT_MANIFEST if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(EXIT_MANIFEST)

    assert result.manifest is not None and result.state is not None
    click.secho(f"\n📋 {result.manifest.name or result.manifest_path}", fg="cyan", bold=True)
    if result.manifest.description:
        click.echo(f"   {result.manifest.description}")
    click.echo(f"   Resources: {len(result.manifest.resources)}")

    if not result.has_run:
        click.echo("\n   No runs recorded yet.\n")
        return

    last = result.state.last_run
    click.echo()
    click.secho("   Last run:", fg="white", bold=True)
    click.echo(f"     {last.operation_id} — ", nl=False)
    click.secho(last.status, fg=_STATUS_COLOR.get(last.status, "white"))
    click.echo(
        f"     {last.actions_succeeded} succeeded, {last.actions_skipped} skipped, "
        f"{last.actions_failed} not converged, in {format_duration(last.duration_ms)}"
    )
    if last.ended_at:
        click.echo(f"     at {last.ended_at}")

    broken = {rid: rs for rid, rs in result.state.resources.items()
              if rs.last_outcome not in (Outcome.SUCCEEDED, Outcome.SKIPPED)}
    if broken:
        click.echo()
        click.secho("   Not converged:", fg="red", bold=True)
        for rid, rs in broken.items():
            click.echo(f"     • {rid} ({rs.last_outcome}): {rs.last_error or ''}")

    if ctx.obj.get("verbose") and len(result.history) > 1:
        click.echo()
        click.secho("   History:", fg="white", bold=True)
        for entry in reversed(result.history):
            click.echo(f"     {entry.timestamp}  {entry.status:<9} {entry.operation_id}")

    click.echo()


# ── kinds ───────────────────────────────────────────────────────────


@cli.command()
@json_option
def kinds(as_json: bool) -> None:
    """List the resource kinds this build can converge."""
    from converge.drivers.registry import default_registry

    described = default_registry().describe()

    if as_json:
        click.echo(json.dumps(described, indent=2))
        return

    click.secho("\n🔧 Resource kinds", fg="cyan", bold=True)
    for info in described:
        flags = []
        if info["network"]:
            flags.append("network, retried")
        if info["lock"]:
            flags.append(f"lock: {info['lock']}")
        suffix = f"  ({'; '.join(flags)})" if flags else ""
        click.echo(f"   • {info['kind']}{suffix}")
    click.echo()


if __name__ == "__main__":
    cli()
