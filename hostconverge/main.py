"""
hostconverge — CLI entrypoint.

Usage:
    hostconverge --help
    hostconverge validate
    hostconverge plan
    hostconverge apply --trace
    python -m hostconverge.main status
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from hostconverge import __version__
from hostconverge.core.observability.logging_config import resolve_level, setup_logging

_MARKERS = {"applied": ("✓", "green"), "skipped": ("⊘", "yellow"), "failed": ("✗", "red")}


@click.group()
@click.version_option(version=__version__, prog_name="hostconverge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--manifest",
    "-m",
    "manifest_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to provision.yml (default: auto-detect).",
)
@click.option(
    "--set",
    "overrides",
    multiple=True,
    metavar="KEY=VALUE",
    help="Override a manifest attribute (e.g. --set gitlab.user=alice).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    manifest_path: str | None,
    overrides: tuple[str, ...],
) -> None:
    """hostconverge — converge this host to a declared state."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["manifest_path"] = Path(manifest_path) if manifest_path else None
    ctx.obj["overrides"] = list(overrides)

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        cli_level = "DEBUG"
    elif verbose:
        cli_level = "INFO"
    elif quiet:
        cli_level = "ERROR"
    else:
        cli_level = None

    setup_logging(level=resolve_level(cli_level), quiet_third_party=not debug)


def _echo_entry(entry, verbose: bool) -> None:
    icon, color = _MARKERS[entry.outcome.value]
    click.secho(f"   {icon} {entry.action_key}", fg=color, nl=False)
    timing = f" ({entry.duration_ms}ms)" if entry.duration_ms else ""
    click.echo(timing)
    if entry.failed:
        click.echo(f"     │ [{entry.collaborator or 'engine'}] {entry.error_type}")
        for line in entry.detail.split("\n")[:5]:
            click.echo(f"     │ {line}")
    elif verbose and entry.detail:
        click.echo(f"     │ {entry.detail}")
    for warning in entry.warnings:
        click.secho(f"     ⚠ {warning}", fg="yellow")


# ── validate ────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def validate(ctx: click.Context, as_json: bool) -> None:
    """Validate provision.yml and its dependency graph."""
    from hostconverge.core.use_cases.validate import validate_manifest

    result = validate_manifest(ctx.obj.get("manifest_path"), ctx.obj.get("overrides", []))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.manifest is not None
        click.secho("✅ Manifest is valid", fg="green", bold=True)
        click.echo(f"   Manifest: {result.manifest.name}")
        click.echo(f"   Actions: {len(result.manifest.actions)}")
        click.echo(f"   Secrets: {len(result.manifest.secrets)}")
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
    if not result.valid:
        sys.exit(1)


# ── plan ────────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Observe an in-memory host instead of this one.")
@click.option("--order-only", is_flag=True, help="Show execution order without running guards.")
@click.pass_context
def plan(ctx: click.Context, as_json: bool, mock: bool, order_only: bool) -> None:
    """Show execution order and which actions would apply."""
    from hostconverge.core.use_cases.plan import plan_manifest

    result = plan_manifest(
        ctx.obj.get("manifest_path"),
        ctx.obj.get("overrides", []),
        mock_mode=mock,
        evaluate_guards=not order_only,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    assert result.plan is not None and result.manifest is not None
    click.secho(f"\n📋 Plan — {result.manifest.name}", fg="cyan", bold=True)
    for planned in result.plan.actions:
        if planned.verdict is None:
            click.echo(f"   {planned.position:>3}. {planned.spec.key}")
        elif planned.would_apply:
            click.secho(f"   {planned.position:>3}. + {planned.spec.key}", fg="green", nl=False)
            click.echo(f"  ({planned.verdict.reason})")
        else:
            click.secho(f"   {planned.position:>3}. ⊘ {planned.spec.key}", fg="yellow", nl=False)
            click.echo(f"  ({planned.verdict.reason})")
    if not order_only:
        click.echo()
        click.echo(f"   {result.plan.pending}/{len(result.plan.actions)} action(s) would apply")
    click.echo()


# ── apply ───────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use in-memory collaborators (nothing on the host changes, nothing saved).")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Run deadline in seconds.")
@click.option("--trace", is_flag=True, help="Print the full ordered trace.")
@click.option("--no-save", is_flag=True, help="Don't write .state/.")
@click.pass_context
def apply(
    ctx: click.Context,
    as_json: bool,
    mock: bool,
    timeout: float | None,
    trace: bool,
    no_save: bool,
) -> None:
    """Converge this host to the manifest.

    Examples:

        hostconverge apply

        hostconverge apply --mock --trace

        hostconverge --set gitlab.branch=stable apply --timeout 1800
    """
    from hostconverge.core.engine.report import format_summary, format_trace
    from hostconverge.core.use_cases.apply import apply_manifest

    verbose = ctx.obj.get("verbose", False)
    live = not as_json and not ctx.obj.get("quiet", False)

    if live:
        click.secho(f"\n⚡ {'[mock] ' if mock else ''}apply", fg="cyan", bold=True)

    result = apply_manifest(
        ctx.obj.get("manifest_path"),
        ctx.obj.get("overrides", []),
        mock_mode=mock,
        timeout=timeout,
        on_entry=(lambda e: _echo_entry(e, verbose)) if live else None,
        persist=not no_save,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    record = result.record
    assert record is not None

    if trace:
        click.echo()
        click.echo(format_trace(record))

    click.echo()
    click.secho(f"   {format_summary(record)}", fg="green" if record.ok else "red", bold=True)
    click.echo()
    if not record.ok:
        sys.exit(1)


# ── status / history ────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--trace", is_flag=True, help="Print the last run's full trace.")
@click.pass_context
def status(ctx: click.Context, as_json: bool, trace: bool) -> None:
    """Show the last run and per-action state."""
    from hostconverge.core.engine.report import format_summary, format_trace
    from hostconverge.core.use_cases.status import get_status

    result = get_status(ctx.obj.get("manifest_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if not result.has_state or result.last_run is None:
        click.echo("No runs recorded yet.")
        return

    record = result.last_run
    assert result.state is not None
    click.secho(f"\n📋 {result.state.manifest_name or 'unnamed'}", fg="cyan", bold=True)
    click.echo(f"   Runs recorded: {result.runs_recorded}")
    click.echo("   Last run: ", nl=False)
    click.secho(format_summary(record), fg="green" if record.ok else "red")
    if record.ended_at:
        click.echo(f"     at {record.ended_at}")

    if trace:
        click.echo()
        click.echo(format_trace(record))
    elif ctx.obj.get("verbose"):
        click.echo()
        for key, action in sorted(result.state.actions.items()):
            click.echo(f"     • {key}: {action.last_outcome} (runs: {action.run_count})")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("-n", "count", type=int, default=20, show_default=True, help="Number of runs.")
@click.pass_context
def history(ctx: click.Context, as_json: bool, count: int) -> None:
    """Show recent runs from the audit ledger."""
    from hostconverge.core.use_cases.status import get_history

    result = get_history(ctx.obj.get("manifest_path"), count)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if not result.entries:
        click.echo("No runs recorded yet.")
        return

    for entry in result.entries:
        color = "green" if entry.status == "ok" else "red"
        click.secho(f"   {entry.run_id} {entry.status:<6}", fg=color, nl=False)
        click.echo(
            f" {entry.actions_applied} applied, {entry.actions_skipped} skipped, "
            f"{entry.actions_failed} failed  ({entry.timestamp})"
        )
        for err in entry.errors:
            click.echo(f"     │ {err}")


# ── diagnostics ─────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Show the in-memory collaborators instead.")
def collaborators(as_json: bool, mock: bool) -> None:
    """Show which collaborators are available on this host."""
    from hostconverge.core.use_cases.status import collaborator_status

    status_map = collaborator_status(mock_mode=mock)

    if as_json:
        click.echo(json.dumps(status_map, indent=2))
        return

    for name, info in status_map.items():
        if info["available"]:
            click.secho(f"   ✓ {name}", fg="green", nl=False)
        else:
            click.secho(f"   ✗ {name}", fg="red", nl=False)
        click.echo(f"  ({info['type']})")


@cli.command()
@click.option("--algorithm", type=click.Choice(["rsa", "ed25519"]), default="ed25519", show_default=True)
@click.option("--bits", type=int, default=4096, show_default=True, help="RSA key size.")
@click.option("--comment", default="", help="Public key comment.")
def keygen(algorithm: str, bits: int, comment: str) -> None:
    """Generate a keypair and print the public half (diagnostic)."""
    from hostconverge.adapters.crypto.keygen import CryptographyKeyGenerator

    try:
        pair = CryptographyKeyGenerator().generate_keypair(algorithm, comment, bits)
    except ValueError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)
    click.echo(pair.public_key, nl=False)


def main() -> None:
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
