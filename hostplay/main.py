"""
hostplay: CLI entrypoint.

Usage:
    hostplay --help
    hostplay run site.yml
    hostplay check site.yml
    hostplay facts --host localhost
    hostplay history site.yml
    hostplay adapters
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from hostplay import __version__
from hostplay.core.config.loader import ConfigError, load_settings
from hostplay.core.observability.logging_config import resolve_level, setup_logging

_MARKERS = {
    "changed": ("✓", "yellow"),
    "unchanged": ("✓", "green"),
    "skipped": ("⊘", "cyan"),
    "failed": ("✗", "red"),
}

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red", "cancelled": "yellow"}
_RECAP_KEYS = ("changed", "unchanged", "skipped", "failed", "ignored")


@click.group()
@click.version_option(version=__version__, prog_name="hostplay")
@click.option("--verbose", "-v", is_flag=True, help="Log each task as it runs.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to hostplay.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """hostplay: reconcile hosts with declarative playbooks."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        cli_level = "DEBUG"
    elif verbose:
        cli_level = "INFO"
    elif quiet:
        cli_level = "ERROR"
    else:
        cli_level = None

    configured = None
    if cli_level is None:
        try:
            configured = load_settings(ctx.obj["config_path"]).log_level
        except ConfigError:
            configured = None  # the command that loads settings reports it

    setup_logging(level=resolve_level(cli_level, configured), quiet_third_party=not debug)


# ── run ─────────────────────────────────────────────────────────


@cli.command()
@click.argument("playbook", type=click.Path(exists=False, dir_okay=False))
@click.option("--host", "hosts", multiple=True, help="Target host (repeatable).")
@click.option(
    "--facts",
    "facts_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML file mapping host names to facts.",
)
@click.option("--fanout", type=click.IntRange(min=1), default=None, help="Max hosts in parallel.")
@click.option("--timeout", "task_timeout", type=float, default=None, help="Default per-task timeout (seconds).")
@click.option("--dry-run", is_flag=True, help="Validate mutating tasks without running them.")
@click.option("--mock", is_flag=True, help="Use mock adapters (no host changes).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--audit/--no-audit", default=None, help="Append the run to the audit ledger.")
@click.pass_context
def run(
    ctx: click.Context,
    playbook: str,
    hosts: tuple[str, ...],
    facts_file: str | None,
    fanout: int | None,
    task_timeout: float | None,
    dry_run: bool,
    mock: bool,
    as_json: bool,
    audit: bool | None,
) -> None:
    """Run a playbook against hosts.

    Examples:

        hostplay run site.yml

        hostplay run site.yml --host web1 --host web2 --facts hosts.yml

        hostplay run site.yml --dry-run
    """
    from hostplay.core.use_cases.run import run_playbook

    result = run_playbook(
        Path(playbook),
        list(hosts) if hosts else None,
        config_path=ctx.obj.get("config_path"),
        facts_file=Path(facts_file) if facts_file else None,
        fanout=fanout,
        task_timeout=task_timeout,
        dry_run=dry_run,
        mock_mode=mock,
        audit=audit,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    verbose = ctx.obj.get("verbose", False)
    mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""

    for report in result.reports:
        click.secho(f"\n⚡ {mode_label}{report.playbook or 'play'}", fg="cyan", bold=True)
        if not report.hosts:
            click.echo("   (no matching hosts)")
            continue

        for record in report.records:
            marker, color = _MARKERS[record.status.value]
            item = f" ({record.item})" if record.item else ""
            prefix = "handler: " if record.handler else ""
            click.secho(f"   {marker} {record.host} | {prefix}{record.task}{item}", fg=color, nl=False)
            timing = f" ({record.duration_ms}ms)" if verbose and record.duration_ms else ""
            click.echo(f" → {record.status.value}{timing}")
            if record.failed and record.error:
                note = " [ignored]" if record.ignored else ""
                for line in record.error.split("\n")[:5]:
                    click.echo(f"     │ {line}{note}")
                    note = ""

    # ── Recap ───────────────────────────────────────────────────
    click.echo()
    click.secho("   Recap:", bold=True)
    recap: dict[str, dict[str, int]] = {}
    for report in result.reports:
        for host in report.hosts:
            counts = recap.setdefault(host.host, dict.fromkeys(_RECAP_KEYS, 0))
            for key in counts:
                counts[key] += getattr(host, key)
    for host_name, counts in recap.items():
        color = "red" if counts["failed"] else "green"
        click.secho(f"     {host_name}", fg=color, bold=True, nl=False)
        click.echo("  " + "  ".join(f"{k}={v}" for k, v in counts.items()))

    if result.cancelled:
        click.secho("\n   Run cancelled", fg="yellow", bold=True)
    if result.audit_path:
        click.echo(f"   Audit: {result.audit_path}")

    sys.exit(result.exit_code)


# ── check ───────────────────────────────────────────────────────


@cli.command()
@click.argument("playbook", type=click.Path(exists=False, dir_okay=False))
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def check(playbook: str, as_json: bool) -> None:
    """Validate a playbook without running it."""
    from hostplay.core.use_cases.playbook_check import check_playbook

    result = check_playbook(Path(playbook))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        summary = result.to_dict()
        click.secho(f"✅ {playbook} is valid", fg="green", bold=True)
        click.echo(
            f"   Plays: {summary['play_count']} | "
            f"Tasks: {summary['task_count']} | "
            f"Handlers: {summary['handler_count']}"
        )
    else:
        click.secho(f"❌ {playbook} has errors", fg="red", bold=True)

    for error in result.errors:
        click.secho(f"   ✗ {error}", fg="red")
    for warning in result.warnings:
        click.secho(f"   ⚠ {warning}", fg="yellow")

    if not result.valid:
        sys.exit(1)


# ── facts ───────────────────────────────────────────────────────


@cli.command()
@click.option("--host", "hosts", multiple=True, help="Host to describe (default: localhost).")
@click.option(
    "--facts",
    "facts_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML file mapping host names to facts.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def facts(hosts: tuple[str, ...], facts_file: str | None, as_json: bool) -> None:
    """Show the facts guards would see for each host."""
    from hostplay.core.errors import FactGatherError
    from hostplay.core.use_cases.run import build_fact_provider

    try:
        provider = build_fact_provider(Path(facts_file) if facts_file else None)
    except FactGatherError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    gathered: dict[str, dict] = {}
    errors: dict[str, str] = {}
    for host in hosts or ("localhost",):
        try:
            gathered[host] = provider.gather(host).variables()
        except FactGatherError as e:
            errors[host] = str(e)

    if as_json:
        click.echo(json.dumps({"facts": gathered, "errors": errors}, indent=2, default=str))
        sys.exit(1 if errors else 0)

    for host, values in gathered.items():
        click.secho(f"\n🖥  {host}", fg="cyan", bold=True)
        for key, value in values.items():
            click.echo(f"   {key}: {value}")
    for host, error in errors.items():
        click.secho(f"\n✗ {host}: {error}", fg="red")

    if errors:
        sys.exit(1)


# ── history ─────────────────────────────────────────────────────


@cli.command()
@click.argument("playbook", type=click.Path(exists=False, dir_okay=False))
@click.option(
    "-n",
    "count",
    type=click.IntRange(min=1),
    default=20,
    show_default=True,
    help="Number of entries to show.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, playbook: str, count: int, as_json: bool) -> None:
    """Show the most recent audited runs of a playbook."""
    from hostplay.core.persistence.audit import AuditWriter, resolve_audit_path

    try:
        settings = load_settings(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    audit = AuditWriter(resolve_audit_path(Path(playbook), settings.audit_path))
    entries = audit.read_recent(count)
    total = audit.entry_count()

    if as_json:
        click.echo(json.dumps({
            "ledger": str(audit.path),
            "total": total,
            "entries": [e.model_dump(mode="json") for e in entries],
        }, indent=2))
        return

    if not entries:
        click.secho(f"No audited runs in {audit.path}", fg="yellow")
        return

    click.secho(f"📜 {len(entries)} of {total} entries ({audit.path})", bold=True)
    for entry in entries:
        color = _STATUS_COLORS.get(entry.status, "white")
        mode = " [dry-run]" if entry.dry_run else ""
        click.secho(f"   {entry.timestamp}  {entry.status:<9}", fg=color, nl=False)
        click.echo(
            f" {entry.play}{mode}  hosts={len(entry.hosts)}"
            f" changed={entry.tasks_changed} failed={entry.tasks_failed}"
            f" ({entry.duration_ms}ms)"
        )
        for error in entry.errors:
            click.secho(f"      ✗ {error}", fg="red")


# ── adapters ────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def adapters(as_json: bool) -> None:
    """List capability adapters and whether their tools are available here."""
    from hostplay.adapters import default_registry

    status = default_registry().adapter_status()

    if as_json:
        click.echo(json.dumps(status, indent=2))
        return

    for name, info in status.items():
        icon, color = ("✓", "green") if info["available"] else ("✗", "red")
        mode = "  read-only" if info["read_only"] else ""
        click.secho(f"   {icon} {name:<8}", fg=color, bold=True, nl=False)
        click.echo(f" {info['type']}{mode}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
