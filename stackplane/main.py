"""
stackplane — CLI entrypoint.

Usage:
    stackplane --help
    stackplane render
    stackplane apply --wait
    stackplane secrets list
"""

from __future__ import annotations

import sys

import click

from stackplane import __version__
from stackplane.core.config import ConfigError, load_config
from stackplane.core.errors import ApplyError, StackplaneError
from stackplane.core.observability.logging_config import setup_logging
from stackplane.core.observability.readiness import ReadinessReport
from stackplane.core.services.apply_engine import ApplyEngine, readiness_targets
from stackplane.ui.cli.common import echo_json, fail, get_manager, get_prober, get_services


@click.group()
@click.version_option(version=__version__, prog_name="stackplane")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """stackplane — render and apply a self-hosted service stack."""
    ctx.ensure_object(dict)

    # The only place the process environment is read
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config()
        except ConfigError as e:
            click.secho(f"✗ {e}", fg="red")
            sys.exit(2)
    config = ctx.obj["config"]

    if debug:
        override = "DEBUG"
    elif verbose:
        override = "INFO"
    elif quiet:
        override = "ERROR"
    else:
        override = None
    setup_logging(config, level_override=override, quiet_third_party=not debug)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def render(ctx: click.Context, as_json: bool) -> None:
    """Re-render and report what the next apply would change."""
    try:
        report = get_manager(ctx).render_artifacts()
    except StackplaneError as e:
        fail(e, as_json)
        return

    if as_json:
        echo_json(report.model_dump(mode="json"))
        sys.exit(0 if report.apply_safe else 1)

    if report.changed_artifacts:
        click.secho(f"📝 {len(report.changed_artifacts)} artifact(s) changed:", fg="cyan", bold=True)
        for path in report.changed_artifacts:
            click.echo(f"   • {path}")
    else:
        click.secho("✓ Artifacts up to date", fg="green")

    if not report.apply_safe:
        click.secho("⚠️  Unresolved secret references:", fg="yellow")
        for token in report.missing_secret_references:
            click.echo(f"   • {token}")
        sys.exit(1)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--dry-run", is_flag=True, help="Plan but don't write or run anything.")
@click.option("--wait", "wait_ready", is_flag=True, help="Probe readiness after applying.")
@click.pass_context
def apply(ctx: click.Context, as_json: bool, dry_run: bool, wait_ready: bool) -> None:
    """Apply the current spec to the running stack."""
    try:
        engine = ApplyEngine(get_manager(ctx), get_services(ctx), prober=get_prober(ctx))
        result = engine.apply(dry_run=dry_run, wait_ready=wait_ready)
    except StackplaneError as e:
        if isinstance(e, ApplyError) and not as_json:
            if e.recovery:
                click.echo(f"  recovery: {e.recovery}")
            for note in e.notes:
                click.echo(f"  note: {note}")
        fail(e, as_json)
        return

    if as_json:
        echo_json(result.to_dict())
        sys.exit(0 if result.ok else 1)

    plan = result.plan
    label = "Plan" if dry_run else "Applied"
    click.secho(f"\n🚀 {label} ({result.operation_id})", fg="cyan", bold=True)
    for name, services in (("up", plan.up), ("restart", plan.restart),
                           ("reload", plan.reload), ("down", plan.down)):
        if services:
            click.echo(f"   {name:<8} {', '.join(services)}")
    if plan.is_empty:
        click.echo("   nothing to do")
    if plan.down and not dry_run:
        click.secho("   ⚠️  removed services are still running; use 'stackplane prune'", fg="yellow")
    if result.readiness is not None:
        _echo_readiness(result.readiness)
        if not result.readiness.ok:
            sys.exit(1)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show process status of the stack's services."""
    result, services = get_services(ctx).ps()
    if as_json:
        echo_json({
            "ok": result.ok,
            "code": result.code,
            "services": [s.to_dict() for s in services],
        })
        sys.exit(0 if result.ok else 1)

    if not result.ok:
        click.secho(f"✗ {result.code}", fg="red")
        click.echo(f"  {result.stderr.strip()}")
        sys.exit(1)

    for svc in sorted(services, key=lambda s: s.name):
        color = "green" if svc.running and svc.health in ("", "healthy") else "yellow"
        health = f" ({svc.health})" if svc.health else ""
        click.secho(f"   {svc.name:<24} {svc.status}{health}", fg=color)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--attempts", type=int, default=None, help="Override readiness attempts.")
@click.pass_context
def probe(ctx: click.Context, as_json: bool, attempts: int | None) -> None:
    """Poll until the stack is ready (or attempts run out)."""
    try:
        targets = readiness_targets(get_manager(ctx).get_spec())
    except StackplaneError as e:
        fail(e, as_json)
        return
    report = get_prober(ctx).probe(targets, max_attempts=attempts)
    if as_json:
        echo_json(report.to_dict())
    else:
        _echo_readiness(report)
    sys.exit(0 if report.ok else 1)


@cli.command()
@click.argument("service")
@click.option("--tail", default=200, type=int, help="Lines to show (1-5000).")
@click.option("--follow", "-f", is_flag=True, help="Stream new output.")
@click.pass_context
def logs(ctx: click.Context, service: str, tail: int, follow: bool) -> None:
    """Show recent logs of SERVICE."""
    result = get_services(ctx).logs(service, tail=tail, follow=follow)
    if not result.ok:
        click.secho(f"✗ {result.code}", fg="red")
        click.echo(f"  {result.stderr.strip()}")
        sys.exit(1)
    if not follow:
        click.echo(result.stdout, nl=False)


@cli.command()
@click.pass_context
def prune(ctx: click.Context) -> None:
    """Remove containers of services no longer in the stack."""
    result = get_services(ctx).remove_orphans()
    if not result.ok:
        click.secho(f"✗ {result.code}", fg="red")
        click.echo(f"  {result.stderr.strip()}")
        sys.exit(1)
    click.secho("✓ Orphaned containers removed", fg="green")


def _echo_readiness(report: ReadinessReport) -> None:
    if report.ok:
        click.secho(f"   ✓ ready after {report.attempts} attempt(s)", fg="green")
        return
    click.secho(f"   ✗ {report.code} after {report.attempts} attempt(s)", fg="red", bold=True)
    for check in report.checks:
        if check.ready:
            continue
        where = f" {check.url}" if check.url else ""
        error = f": {check.error}" if check.error else ""
        click.echo(f"     • {check.service} {check.reason}{where}{error}")


# ── Register sub-groups ─────────────────────────────────────────

from stackplane.ui.cli.channel import channel  # noqa: E402
from stackplane.ui.cli.secrets import secrets  # noqa: E402
from stackplane.ui.cli.spec import spec  # noqa: E402

cli.add_command(spec)
cli.add_command(secrets)
cli.add_command(channel)


if __name__ == "__main__":
    cli()
