"""
CLI commands for the stack spec document.

Thin wrappers over ``StackManager``.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
import yaml

from stackplane.core.errors import StackplaneError
from stackplane.core.models.spec import EXPOSURES
from stackplane.core.persistence.state_file import dump_spec
from stackplane.ui.cli.common import echo_json, fail, get_manager


@click.group()
def spec() -> None:
    """Stack spec — show, replace, change the access scope."""


@spec.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, as_json: bool) -> None:
    """Print the current spec."""
    try:
        current = get_manager(ctx).get_spec()
    except StackplaneError as e:
        fail(e, as_json)
        return

    if as_json:
        echo_json(current.to_document())
    else:
        click.echo(dump_spec(current), nl=False)


@spec.command("set")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def set_spec(ctx: click.Context, path: Path) -> None:
    """Replace the spec with the YAML (or JSON) document at PATH."""
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        click.secho(f"✗ invalid_stack_spec: {e}", fg="red")
        sys.exit(1)

    manager = get_manager(ctx)
    try:
        manager.set_spec(raw)
        _artifacts, report = manager.render_preview()
    except StackplaneError as e:
        fail(e)
        return

    click.secho("✓ Spec updated", fg="green")
    _echo_report_summary(report.changed_artifacts, report.missing_secret_references)


@spec.command()
@click.argument("value", type=click.Choice(list(EXPOSURES)))
@click.pass_context
def scope(ctx: click.Context, value: str) -> None:
    """Set the global access scope (host, lan, public)."""
    try:
        get_manager(ctx).set_access_scope(value)
    except StackplaneError as e:
        fail(e)
        return
    click.secho(f"✓ Access scope: {value}", fg="green")


def _echo_report_summary(changed: list[str], missing: list[str]) -> None:
    if changed:
        click.echo(f"  {len(changed)} artifact(s) will change on next apply:")
        for path in changed:
            click.echo(f"    • {path}")
    if missing:
        click.secho("  ⚠️  Unresolved secret references:", fg="yellow")
        for token in missing:
            click.echo(f"    • {token}")
