"""
CLI commands for the secrets store.

Values are written, never read back: ``list`` shows only whether a
secret is configured and who uses it.
"""

from __future__ import annotations

import click

from stackplane.core.errors import StackplaneError
from stackplane.ui.cli.common import echo_json, fail, get_manager


@click.group()
def secrets() -> None:
    """Secrets — list, set, delete."""


@secrets.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_secrets(ctx: click.Context, as_json: bool) -> None:
    """List known secrets with their usage."""
    try:
        state = get_manager(ctx).list_secret_state()
    except StackplaneError as e:
        fail(e, as_json)
        return

    if as_json:
        echo_json(state)
        return

    for entry in state:
        mark, color = ("✓", "green") if entry["configured"] else ("·", "yellow")
        click.secho(f"  {mark} {entry['name']}", fg=color, nl=False)
        if entry["used_by"]:
            click.echo(f"  ({', '.join(entry['used_by'])})")
        else:
            click.echo()


@secrets.command("set")
@click.argument("name")
@click.option("--value", prompt=True, hide_input=True, help="Secret value (prompted if omitted).")
@click.pass_context
def set_secret(ctx: click.Context, name: str, value: str) -> None:
    """Create or replace secret NAME."""
    try:
        key = get_manager(ctx).upsert_secret(name, value)
    except StackplaneError as e:
        fail(e)
        return
    click.secho(f"✓ {key} saved", fg="green")


@secrets.command("delete")
@click.argument("name")
@click.pass_context
def delete_secret(ctx: click.Context, name: str) -> None:
    """Delete secret NAME (refused while it is in use)."""
    try:
        removed = get_manager(ctx).delete_secret(name)
    except StackplaneError as e:
        fail(e)
        return
    if removed:
        click.secho(f"✓ {name.upper()} deleted", fg="green")
    else:
        click.secho(f"· {name.upper()} was not set", fg="yellow")
