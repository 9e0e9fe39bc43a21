"""
CLI commands for channels.
"""

from __future__ import annotations

import click

from stackplane.core.errors import StackplaneError
from stackplane.core.models.catalog import CHANNEL_CATALOG
from stackplane.core.models.spec import EXPOSURES
from stackplane.ui.cli.common import fail, get_manager


@click.group()
def channel() -> None:
    """Channels — enable, disable, expose, add instances."""


@channel.command()
@click.argument("name")
@click.pass_context
def enable(ctx: click.Context, name: str) -> None:
    """Enable channel NAME."""
    try:
        get_manager(ctx).set_channel_enabled(name, True)
    except StackplaneError as e:
        fail(e)
        return
    click.secho(f"✓ {name} enabled (run 'stackplane apply')", fg="green")


@channel.command()
@click.argument("name")
@click.pass_context
def disable(ctx: click.Context, name: str) -> None:
    """Disable channel NAME."""
    try:
        get_manager(ctx).set_channel_enabled(name, False)
    except StackplaneError as e:
        fail(e)
        return
    click.secho(f"✓ {name} disabled (run 'stackplane apply')", fg="green")


@channel.command()
@click.argument("name")
@click.argument("exposure", type=click.Choice(list(EXPOSURES)))
@click.pass_context
def expose(ctx: click.Context, name: str, exposure: str) -> None:
    """Set the exposure of channel NAME."""
    try:
        get_manager(ctx).set_channel_exposure(name, exposure)
    except StackplaneError as e:
        fail(e)
        return
    click.secho(f"✓ {name} exposure: {exposure}", fg="green")


@channel.command()
@click.argument("template", type=click.Choice(sorted(CHANNEL_CATALOG)))
@click.option("--name", default=None, help="Instance name (default: next free suffix).")
@click.option("--exposure", type=click.Choice(list(EXPOSURES)), default=None)
@click.pass_context
def add(ctx: click.Context, template: str, name: str | None, exposure: str | None) -> None:
    """Add a channel instance from catalog TEMPLATE."""
    try:
        created, _spec = get_manager(ctx).add_channel_instance(template, name, exposure=exposure)
    except StackplaneError as e:
        fail(e)
        return
    click.secho(f"✓ Added channel {created}", fg="green")
