"""
Shared CLI plumbing — build core components from the click context.

The root command stores the loaded ``StackConfig`` in ``ctx.obj``.  Tests
may also place a ``spawn`` callable (compose transport) and a ``fetch``
callable (readiness HTTP probes) there.
"""

from __future__ import annotations

import json
import sys
from typing import Any

import click

from stackplane.adapters.compose.runner import ComposeRunner
from stackplane.adapters.compose.services import ComposeServices
from stackplane.core.config import StackConfig
from stackplane.core.errors import StackplaneError
from stackplane.core.observability.readiness import ReadinessProber
from stackplane.core.services.stack_manager import StackManager


def get_config(ctx: click.Context) -> StackConfig:
    return ctx.obj["config"]


def get_manager(ctx: click.Context) -> StackManager:
    if "manager" not in ctx.obj:
        ctx.obj["manager"] = StackManager(get_config(ctx))
    return ctx.obj["manager"]


def get_services(ctx: click.Context) -> ComposeServices:
    if "services" not in ctx.obj:
        runner = ComposeRunner(get_config(ctx), spawn=ctx.obj.get("spawn"))
        ctx.obj["services"] = ComposeServices(runner)
    return ctx.obj["services"]


def get_prober(ctx: click.Context) -> ReadinessProber:
    kwargs: dict[str, Any] = {}
    if ctx.obj.get("fetch") is not None:
        kwargs["fetch"] = ctx.obj["fetch"]
    if ctx.obj.get("sleep") is not None:
        kwargs["sleep"] = ctx.obj["sleep"]
    return ReadinessProber(get_services(ctx), get_config(ctx), **kwargs)


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2))


def fail(error: StackplaneError, as_json: bool = False) -> None:
    """Report a core error and exit 1."""
    if as_json:
        echo_json({"ok": False, **error.to_dict()})
    else:
        click.secho(f"✗ {error.code}", fg="red", bold=True)
        if error.service:
            click.echo(f"  service: {error.service}")
        if error.detail:
            click.echo(f"  {error.detail}")
    sys.exit(1)
