"""
Reverse-proxy generator — the Caddy JSON config.

Route order matters: the admin API subroute first, then one route per
enabled channel (sorted by name), then the catch-all to the assistant.
Each channel route carries an IP-range guard for its exposure:

    host    loopback only
    lan     loopback + private ranges
    public  no guard
"""

from __future__ import annotations

import json
from typing import Any

from stackplane.core.models.catalog import (
    ADMIN_SERVICE,
    ASSISTANT_SERVICE,
    CORE_PORTS,
    PROXY_SERVICE,
)
from stackplane.core.models.spec import ChannelSpec, StackSpec, compose_service_name

LOOPBACK_RANGES: list[str] = ["127.0.0.0/8", "::1"]
PRIVATE_RANGES: list[str] = [
    "127.0.0.0/8",
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "::1",
    "fd00::/8",
]

ADMIN_PATH_PREFIX = "/api"
CHANNEL_PATH_PREFIX = "/channels"

Route = dict[str, Any]


def guard_ranges(exposure: str) -> list[str] | None:
    """Allowed client ranges for an exposure; None means unrestricted."""
    if exposure == "host":
        return list(LOOPBACK_RANGES)
    if exposure == "lan":
        return list(PRIVATE_RANGES)
    return None


def _guard_route(ranges: list[str]) -> Route:
    """Reject (403) any client outside ``ranges``."""
    return {
        "match": [{"not": [{"remote_ip": {"ranges": ranges}}]}],
        "handle": [{
            "handler": "static_response",
            "status_code": "403",
            "headers": {"Connection": ["close"]},
        }],
        "terminal": True,
    }


def _reverse_proxy(upstream: str) -> dict[str, Any]:
    return {"handler": "reverse_proxy", "upstreams": [{"dial": upstream}]}


def _admin_route(scope: str) -> Route:
    # The admin API is never left unguarded, whatever the global scope.
    ranges = guard_ranges(scope) or list(PRIVATE_RANGES)
    upstream = f"{ADMIN_SERVICE}:{CORE_PORTS[ADMIN_SERVICE]}"
    return {
        "match": [{"path": [f"{ADMIN_PATH_PREFIX}*"]}],
        "handle": [{
            "handler": "subroute",
            "routes": [
                _guard_route(ranges),
                {"handle": [
                    {"handler": "rewrite", "strip_path_prefix": ADMIN_PATH_PREFIX},
                    _reverse_proxy(upstream),
                ]},
            ],
        }],
        "terminal": True,
    }


def _channel_route(name: str, channel: ChannelSpec, exposure: str) -> Route:
    upstream = f"{compose_service_name('channel', name)}:{channel.container_port}"
    prefix = f"{CHANNEL_PATH_PREFIX}/{name}"

    if channel.domains:
        match: list[dict[str, Any]] = [{"host": list(channel.domains)}]
        rewrite = {"handler": "rewrite", "uri": channel.rewrite_path} if channel.rewrite_path else None
    else:
        match = [{"path": [f"{prefix}*"]}]
        rewrite = (
            {"handler": "rewrite", "uri": channel.rewrite_path}
            if channel.rewrite_path
            else {"handler": "rewrite", "strip_path_prefix": prefix}
        )

    routes: list[Route] = []
    ranges = guard_ranges(exposure)
    if ranges is not None:
        routes.append(_guard_route(ranges))
    handlers = [rewrite] if rewrite else []
    handlers.append(_reverse_proxy(upstream))
    routes.append({"handle": handlers})

    return {"match": match, "handle": [{"handler": "subroute", "routes": routes}], "terminal": True}


def _catch_all(scope: str) -> Route:
    upstream = f"{ASSISTANT_SERVICE}:{CORE_PORTS[ASSISTANT_SERVICE]}"
    ranges = guard_ranges(scope) or list(PRIVATE_RANGES)
    return {
        "handle": [{
            "handler": "subroute",
            "routes": [_guard_route(ranges), {"handle": [_reverse_proxy(upstream)]}],
        }],
    }


def _document(routes: list[Route]) -> str:
    config = {
        "admin": {"disabled": True},
        "apps": {
            "http": {
                "servers": {
                    "main": {
                        "listen": [f":{CORE_PORTS[PROXY_SERVICE]}"],
                        "routes": routes,
                    },
                },
            },
        },
    }
    return json.dumps(config, indent=2) + "\n"


def render_proxy(spec: StackSpec) -> str:
    """Render the proxy config for a spec."""
    routes = [_admin_route(spec.access_scope)]
    # Domain routes are more specific than path routes; emit them first.
    enabled = spec.enabled_channels()
    for name, channel in [c for c in enabled if c[1].domains] + [c for c in enabled if not c[1].domains]:
        routes.append(_channel_route(name, channel, spec.channel_exposure(name)))
    routes.append(_catch_all(spec.access_scope))
    return _document(routes)


def render_fallback_proxy() -> str:
    """Emergency proxy config: forward everything to the admin service, unguarded."""
    upstream = f"{ADMIN_SERVICE}:{CORE_PORTS[ADMIN_SERVICE]}"
    return _document([{"handle": [_reverse_proxy(upstream)]}])
