"""
Compose generator — the docker-compose.yml for the stack.

Core services are always present; every enabled channel and service
adds one ``channel-<name>`` / ``service-<name>`` block.  Secrets are never
embedded: each block reads them from its own env file.  All host paths
are relative to the compose file's directory (the state root).
"""

from __future__ import annotations

from typing import Any

import yaml

from stackplane.core.models.artifacts import PROXY_FILE, SYSTEM_ENV_FILE, env_file_path
from stackplane.core.models.catalog import (
    ADMIN_SERVICE,
    ASSISTANT_SERVICE,
    CORE_IMAGES,
    CORE_PORTS,
    DATABASE_SERVICE,
    GATEWAY_SERVICE,
    INDEX_SERVICE,
    PROXY_SERVICE,
    VECTOR_SERVICE,
)
from stackplane.core.models.spec import ChannelSpec, ServiceSpec, StackSpec, compose_service_name

HEADER = "# Generated by stackplane; do not edit. Regenerated on every render.\n"

CHANNEL_NET = "channel_net"
ASSISTANT_NET = "assistant_net"

LOOPBACK_BIND = "127.0.0.1"
ANY_BIND = "0.0.0.0"


def bind_address(exposure: str) -> str:
    """Host interface a published port binds to for an exposure level."""
    return LOOPBACK_BIND if exposure == "host" else ANY_BIND


def _healthcheck(url: str) -> dict[str, Any]:
    return {
        "test": ["CMD", "curl", "-fs", url],
        "interval": "30s",
        "timeout": "5s",
        "retries": 3,
        "start_period": "10s",
    }


# ── Core blocks ──────────────────────────────────────────────────


def _core_services(spec: StackSpec) -> dict[str, dict[str, Any]]:
    ingress_bind = bind_address(spec.access_scope)
    return {
        DATABASE_SERVICE: {
            "image": CORE_IMAGES[DATABASE_SERVICE],
            "restart": "unless-stopped",
            "env_file": [env_file_path(DATABASE_SERVICE)],
            "volumes": ["./data/postgres:/var/lib/postgresql/data"],
            "networks": [ASSISTANT_NET],
            "healthcheck": {
                "test": ["CMD-SHELL", "pg_isready -U $${POSTGRES_USER:-postgres}"],
                "interval": "10s",
                "timeout": "5s",
                "retries": 5,
            },
        },
        VECTOR_SERVICE: {
            "image": CORE_IMAGES[VECTOR_SERVICE],
            "restart": "unless-stopped",
            "env_file": [env_file_path(VECTOR_SERVICE)],
            "volumes": ["./data/qdrant:/qdrant/storage"],
            "networks": [ASSISTANT_NET],
        },
        INDEX_SERVICE: {
            "image": CORE_IMAGES[INDEX_SERVICE],
            "restart": "unless-stopped",
            "env_file": [SYSTEM_ENV_FILE, env_file_path(INDEX_SERVICE)],
            "networks": [ASSISTANT_NET],
            "depends_on": [DATABASE_SERVICE, VECTOR_SERVICE],
        },
        ASSISTANT_SERVICE: {
            "image": CORE_IMAGES[ASSISTANT_SERVICE],
            "restart": "unless-stopped",
            "env_file": [SYSTEM_ENV_FILE, env_file_path(ASSISTANT_SERVICE)],
            "environment": [
                f"PORT={CORE_PORTS[ASSISTANT_SERVICE]}",
                f"ADMIN_API_URL=http://{ADMIN_SERVICE}:{CORE_PORTS[ADMIN_SERVICE]}",
            ],
            "volumes": ["./data/assistant:/home/assistant"],
            "networks": [ASSISTANT_NET],
            "depends_on": [INDEX_SERVICE],
            "healthcheck": _healthcheck(f"http://localhost:{CORE_PORTS[ASSISTANT_SERVICE]}/"),
        },
        GATEWAY_SERVICE: {
            "image": CORE_IMAGES[GATEWAY_SERVICE],
            "restart": "unless-stopped",
            "env_file": [env_file_path(GATEWAY_SERVICE)],
            "environment": [
                f"PORT={CORE_PORTS[GATEWAY_SERVICE]}",
                f"ASSISTANT_URL=http://{ASSISTANT_SERVICE}:{CORE_PORTS[ASSISTANT_SERVICE]}",
            ],
            "networks": [CHANNEL_NET, ASSISTANT_NET],
            "depends_on": [ASSISTANT_SERVICE],
            "healthcheck": _healthcheck(f"http://localhost:{CORE_PORTS[GATEWAY_SERVICE]}/health"),
        },
        ADMIN_SERVICE: _admin_block(),
        PROXY_SERVICE: _proxy_block(ingress_bind),
    }


def _admin_block() -> dict[str, Any]:
    return {
        "image": CORE_IMAGES[ADMIN_SERVICE],
        "restart": "unless-stopped",
        "env_file": [env_file_path(ADMIN_SERVICE)],
        "environment": [
            f"PORT={CORE_PORTS[ADMIN_SERVICE]}",
            "STACKPLANE_STATE_ROOT=/state",
        ],
        "volumes": [
            "./:/state",
            "/var/run/docker.sock:/var/run/docker.sock",
        ],
        "networks": [ASSISTANT_NET],
        "healthcheck": _healthcheck(f"http://localhost:{CORE_PORTS[ADMIN_SERVICE]}/health"),
    }


def _proxy_block(ingress_bind: str) -> dict[str, Any]:
    port = CORE_PORTS[PROXY_SERVICE]
    return {
        "image": CORE_IMAGES[PROXY_SERVICE],
        "restart": "unless-stopped",
        "command": ["caddy", "run", "--config", "/etc/caddy/caddy.json"],
        "ports": [f"{ingress_bind}:{port}:{port}"],
        "volumes": [f"./{PROXY_FILE}:/etc/caddy/caddy.json:ro"],
        "networks": [CHANNEL_NET, ASSISTANT_NET],
    }


# ── Entity blocks ────────────────────────────────────────────────


def _channel_block(name: str, channel: ChannelSpec, exposure: str) -> dict[str, Any]:
    service = compose_service_name("channel", name)
    port = channel.published_port("channel")
    return {
        "image": channel.image,
        "restart": "unless-stopped",
        "env_file": [env_file_path(service)],
        "environment": [
            f"PORT={channel.container_port}",
            f"GATEWAY_URL=http://{GATEWAY_SERVICE}:{CORE_PORTS[GATEWAY_SERVICE]}",
        ],
        "ports": [f"{bind_address(exposure)}:{port}:{channel.container_port}"],
        "networks": [CHANNEL_NET],
        "depends_on": [GATEWAY_SERVICE],
    }


def _service_block(name: str, svc: ServiceSpec, exposure: str) -> dict[str, Any]:
    service = compose_service_name("service", name)
    block: dict[str, Any] = {
        "image": svc.image,
        "restart": "unless-stopped",
        "env_file": [env_file_path(service)],
        "expose": [str(svc.container_port)],
    }
    port = svc.published_port("service")
    if port is not None:
        block["ports"] = [f"{bind_address(exposure)}:{port}:{svc.container_port}"]
    block["networks"] = [ASSISTANT_NET]
    return block


# ── Documents ────────────────────────────────────────────────────


def _dump(document: dict[str, Any]) -> str:
    return HEADER + yaml.safe_dump(
        document,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


def render_compose(spec: StackSpec) -> str:
    """Render the full compose document for a spec."""
    services = _core_services(spec)
    for name, channel in spec.enabled_channels():
        services[compose_service_name("channel", name)] = _channel_block(
            name, channel, spec.channel_exposure(name),
        )
    for name, svc in spec.enabled_services():
        services[compose_service_name("service", name)] = _service_block(
            name, svc, spec.access_scope,
        )
    return _dump({
        "services": services,
        "networks": {CHANNEL_NET: {}, ASSISTANT_NET: {}},
    })


def render_fallback_compose() -> str:
    """Emergency compose document: only the admin service and the proxy.

    The proxy binds on all interfaces so the admin UI stays reachable
    while the operator repairs the stack.
    """
    return _dump({
        "services": {
            ADMIN_SERVICE: _admin_block(),
            PROXY_SERVICE: _proxy_block(ANY_BIND),
        },
        "networks": {CHANNEL_NET: {}, ASSISTANT_NET: {}},
    })


def compose_service_blocks(content: str | None) -> dict[str, Any]:
    """Parse a compose document into ``{service name: block}``.

    Returns an empty dict for a missing or unparseable document; the
    impact planner treats that as "nothing was running".
    """
    if not content:
        return {}
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        return {}
    if not isinstance(data, dict) or not isinstance(data.get("services"), dict):
        return {}
    return data["services"]
