"""
Tests for the artifact generators (compose, proxy, env files).
"""

import json

import yaml

from stackplane.core.models.artifacts import COMPOSE_FILE, PROXY_FILE, SYSTEM_ENV_FILE
from stackplane.core.models.catalog import CORE_SERVICES, create_default_spec
from stackplane.core.models.spec import parse_stack_spec
from stackplane.core.services.generators.compose import render_compose, render_fallback_compose
from stackplane.core.services.generators.proxy import (
    LOOPBACK_RANGES,
    PRIVATE_RANGES,
    guard_ranges,
    render_fallback_proxy,
    render_proxy,
)
from stackplane.core.services.stack_generator import build_fallback_bundle, generate_stack_artifacts


def _spec(**overrides):
    doc = {
        "accessScope": "lan",
        "channels": {
            "chat": {
                "enabled": True,
                "image": "stackplane/channel-chat:latest",
                "containerPort": 8181,
                "rewritePath": "/chat",
                "sharedSecretEnv": "CHANNEL_CHAT_SECRET",
                "config": {"CHAT_INBOUND_TOKEN": "${CHAT_TOKEN}"},
            },
            "discord": {
                "enabled": False,
                "image": "stackplane/channel-discord:latest",
                "containerPort": 8184,
            },
        },
        "services": {
            "n8n": {"enabled": True, "image": "n8nio/n8n:latest", "containerPort": 5678},
        },
    }
    doc.update(overrides)
    return parse_stack_spec(doc)


def _compose(spec) -> dict:
    return yaml.safe_load(render_compose(spec))


def _routes(spec) -> list:
    return json.loads(render_proxy(spec))["apps"]["http"]["servers"]["main"]["routes"]


class TestCompose:
    """Tests for the compose document."""

    def test_core_and_enabled_services(self):
        services = _compose(_spec())["services"]
        for name in CORE_SERVICES:
            assert name in services
        assert "channel-chat" in services
        assert "service-n8n" in services
        assert "channel-discord" not in services

    def test_header_comment(self):
        assert render_compose(_spec()).startswith("# Generated by stackplane")

    def test_deterministic(self):
        assert render_compose(_spec()) == render_compose(_spec())

    def test_no_secret_values_embedded(self):
        artifacts = generate_stack_artifacts(_spec(), {"CHAT_TOKEN": "super-secret-value"})
        assert "super-secret-value" not in artifacts.compose
        assert "super-secret-value" in artifacts.env_files["channel-chat"]

    def test_channel_block(self):
        block = _compose(_spec())["services"]["channel-chat"]
        assert block["env_file"] == ["env/channel-chat.env"]
        assert block["ports"] == ["0.0.0.0:8181:8181"]
        assert block["networks"] == ["channel_net"]

    def test_host_exposure_binds_loopback(self):
        spec = _spec()
        spec.channels["chat"].exposure = "host"
        block = _compose(spec)["services"]["channel-chat"]
        assert block["ports"] == ["127.0.0.1:8181:8181"]

    def test_host_port_override(self):
        spec = _spec()
        spec.channels["chat"].host_port = 9000
        block = _compose(spec)["services"]["channel-chat"]
        assert block["ports"] == ["0.0.0.0:9000:8181"]

    def test_service_without_host_port_is_not_published(self):
        block = _compose(_spec())["services"]["service-n8n"]
        assert "ports" not in block
        assert block["expose"] == ["5678"]

    def test_service_with_host_port(self):
        spec = _spec()
        spec.services["n8n"].host_port = 5678
        block = _compose(spec)["services"]["service-n8n"]
        assert block["ports"] == ["0.0.0.0:5678:5678"]

    def test_proxy_binding_follows_scope(self):
        assert _compose(_spec())["services"]["caddy"]["ports"] == ["0.0.0.0:80:80"]
        host = _compose(_spec(accessScope="host"))["services"]["caddy"]["ports"]
        assert host == ["127.0.0.1:80:80"]

    def test_system_env_consumers(self):
        services = _compose(_spec())["services"]
        assert "system.env" in services["assistant"]["env_file"]
        assert "system.env" in services["openmemory"]["env_file"]
        assert "system.env" not in services["gateway"]["env_file"]

    def test_fallback_compose(self):
        services = yaml.safe_load(render_fallback_compose())["services"]
        assert sorted(services) == ["admin", "caddy"]
        assert services["caddy"]["ports"] == ["0.0.0.0:80:80"]


class TestProxy:
    """Tests for the proxy config."""

    def test_guard_ranges(self):
        assert guard_ranges("host") == LOOPBACK_RANGES
        assert guard_ranges("lan") == PRIVATE_RANGES
        assert guard_ranges("public") is None

    def test_route_order(self):
        routes = _routes(_spec())
        assert routes[0]["match"] == [{"path": ["/api*"]}]
        assert routes[1]["match"] == [{"path": ["/channels/chat*"]}]
        assert "match" not in routes[-1]
        assert len(routes) == 3

    def test_channel_rewrite_and_upstream(self):
        sub = _routes(_spec())[1]["handle"][0]["routes"]
        guard, handler = sub
        assert guard["match"][0]["not"][0]["remote_ip"]["ranges"] == PRIVATE_RANGES
        assert handler["handle"][0] == {"handler": "rewrite", "uri": "/chat"}
        assert handler["handle"][1]["upstreams"] == [{"dial": "channel-chat:8181"}]

    def test_public_channel_unguarded(self):
        spec = _spec()
        spec.channels["chat"].exposure = "public"
        sub = _routes(spec)[1]["handle"][0]["routes"]
        assert len(sub) == 1
        assert sub[0]["handle"][-1]["handler"] == "reverse_proxy"

    def test_strip_prefix_without_rewrite_path(self):
        spec = _spec()
        spec.channels["chat"].rewrite_path = None
        handler = _routes(spec)[1]["handle"][0]["routes"][-1]
        assert handler["handle"][0] == {"handler": "rewrite", "strip_path_prefix": "/channels/chat"}

    def test_domain_routes_first(self):
        spec = _spec()
        spec.channels["discord"].enabled = True
        spec.channels["discord"].domains = ["discord.example.com"]
        routes = _routes(spec)
        assert routes[1]["match"] == [{"host": ["discord.example.com"]}]
        assert routes[2]["match"] == [{"path": ["/channels/chat*"]}]

    def test_admin_guarded_when_public(self):
        routes = _routes(_spec(accessScope="public"))
        guard = routes[0]["handle"][0]["routes"][0]
        assert guard["match"][0]["not"][0]["remote_ip"]["ranges"] == PRIVATE_RANGES

    def test_admin_api_disabled(self):
        assert json.loads(render_proxy(_spec()))["admin"] == {"disabled": True}

    def test_fallback_proxy(self):
        routes = json.loads(render_fallback_proxy())["apps"]["http"]["servers"]["main"]["routes"]
        assert routes == [{"handle": [{"handler": "reverse_proxy", "upstreams": [{"dial": "admin:8100"}]}]}]


class TestEnvFiles:
    """Tests for core, entity, and system env files."""

    def test_core_env_only_own_keys(self):
        secrets = {"POSTGRES_PASSWORD": "pg", "ADMIN_TOKEN": "adm", "UNRELATED": "x"}
        env = generate_stack_artifacts(_spec(), secrets).env_files
        assert "POSTGRES_PASSWORD=pg" in env["postgres"]
        assert "ADMIN_TOKEN" not in env["postgres"]
        assert "ADMIN_TOKEN=adm" in env["admin"]
        assert all("UNRELATED" not in content for content in env.values())

    def test_gateway_gets_channel_shared_secrets(self):
        env = generate_stack_artifacts(_spec(), {"CHANNEL_CHAT_SECRET": "s3"}).env_files
        assert "CHANNEL_CHAT_SECRET=s3" in env["gateway"]

    def test_entity_env_files(self):
        env = generate_stack_artifacts(_spec(), {"CHAT_TOKEN": "tok", "CHANNEL_CHAT_SECRET": "s3"}).env_files
        lines = env["channel-chat"].splitlines()
        assert lines[0].startswith("# ")
        assert lines[1:] == ["CHANNEL_CHAT_SECRET=s3", "CHAT_INBOUND_TOKEN=tok"]
        assert "channel-discord" not in env
        assert "service-n8n" in env

    def test_values_sanitized(self):
        env = generate_stack_artifacts(_spec(), {"CHAT_TOKEN": "a\nINJECTED=1"}).env_files
        assert "\nINJECTED=1" not in env["channel-chat"]

    def test_system_env(self):
        artifacts = generate_stack_artifacts(_spec(), {})
        lines = artifacts.system_env.splitlines()[1:]
        assert lines == [
            "STACK_ACCESS_SCOPE=lan",
            "STACK_ENABLED_CHANNELS=channel-chat",
            "STACK_ENABLED_SERVICES=service-n8n",
            "STACK_SPEC_VERSION=1",
        ]

    def test_files_flattened(self):
        files = generate_stack_artifacts(create_default_spec(), {}).files()
        assert list(files)[:3] == [COMPOSE_FILE, PROXY_FILE, SYSTEM_ENV_FILE]
        assert "env/channel-chat.env" in files
        assert "env/admin.env" in files

    def test_fallback_bundle(self):
        bundle = build_fallback_bundle(_spec(), {"ADMIN_TOKEN": "adm"})
        assert sorted(bundle) == sorted([COMPOSE_FILE, PROXY_FILE, "env/admin.env"])
        assert "ADMIN_TOKEN=adm" in bundle["env/admin.env"]
