"""
Stack catalog — fixed core services and built-in channel templates.

Core services are always part of the stack; they are not described by
the spec document.  Channel templates seed new channel entries (the
default spec, and named extra instances such as ``slack-2``).
"""

from __future__ import annotations

from dataclasses import dataclass

from stackplane.core.models.spec import ChannelSpec, StackSpec

IMAGE_NAMESPACE = "stackplane"

# ── Core services ────────────────────────────────────────────────

PROXY_SERVICE = "caddy"
ADMIN_SERVICE = "admin"
GATEWAY_SERVICE = "gateway"
ASSISTANT_SERVICE = "assistant"
INDEX_SERVICE = "openmemory"
DATABASE_SERVICE = "postgres"
VECTOR_SERVICE = "qdrant"

# Start order: storage first, ingress last
CORE_SERVICES: tuple[str, ...] = (
    DATABASE_SERVICE,
    VECTOR_SERVICE,
    INDEX_SERVICE,
    ASSISTANT_SERVICE,
    GATEWAY_SERVICE,
    ADMIN_SERVICE,
    PROXY_SERVICE,
)

CORE_PORTS: dict[str, int] = {
    PROXY_SERVICE: 80,
    ADMIN_SERVICE: 8100,
    GATEWAY_SERVICE: 8080,
    ASSISTANT_SERVICE: 4096,
    INDEX_SERVICE: 8765,
    DATABASE_SERVICE: 5432,
    VECTOR_SERVICE: 6333,
}

CORE_IMAGES: dict[str, str] = {
    PROXY_SERVICE: "caddy:2-alpine",
    ADMIN_SERVICE: f"{IMAGE_NAMESPACE}/admin:latest",
    GATEWAY_SERVICE: f"{IMAGE_NAMESPACE}/gateway:latest",
    ASSISTANT_SERVICE: f"{IMAGE_NAMESPACE}/assistant:latest",
    INDEX_SERVICE: "mem0/openmemory-mcp:latest",
    DATABASE_SERVICE: "postgres:16-alpine",
    VECTOR_SERVICE: "qdrant/qdrant:latest",
}

# Brought back up after a failed apply
RECOVERY_SERVICES: tuple[str, ...] = CORE_SERVICES

# Emergency bundle when recovery itself fails
FALLBACK_SERVICES: tuple[str, ...] = (ADMIN_SERVICE, PROXY_SERVICE)

# Consumers of system.env; restarted whenever it changes
SYSTEM_ENV_SERVICES: tuple[str, ...] = (ASSISTANT_SERVICE, INDEX_SERVICE)

# Secrets that may never be deleted: name → owning core service
CORE_REQUIRED_SECRETS: dict[str, str] = {
    "ADMIN_TOKEN": ADMIN_SERVICE,
    "POSTGRES_PASSWORD": DATABASE_SERVICE,
}

# Each core env file gets exactly these keys from the secrets store.
# The gateway file additionally carries enabled channels' shared secrets.
CORE_ENV_KEYS: dict[str, tuple[str, ...]] = {
    ADMIN_SERVICE: ("ADMIN_TOKEN",),
    GATEWAY_SERVICE: ("ASSISTANT_TIMEOUT_MS",),
    INDEX_SERVICE: ("OPENAI_API_KEY", "OPENAI_BASE_URL", "OPENMEMORY_USER_ID"),
    DATABASE_SERVICE: ("POSTGRES_DB", "POSTGRES_USER", "POSTGRES_PASSWORD"),
    VECTOR_SERVICE: ("QDRANT_API_KEY",),
    ASSISTANT_SERVICE: (
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "OPENAI_BASE_URL",
        "ASSISTANT_SMALL_MODEL",
    ),
}


@dataclass(frozen=True)
class HttpProbe:
    """Default application-level health endpoint of a core service."""

    service: str
    url: str
    expect_json: bool = True


CORE_HTTP_PROBES: tuple[HttpProbe, ...] = (
    HttpProbe(ADMIN_SERVICE, "http://admin:8100/health"),
    HttpProbe(GATEWAY_SERVICE, "http://gateway:8080/health"),
    HttpProbe(ASSISTANT_SERVICE, "http://assistant:4096/", expect_json=False),
    HttpProbe(INDEX_SERVICE, "http://openmemory:8765/docs", expect_json=False),
)


# ── Channel templates ────────────────────────────────────────────


@dataclass(frozen=True)
class ChannelTemplate:
    """Blueprint for a channel entry."""

    name: str
    container_port: int
    rewrite_path: str
    config_keys: tuple[str, ...] = ()
    supports_multiple_instances: bool = False
    default_enabled: bool = False

    @property
    def image(self) -> str:
        return f"{IMAGE_NAMESPACE}/channel-{self.name}:latest"

    def build(self, instance_name: str, exposure: str = "lan") -> ChannelSpec:
        """Create a ChannelSpec for a (possibly suffixed) instance of this template."""
        return ChannelSpec(
            enabled=True,
            image=self.image,
            container_port=self.container_port,
            rewrite_path=self.rewrite_path,
            shared_secret_env=channel_secret_env(instance_name),
            exposure=exposure,
            config={key: "" for key in self.config_keys},
            template=self.name,
            supports_multiple_instances=self.supports_multiple_instances,
        )


CHANNEL_CATALOG: dict[str, ChannelTemplate] = {
    t.name: t
    for t in (
        ChannelTemplate("chat", 8181, "/chat", ("CHAT_INBOUND_TOKEN",), default_enabled=True),
        ChannelTemplate("telegram", 8182, "/telegram/webhook",
                        ("TELEGRAM_BOT_TOKEN", "TELEGRAM_WEBHOOK_SECRET"), default_enabled=True),
        ChannelTemplate("voice", 8183, "/voice/transcription", (), default_enabled=True),
        ChannelTemplate("discord", 8184, "/discord/webhook",
                        ("DISCORD_BOT_TOKEN", "DISCORD_PUBLIC_KEY"), default_enabled=True),
        ChannelTemplate("slack", 8185, "/slack/events",
                        ("SLACK_BOT_TOKEN", "SLACK_SIGNING_SECRET"),
                        supports_multiple_instances=True),
        ChannelTemplate("webhook", 8186, "/webhook", ("WEBHOOK_INBOUND_TOKEN",),
                        supports_multiple_instances=True),
    )
}


def channel_secret_env(name: str) -> str:
    """Shared-secret variable name for a channel: ``chat`` → ``CHANNEL_CHAT_SECRET``."""
    return f"CHANNEL_{name.upper().replace('-', '_')}_SECRET"


def next_instance_name(template: str, taken: set[str] | dict) -> str:
    """First free name for a template instance: ``slack``, ``slack-2``, ``slack-3``..."""
    if template not in taken:
        return template
    n = 2
    while f"{template}-{n}" in taken:
        n += 1
    return f"{template}-{n}"


def create_default_spec() -> StackSpec:
    """The spec written on first start: default channels enabled at LAN exposure."""
    channels = {
        name: template.build(name)
        for name, template in CHANNEL_CATALOG.items()
        if template.default_enabled
    }
    return StackSpec(version=1, access_scope="lan", channels=channels, services={})
