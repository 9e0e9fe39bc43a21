"""
Stack spec model — the single source of desired state.

The spec document declares which optional channels and services are
enabled, how exposed they are, and their configuration.  Config values
are literal strings or secret references of the form ``${SECRET_NAME}``;
secret values themselves never live in this document.

Persisted as ``stack.yml`` (camelCase keys on disk):

    version: 1
    accessScope: lan
    channels:
      chat:
        enabled: true
        image: stackplane/channel-chat:latest
        containerPort: 8181
        rewritePath: /chat
        sharedSecretEnv: CHANNEL_CHAT_SECRET
        exposure: lan
        config:
          CHAT_INBOUND_TOKEN: ${CHAT_INBOUND_TOKEN}
    services:
      n8n:
        enabled: false
        image: n8nio/n8n:latest
        containerPort: 5678
"""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from stackplane.core.errors import StackplaneError

Exposure = Literal["host", "lan", "public"]
EXPOSURES: tuple[str, ...] = ("host", "lan", "public")

SECRET_NAME_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
SECRET_REF_RE = re.compile(r"\$\{([A-Z][A-Z0-9_]*)\}")
ENTITY_NAME_RE = re.compile(r"^[a-z][a-z0-9-]{0,62}$")
_DOMAIN_RE = re.compile(r"^(\*\.)?([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)*[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")


class SpecError(StackplaneError):
    """Spec-level failure (invalid document, bad secret name, secret in use...)."""


class EntitySpec(BaseModel):
    """Fields shared by channels and services."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    enabled: bool = False
    image: str
    container_port: int = Field(alias="containerPort", ge=1, le=65535)
    host_port: int | None = Field(default=None, alias="hostPort", ge=1, le=65535)
    domains: list[str] = Field(default_factory=list)
    rewrite_path: str | None = Field(default=None, alias="rewritePath")
    shared_secret_env: str | None = Field(default=None, alias="sharedSecretEnv")
    config: dict[str, str] = Field(default_factory=dict)

    # Named multi-instance catalog support
    template: str | None = None
    supports_multiple_instances: bool = Field(default=False, alias="supportsMultipleInstances")

    @field_validator("image")
    @classmethod
    def _image_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("image must not be empty")
        return v

    @field_validator("domains")
    @classmethod
    def _valid_domains(cls, v: list[str]) -> list[str]:
        cleaned = []
        for domain in v:
            d = domain.strip().lower()
            if not _DOMAIN_RE.match(d):
                raise ValueError(f"invalid domain: {domain!r}")
            if d not in cleaned:
                cleaned.append(d)
        return cleaned

    @field_validator("rewrite_path")
    @classmethod
    def _rewrite_path_absolute(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith("/"):
            raise ValueError("rewritePath must start with '/'")
        return v

    @field_validator("shared_secret_env")
    @classmethod
    def _shared_secret_name(cls, v: str | None) -> str | None:
        if v is not None and not SECRET_NAME_RE.match(v):
            raise ValueError(f"sharedSecretEnv is not a valid secret name: {v!r}")
        return v

    @field_validator("config", mode="before")
    @classmethod
    def _config_scalars(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        out: dict[str, str] = {}
        for key, value in v.items():
            if not isinstance(key, str) or not SECRET_NAME_RE.match(key):
                raise ValueError(f"invalid config key: {key!r}")
            if isinstance(value, (dict, list)) or value is None:
                raise ValueError(f"config value for {key} must be a scalar")
            if isinstance(value, bool):
                value = "true" if value else "false"
            out[key] = str(value)
        return out

    def published_port(self, kind: str) -> int | None:
        """Host port this entity binds: channels always publish, services only with hostPort."""
        if self.host_port is not None:
            return self.host_port
        return self.container_port if kind == "channel" else None


class ChannelSpec(EntitySpec):
    """An inbound channel; routed through the reverse proxy."""

    exposure: Exposure | None = None


class ServiceSpec(EntitySpec):
    """An optional auxiliary service; exposure follows the global access scope."""


class StackSpec(BaseModel):
    """The full desired-state document."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    version: int = Field(default=1, ge=1)
    access_scope: Exposure = Field(default="lan", alias="accessScope")
    channels: dict[str, ChannelSpec] = Field(default_factory=dict)
    services: dict[str, ServiceSpec] = Field(default_factory=dict)

    @field_validator("channels", "services")
    @classmethod
    def _entity_names(cls, v: dict) -> dict:
        for name in v:
            if not ENTITY_NAME_RE.match(name):
                raise ValueError(f"invalid entity name: {name!r}")
        return v

    @model_validator(mode="after")
    def _unique_host_ports(self) -> StackSpec:
        seen: dict[int, str] = {}
        for kind, name, entity in self.iter_enabled():
            port = entity.published_port(kind)
            if port is None:
                continue
            label = f"{kind}:{name}"
            if port in seen:
                raise ValueError(f"hostPort {port} used by both {seen[port]} and {label}")
            seen[port] = label
        return self

    # ── Queries ──────────────────────────────────────────────────

    def channel_exposure(self, name: str) -> str:
        """Effective exposure of a channel (its own, or the global scope)."""
        return self.channels[name].exposure or self.access_scope

    def enabled_channels(self) -> list[tuple[str, ChannelSpec]]:
        return [(n, c) for n, c in sorted(self.channels.items()) if c.enabled]

    def enabled_services(self) -> list[tuple[str, ServiceSpec]]:
        return [(n, s) for n, s in sorted(self.services.items()) if s.enabled]

    def iter_enabled(self):
        """Yield ``(kind, name, entity)`` for every enabled entity, channels first."""
        for name, channel in self.enabled_channels():
            yield "channel", name, channel
        for name, service in self.enabled_services():
            yield "service", name, service

    def to_document(self) -> dict[str, Any]:
        """Serialise to the on-disk (camelCase) document shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def compose_service_name(kind: str, name: str) -> str:
    """Compose service name of an entity: ``channel-<name>`` / ``service-<name>``."""
    return f"{kind}-{name}"


def parse_stack_spec(raw: Any) -> StackSpec:
    """Validate and normalise a raw spec document.

    Args:
        raw: Parsed document (dict) or an existing StackSpec.

    Returns:
        A fresh, validated StackSpec.

    Raises:
        SpecError: ``invalid_stack_spec`` with the validation detail.
    """
    if isinstance(raw, StackSpec):
        raw = raw.to_document()
    if not isinstance(raw, dict):
        raise SpecError(
            "invalid_stack_spec",
            f"expected a mapping, got {type(raw).__name__}",
        )
    try:
        return StackSpec.model_validate(raw)
    except ValidationError as e:
        raise SpecError("invalid_stack_spec", str(e)) from e
