"""
Env file generator — ``KEY=VALUE`` files for core services and entities.

Each core service gets exactly its own key subset from the secrets
store (``CORE_ENV_KEYS``); nothing else leaks into its file.  Entity
files carry the entity's resolved config plus its shared secret.
"""

from __future__ import annotations

from stackplane.core.models.catalog import CORE_ENV_KEYS, GATEWAY_SERVICE
from stackplane.core.models.spec import StackSpec, compose_service_name
from stackplane.core.persistence.secrets_file import sanitize_env_scalar
from stackplane.core.services.secret_resolver import resolve_config


def render_env(header: str, values: dict[str, str]) -> str:
    """One header comment, then sorted, unquoted, sanitized ``KEY=VALUE`` lines."""
    lines = [f"# {header}"]
    lines.extend(f"{key}={sanitize_env_scalar(values[key])}" for key in sorted(values))
    return "\n".join(lines) + "\n"


def core_env_values(service: str, spec: StackSpec, secrets: dict[str, str]) -> dict[str, str]:
    values = {key: secrets.get(key, "") for key in CORE_ENV_KEYS[service]}
    if service == GATEWAY_SERVICE:
        for _name, channel in spec.enabled_channels():
            if channel.shared_secret_env:
                values[channel.shared_secret_env] = secrets.get(channel.shared_secret_env, "")
    return values


def render_core_env_files(spec: StackSpec, secrets: dict[str, str]) -> dict[str, str]:
    return {
        service: render_env(f"Generated {service} env; do not edit", core_env_values(service, spec, secrets))
        for service in sorted(CORE_ENV_KEYS)
    }


def render_entity_env_files(spec: StackSpec, secrets: dict[str, str]) -> dict[str, str]:
    """One file per enabled channel/service; disabled entities get none."""
    out: dict[str, str] = {}
    for kind, name, entity in spec.iter_enabled():
        service = compose_service_name(kind, name)
        values = resolve_config(entity, secrets)
        if entity.shared_secret_env:
            values[entity.shared_secret_env] = secrets.get(entity.shared_secret_env, "")
        out[service] = render_env(f"Generated {kind} env ({name}); do not edit", values)
    return out


def render_system_env(spec: StackSpec) -> str:
    """Stack-wide, non-secret settings; also the compose ``--env-file``."""
    channels = ",".join(compose_service_name("channel", n) for n, _ in spec.enabled_channels())
    services = ",".join(compose_service_name("service", n) for n, _ in spec.enabled_services())
    return render_env("Generated system env; do not edit, regenerated on every render", {
        "STACK_ACCESS_SCOPE": spec.access_scope,
        "STACK_ENABLED_CHANNELS": channels,
        "STACK_ENABLED_SERVICES": services,
        "STACK_SPEC_VERSION": str(spec.version),
    })
