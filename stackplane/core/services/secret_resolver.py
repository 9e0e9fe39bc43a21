"""
Secret resolver — ``${NAME}`` references in entity config.

Only enabled entities are ever resolved or validated; a disabled channel
with dangling references must never block rendering of the rest of the
stack.
"""

from __future__ import annotations

from stackplane.core.models.catalog import CORE_ENV_KEYS, CORE_REQUIRED_SECRETS
from stackplane.core.models.spec import SECRET_REF_RE, EntitySpec, StackSpec


def find_secret_refs(value: str) -> list[str]:
    """Secret names referenced by a config value, in order of appearance."""
    return SECRET_REF_RE.findall(value)


def resolve_value(value: str, secrets: dict[str, str]) -> str:
    """Substitute every ``${NAME}``; unresolved references become empty."""
    return SECRET_REF_RE.sub(lambda m: secrets.get(m.group(1), ""), value)


def resolve_config(entity: EntitySpec, secrets: dict[str, str]) -> dict[str, str]:
    return {key: resolve_value(value, secrets) for key, value in entity.config.items()}


def missing_secret_references(spec: StackSpec, secrets: dict[str, str]) -> list[str]:
    """One token per unresolved reference of an enabled entity.

    Token format: ``missing_secret_reference_<entity>_<key>_<name>``.
    A secret that exists with an empty value counts as missing.
    """
    errors: list[str] = []
    for _kind, name, entity in spec.iter_enabled():
        for key in sorted(entity.config):
            for ref in find_secret_refs(entity.config[key]):
                if not secrets.get(ref):
                    errors.append(f"missing_secret_reference_{name}_{key}_{ref}")
    return sorted(set(errors))


def secret_usage(spec: StackSpec) -> dict[str, list[str]]:
    """Map secret name → consumers that keep it in use.

    Consumers are ``core:<service>`` for core-required secrets,
    ``channel:<name>`` / ``service:<name>`` for enabled entities that
    reference the secret in config or as their shared secret.
    """
    usage: dict[str, set[str]] = {}
    for secret, service in CORE_REQUIRED_SECRETS.items():
        usage.setdefault(secret, set()).add(f"core:{service}")
    for kind, name, entity in spec.iter_enabled():
        label = f"{kind}:{name}"
        for value in entity.config.values():
            for ref in find_secret_refs(value):
                usage.setdefault(ref, set()).add(label)
        if entity.shared_secret_env:
            usage.setdefault(entity.shared_secret_env, set()).add(label)
    return {secret: sorted(users) for secret, users in sorted(usage.items())}


def known_secret_names(spec: StackSpec, secrets: dict[str, str]) -> list[str]:
    """Every name worth showing an operator: stored, referenced, or core."""
    names = set(secrets) | set(secret_usage(spec))
    for keys in CORE_ENV_KEYS.values():
        names.update(keys)
    return sorted(names)
