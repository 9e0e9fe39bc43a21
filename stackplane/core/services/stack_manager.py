"""
Stack manager — owner of the spec document and the secrets store.

The spec is only ever replaced whole: callers read a snapshot, mutate
their copy, and hand the full document back to ``set_spec``.  The
convenience mutators below (``set_channel_exposure`` etc.) follow the
same read-copy-write path.

Every mutation re-renders: the artifacts are regenerated in memory,
compared with what is on disk, and the resulting render report is
written to ``render-report.json``.  Writing the artifacts themselves is
the apply engine's job, so the next apply still sees the full diff.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

from stackplane.core.config import StackConfig
from stackplane.core.models.artifacts import RENDER_REPORT_FILE, GeneratedArtifacts, RenderReport
from stackplane.core.models.catalog import CHANNEL_CATALOG, create_default_spec, next_instance_name
from stackplane.core.models.spec import (
    EXPOSURES,
    SECRET_NAME_RE,
    EntitySpec,
    SpecError,
    StackSpec,
    parse_stack_spec,
)
from stackplane.core.persistence.artifact_store import ArtifactStore
from stackplane.core.persistence.secrets_file import (
    DEFAULT_SECRETS_FILE,
    SecretsFile,
    sanitize_env_scalar,
    sanitize_secret_name,
)
from stackplane.core.persistence.state_file import (
    atomic_write_text,
    default_spec_path,
    dump_spec,
    parse_spec_text,
    read_text,
)
from stackplane.core.services.secret_resolver import (
    known_secret_names,
    missing_secret_references,
    secret_usage,
)
from stackplane.core.services.stack_generator import generate_stack_artifacts

logger = logging.getLogger(__name__)


class StackManager:
    """Spec and secrets access for one state root.

    Assumes a single writer process; concurrent applies are serialised
    separately by the apply lock.
    """

    def __init__(
        self,
        config: StackConfig,
        *,
        spec_path: Path | None = None,
        secrets_path: Path | None = None,
    ):
        self._config = config
        self._spec_path = spec_path or default_spec_path(config.state_root)
        self._secrets = SecretsFile(secrets_path or config.state_root / DEFAULT_SECRETS_FILE)
        self._store = ArtifactStore(config.state_root)
        self._spec_cache: StackSpec | None = None
        self._spec_cache_key: str | None = None

    @property
    def config(self) -> StackConfig:
        return self._config

    @property
    def spec_path(self) -> Path:
        return self._spec_path

    @property
    def store(self) -> ArtifactStore:
        return self._store

    # ── Spec ────────────────────────────────────────────────────

    def ensure_spec(self) -> StackSpec:
        """Write the default spec if none exists yet; return the current one."""
        if not self._spec_path.is_file():
            spec = create_default_spec()
            atomic_write_text(self._spec_path, dump_spec(spec))
            logger.info("Wrote default spec to %s", self._spec_path)
        return self.get_spec()

    def get_spec(self) -> StackSpec:
        """Current spec as an independent copy.

        The parsed document is cached against a hash of the file content;
        callers may mutate the returned copy freely.
        """
        raw = read_text(self._spec_path)
        if raw is None:
            return self.ensure_spec()
        key = hashlib.sha256(raw.encode("utf-8")).hexdigest()
        if self._spec_cache is None or key != self._spec_cache_key:
            spec = parse_spec_text(raw, self._spec_path)
            logger.debug("Loaded spec from %s (%d channels, %d services)",
                         self._spec_path, len(spec.channels), len(spec.services))
            self._spec_cache, self._spec_cache_key = spec, key
        return self._spec_cache.model_copy(deep=True)

    def set_spec(self, raw: Any) -> StackSpec:
        """Validate, persist atomically, and re-render.

        Args:
            raw: Full spec document (dict) or a StackSpec.

        Raises:
            SpecError: ``invalid_stack_spec`` when validation fails; the
                file on disk is left untouched.
        """
        spec = parse_stack_spec(raw)
        content = dump_spec(spec)
        atomic_write_text(self._spec_path, content)
        self._spec_cache = spec
        self._spec_cache_key = hashlib.sha256(content.encode("utf-8")).hexdigest()
        logger.info("Spec updated (%d channels, %d services)", len(spec.channels), len(spec.services))
        self.render_artifacts()
        return spec.model_copy(deep=True)

    # ── Secrets ─────────────────────────────────────────────────

    def get_secrets(self) -> dict[str, str]:
        return self._secrets.load()

    def upsert_secret(self, name: str, value: str) -> str:
        """Create or replace a secret; returns the normalised name.

        Raises:
            SpecError: ``invalid_secret_name``.
        """
        key = self._checked_secret_name(name)
        self._secrets.set(key, sanitize_env_scalar(value))
        logger.info("Secret %s updated", key)
        self.render_artifacts()
        return key

    def delete_secret(self, name: str) -> bool:
        """Delete a secret that nothing uses.

        Returns:
            False if the secret did not exist.

        Raises:
            SpecError: ``invalid_secret_name``, or ``secret_in_use`` when a
                core service or an enabled entity still needs it.
        """
        key = self._checked_secret_name(name)
        users = secret_usage(self.get_spec()).get(key)
        if users:
            raise SpecError("secret_in_use", f"{key} is used by {', '.join(users)}")
        removed = self._secrets.delete(key)
        if removed:
            logger.info("Secret %s deleted", key)
            self.render_artifacts()
        return removed

    def validate_referenced_secrets(self, spec: StackSpec | None = None) -> list[str]:
        """``missing_secret_reference_*`` tokens for the given (or current) spec."""
        return missing_secret_references(spec or self.get_spec(), self.get_secrets())

    def list_secret_state(self) -> list[dict[str, Any]]:
        """Every known secret name with ``configured`` and ``used_by``; never values."""
        spec = self.get_spec()
        secrets = self.get_secrets()
        usage = secret_usage(spec)
        return [
            {
                "name": name,
                "configured": bool(secrets.get(name)),
                "used_by": usage.get(name, []),
            }
            for name in known_secret_names(spec, secrets)
        ]

    @staticmethod
    def _checked_secret_name(name: str) -> str:
        key = sanitize_secret_name(name)
        if not SECRET_NAME_RE.match(key):
            raise SpecError("invalid_secret_name", f"{name!r} must match {SECRET_NAME_RE.pattern}")
        return key

    # ── Rendering ───────────────────────────────────────────────

    def render_preview(self, spec: StackSpec | None = None) -> tuple[GeneratedArtifacts, RenderReport]:
        """Render without writing anything."""
        spec = spec or self.get_spec()
        secrets = self.get_secrets()
        artifacts = generate_stack_artifacts(spec, secrets)
        report = RenderReport(
            changed_artifacts=self._store.changed_paths(artifacts),
            missing_secret_references=missing_secret_references(spec, secrets),
        )
        return artifacts, report

    def render_artifacts(self) -> RenderReport:
        """Render and write the render report."""
        _artifacts, report = self.render_preview()
        self.write_render_report(report)
        if not report.apply_safe:
            logger.warning("Render has unresolved secrets: %s", report.missing_secret_references)
        return report

    def write_render_report(self, report: RenderReport) -> None:
        atomic_write_text(
            self._config.state_root / RENDER_REPORT_FILE,
            json.dumps(report.model_dump(mode="json"), indent=2) + "\n",
        )

    # ── Convenience mutators ────────────────────────────────────

    def set_access_scope(self, scope: str) -> StackSpec:
        if scope not in EXPOSURES:
            raise SpecError("invalid_access_scope", f"{scope!r} not in {EXPOSURES}")
        spec = self.get_spec()
        spec.access_scope = scope  # type: ignore[assignment]
        return self.set_spec(spec)

    def set_channel_exposure(self, name: str, exposure: str) -> StackSpec:
        if exposure not in EXPOSURES:
            raise SpecError("invalid_exposure", f"{exposure!r} not in {EXPOSURES}")
        spec = self.get_spec()
        self._channel(spec, name).exposure = exposure  # type: ignore[assignment]
        return self.set_spec(spec)

    def set_channel_enabled(self, name: str, enabled: bool) -> StackSpec:
        spec = self.get_spec()
        self._channel(spec, name).enabled = enabled
        return self.set_spec(spec)

    def set_service_enabled(self, name: str, enabled: bool) -> StackSpec:
        spec = self.get_spec()
        self._entity(spec, "service", name).enabled = enabled
        return self.set_spec(spec)

    def set_entity_config(self, kind: str, name: str, values: dict[str, str]) -> StackSpec:
        """Merge config values into a channel or service (values sanitized)."""
        spec = self.get_spec()
        entity = self._entity(spec, kind, name)
        for key, value in values.items():
            entity.config[key] = sanitize_env_scalar(value)
        return self.set_spec(spec)

    def add_channel_instance(
        self,
        template: str,
        name: str | None = None,
        *,
        exposure: str | None = None,
    ) -> tuple[str, StackSpec]:
        """Add a channel cloned from a catalog template.

        Multi-instance templates get the next free suffix when the name is
        taken (``slack``, ``slack-2``...).  The new instance is published
        on the first host port not already in use.

        Returns:
            (instance name, updated spec)

        Raises:
            SpecError: ``unknown_channel`` for a template not in the
                catalog, ``channel_instance_exists`` when the name is taken
                or the template allows a single instance only.
        """
        tmpl = CHANNEL_CATALOG.get(template)
        if tmpl is None:
            raise SpecError("unknown_channel", f"no catalog template named {template!r}")
        if exposure is not None and exposure not in EXPOSURES:
            raise SpecError("invalid_exposure", f"{exposure!r} not in {EXPOSURES}")

        spec = self.get_spec()
        if name is None:
            name = next_instance_name(template, spec.channels) if tmpl.supports_multiple_instances else template
        if name in spec.channels:
            raise SpecError("channel_instance_exists", f"channel {name!r} already exists")
        existing = [c for c in spec.channels.values() if (c.template or "") == template]
        if existing and not tmpl.supports_multiple_instances:
            raise SpecError("channel_instance_exists", f"{template!r} supports a single instance")

        channel = tmpl.build(name, exposure or "lan")
        used = {
            port for kind, _n, e in spec.iter_enabled()
            if (port := e.published_port(kind)) is not None
        }
        port = channel.container_port
        while port in used:
            port += 1
        if port != channel.container_port:
            channel.host_port = port

        spec.channels[name] = channel
        logger.info("Adding channel %s from template %s", name, template)
        return name, self.set_spec(spec)

    # ── Lookup helpers ──────────────────────────────────────────

    @staticmethod
    def _channel(spec: StackSpec, name: str) -> EntitySpec:
        channel = spec.channels.get(name)
        if channel is None:
            raise SpecError("unknown_channel", f"no channel named {name!r}")
        return channel

    @classmethod
    def _entity(cls, spec: StackSpec, kind: str, name: str) -> EntitySpec:
        if kind == "channel":
            return cls._channel(spec, name)
        if kind == "service":
            service = spec.services.get(name)
            if service is None:
                raise SpecError("unknown_service", f"no service named {name!r}")
            return service
        raise SpecError("unknown_entity_kind", f"{kind!r} is neither 'channel' nor 'service'")
