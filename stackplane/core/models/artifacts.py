"""
Artifact models — generated files, the render report, and the impact plan.

All paths are relative to the state root.  ``GeneratedArtifacts`` is a
pure derivation of (spec, secrets): equal inputs give byte-identical
content, which is what makes diffing against the previous render safe.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, computed_field

COMPOSE_FILE = "docker-compose.yml"
PROXY_FILE = "caddy/caddy.json"
SYSTEM_ENV_FILE = "system.env"
ENV_DIR = "env"
RENDER_REPORT_FILE = "render-report.json"


def env_file_path(service: str) -> str:
    """Relative path of a service's env file: ``env/<service>.env``."""
    return f"{ENV_DIR}/{service}.env"


def service_for_env_file(path: str) -> str | None:
    """Inverse of ``env_file_path``; None for anything else."""
    prefix = f"{ENV_DIR}/"
    if path.startswith(prefix) and path.endswith(".env"):
        name = path[len(prefix):-len(".env")]
        if name and "/" not in name:
            return name
    return None


class GeneratedArtifacts(BaseModel):
    """Everything one render produces."""

    model_config = ConfigDict(frozen=True)

    compose: str
    proxy: str
    system_env: str
    env_files: dict[str, str] = Field(default_factory=dict)  # service name → content

    def files(self) -> dict[str, str]:
        """Flatten to ``{relative path: content}`` in a stable order."""
        out = {
            COMPOSE_FILE: self.compose,
            PROXY_FILE: self.proxy,
            SYSTEM_ENV_FILE: self.system_env,
        }
        for service in sorted(self.env_files):
            out[env_file_path(service)] = self.env_files[service]
        return out


class RenderReport(BaseModel):
    """Outcome of a render, written next to the artifacts as render-report.json."""

    model_config = ConfigDict(frozen=True)

    changed_artifacts: list[str] = Field(default_factory=list)
    missing_secret_references: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def apply_safe(self) -> bool:
        return not self.missing_secret_references


class ImpactPlan(BaseModel):
    """Service-level actions needed to converge the running stack."""

    reload: list[str] = Field(default_factory=list)
    restart: list[str] = Field(default_factory=list)
    up: list[str] = Field(default_factory=list)
    down: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.reload or self.restart or self.up or self.down)

    @property
    def targets(self) -> list[str]:
        """Services expected to be running once the plan is executed."""
        return sorted(set(self.up) | set(self.restart) | set(self.reload))
