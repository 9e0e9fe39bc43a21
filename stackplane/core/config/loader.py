"""
Configuration loader — builds the StackConfig struct from the environment.

This is the ONLY module that reads configuration from the process
environment.  The CLI calls ``load_config()`` once at startup and hands
the resulting ``StackConfig`` to every component; nothing below this
layer looks at ``os.environ`` for settings.

Recognised variables (all optional):

    STACKPLANE_STATE_ROOT            state/artifact directory (default: ./.stackplane)
    STACKPLANE_COMPOSE_BIN           compose binary (default: docker)
    STACKPLANE_COMPOSE_SUBCOMMAND    compose subcommand (default: compose, "" for none)
    STACKPLANE_COMPOSE_FILE          compose file name (default: docker-compose.yml)
    STACKPLANE_PROJECT_DIR           working directory for compose calls
    STACKPLANE_CONTAINER_SOCKET_URI  exported as DOCKER_HOST / CONTAINER_HOST
    STACKPLANE_EXTRA_SERVICES        comma-separated extra allow-listed services
    STACKPLANE_COMPOSE_TIMEOUT       seconds for non-streaming calls (default: 30)
    STACKPLANE_COMPOSE_RETRIES       retries for transient failures (default: 2)
    STACKPLANE_READINESS_ATTEMPTS    readiness poll attempts (default: 12)
    STACKPLANE_READINESS_INTERVAL    seconds between attempts (default: 1.0)
    STACKPLANE_PROBE_TIMEOUT         seconds per HTTP probe (default: 3.0)
    STACKPLANE_PROBE_URL_<SERVICE>   HTTP probe override, e.g. STACKPLANE_PROBE_URL_ADMIN
    STACKPLANE_LOG_LEVEL / STACKPLANE_LOG_FILE / STACKPLANE_LOG_FILE_LEVEL
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "STACKPLANE_"
DEFAULT_STATE_DIR = ".stackplane"
PROBE_URL_PREFIX = f"{ENV_PREFIX}PROBE_URL_"

DEFAULT_PROXY_RELOAD_COMMAND = [
    "caddy", "reload", "--config", "/etc/caddy/caddy.json", "--force",
]


class ConfigError(Exception):
    """Raised when the runtime configuration is invalid."""


class StackConfig(BaseModel):
    """Every tunable of the control plane, resolved once at startup."""

    state_root: Path = Field(default_factory=lambda: Path(DEFAULT_STATE_DIR).resolve())

    # ── Compose tool ─────────────────────────────────────────────
    compose_bin: str = "docker"
    compose_subcommand: str = "compose"
    compose_file: str = "docker-compose.yml"
    project_dir: Path | None = None
    container_socket_uri: str = ""
    extra_services: list[str] = Field(default_factory=list)
    compose_timeout: float = Field(default=30.0, gt=0)
    compose_retries: int = Field(default=2, ge=0)
    proxy_reload_command: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROXY_RELOAD_COMMAND)
    )

    # ── Readiness ────────────────────────────────────────────────
    readiness_attempts: int = Field(default=12, ge=1)
    readiness_interval: float = Field(default=1.0, ge=0)
    probe_timeout: float = Field(default=3.0, gt=0)
    probe_urls: dict[str, str] = Field(default_factory=dict)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str | None = None
    log_file: str | None = None
    log_file_level: str | None = None

    @property
    def compose_path(self) -> Path:
        """Absolute path of the live compose document."""
        return self.state_root / self.compose_file

    @property
    def runtime_env_path(self) -> Path:
        """The env file passed to every compose invocation via ``--env-file``."""
        return self.state_root / "system.env"

    @property
    def working_dir(self) -> Path:
        """Directory compose commands run in."""
        return self.project_dir or self.state_root


def load_config(environ: Mapping[str, str] | None = None) -> StackConfig:
    """Build a StackConfig from environment variables.

    Args:
        environ: Mapping to read from (default: ``os.environ``).

    Returns:
        Validated StackConfig.

    Raises:
        ConfigError: If a value cannot be parsed or fails validation.
    """
    env = os.environ if environ is None else environ
    data: dict = {}

    def _get(name: str) -> str | None:
        return env.get(f"{ENV_PREFIX}{name}")

    state_root = _get("STATE_ROOT")
    if state_root:
        data["state_root"] = Path(state_root).expanduser().resolve()

    for key in ("COMPOSE_BIN", "COMPOSE_FILE", "CONTAINER_SOCKET_URI"):
        value = _get(key)
        if value:
            data[key.lower()] = value.strip()

    # An explicitly empty subcommand means "the binary is the compose tool"
    subcommand = _get("COMPOSE_SUBCOMMAND")
    if subcommand is not None:
        data["compose_subcommand"] = subcommand.strip()

    project_dir = _get("PROJECT_DIR")
    if project_dir:
        data["project_dir"] = Path(project_dir).expanduser().resolve()

    extra = _get("EXTRA_SERVICES")
    if extra:
        data["extra_services"] = [s.strip() for s in extra.split(",") if s.strip()]

    for key in (
        "COMPOSE_TIMEOUT",
        "COMPOSE_RETRIES",
        "READINESS_ATTEMPTS",
        "READINESS_INTERVAL",
        "PROBE_TIMEOUT",
    ):
        value = _get(key)
        if value:
            data[key.lower()] = value.strip()

    probe_urls = {
        name[len(PROBE_URL_PREFIX):].lower().replace("_", "-"): url.strip()
        for name, url in env.items()
        if name.startswith(PROBE_URL_PREFIX) and url.strip()
    }
    if probe_urls:
        data["probe_urls"] = probe_urls

    for key in ("LOG_LEVEL", "LOG_FILE", "LOG_FILE_LEVEL"):
        value = _get(key)
        if value:
            data[key.lower()] = value.strip()

    try:
        config = StackConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    logger.debug(
        "Config loaded: state_root=%s compose=%s %s",
        config.state_root,
        config.compose_bin,
        config.compose_subcommand or "(no subcommand)",
    )
    return config
