"""
Tests for configuration loading — environment parsing and validation.
"""

from pathlib import Path

import pytest

from stackplane.core.config import ConfigError, StackConfig, load_config


class TestLoadConfig:
    def test_defaults(self):
        config = load_config({})
        assert config.compose_bin == "docker"
        assert config.compose_subcommand == "compose"
        assert config.compose_timeout == 30.0
        assert config.compose_retries == 2
        assert config.readiness_attempts == 12
        assert config.state_root.name == ".stackplane"
        assert config.extra_services == []

    def test_state_root(self, tmp_path):
        config = load_config({"STACKPLANE_STATE_ROOT": str(tmp_path)})
        assert config.state_root == tmp_path.resolve()
        assert config.compose_path == tmp_path.resolve() / "docker-compose.yml"
        assert config.runtime_env_path == tmp_path.resolve() / "system.env"
        assert config.working_dir == tmp_path.resolve()

    def test_project_dir(self, tmp_path):
        config = load_config({
            "STACKPLANE_STATE_ROOT": str(tmp_path / "state"),
            "STACKPLANE_PROJECT_DIR": str(tmp_path / "project"),
        })
        assert config.working_dir == (tmp_path / "project").resolve()

    def test_compose_tool(self):
        config = load_config({
            "STACKPLANE_COMPOSE_BIN": "podman-compose",
            "STACKPLANE_COMPOSE_SUBCOMMAND": "",
            "STACKPLANE_COMPOSE_FILE": "stack-compose.yml",
            "STACKPLANE_CONTAINER_SOCKET_URI": "unix:///run/podman/podman.sock",
        })
        assert config.compose_bin == "podman-compose"
        assert config.compose_subcommand == ""
        assert config.compose_path.name == "stack-compose.yml"
        assert config.container_socket_uri == "unix:///run/podman/podman.sock"

    def test_numbers(self):
        config = load_config({
            "STACKPLANE_COMPOSE_TIMEOUT": "45",
            "STACKPLANE_COMPOSE_RETRIES": "0",
            "STACKPLANE_READINESS_ATTEMPTS": "5",
            "STACKPLANE_READINESS_INTERVAL": "0.5",
            "STACKPLANE_PROBE_TIMEOUT": "2",
        })
        assert config.compose_timeout == 45.0
        assert config.compose_retries == 0
        assert config.readiness_attempts == 5
        assert config.readiness_interval == 0.5
        assert config.probe_timeout == 2.0

    def test_extra_services(self):
        config = load_config({"STACKPLANE_EXTRA_SERVICES": "sidecar, metrics,,"})
        assert config.extra_services == ["sidecar", "metrics"]

    def test_probe_url_overrides(self):
        config = load_config({
            "STACKPLANE_PROBE_URL_ADMIN": "http://localhost:8100/health",
            "STACKPLANE_PROBE_URL_CHANNEL_CHAT": "http://localhost:8181/health",
        })
        assert config.probe_urls == {
            "admin": "http://localhost:8100/health",
            "channel-chat": "http://localhost:8181/health",
        }

    def test_logging_fields(self):
        config = load_config({"STACKPLANE_LOG_LEVEL": "debug", "STACKPLANE_LOG_FILE": "/tmp/sp.log"})
        assert config.log_level == "debug"
        assert config.log_file == "/tmp/sp.log"

    @pytest.mark.parametrize("env", [
        {"STACKPLANE_COMPOSE_TIMEOUT": "soon"},
        {"STACKPLANE_COMPOSE_TIMEOUT": "0"},
        {"STACKPLANE_COMPOSE_RETRIES": "-1"},
        {"STACKPLANE_READINESS_ATTEMPTS": "0"},
    ])
    def test_invalid(self, env):
        with pytest.raises(ConfigError):
            load_config(env)

    def test_unrelated_variables_ignored(self):
        assert load_config({"DOCKER_HOST": "tcp://x", "PATH": "/bin"}) == load_config({})


class TestStackConfig:
    def test_direct_construction(self, tmp_path: Path):
        config = StackConfig(state_root=tmp_path)
        assert config.proxy_reload_command[0] == "caddy"
        assert config.probe_urls == {}
