"""
Tests for the compose runner: command line, environment, timeouts,
error classification, and retries.
"""

import subprocess

import pytest

from stackplane.adapters.compose.runner import ComposeRunner, classify_error
from stackplane.core.config import StackConfig
from stackplane.core.reliability.retry import RetryPolicy


class TestClassifyError:
    @pytest.mark.parametrize("stderr,code", [
        ("Cannot connect to the Docker daemon at unix:///var/run/docker.sock", "daemon_unreachable"),
        ("error during connect: Get http://...", "daemon_unreachable"),
        ("pull access denied for foo/bar", "image_pull_failed"),
        ("manifest unknown", "image_pull_failed"),
        ("open /state/x: permission denied", "permission_denied"),
        ("yaml: line 3: mapping values are not allowed", "invalid_compose"),
        ("something else entirely", "unknown"),
    ])
    def test_patterns(self, stderr, code):
        assert classify_error(stderr) == code

    def test_first_match_wins(self):
        # "pull access denied" also matches the permission pattern
        assert classify_error("pull access denied") == "image_pull_failed"


class TestBuildCommand:
    def test_default_command(self, runner, config):
        cmd = runner.build_command(["ps"])
        assert cmd == ["docker", "compose", "-f", str(config.compose_path), "ps"]

    def test_env_file_when_present(self, runner, config):
        config.runtime_env_path.write_text("STACK_ACCESS_SCOPE=lan\n")
        cmd = runner.build_command(["ps"])
        assert cmd[2:4] == ["--env-file", str(config.runtime_env_path)]

    def test_no_subcommand(self, state_root, spawn):
        config = StackConfig(state_root=state_root, compose_bin="docker-compose", compose_subcommand="")
        cmd = ComposeRunner(config, spawn=spawn).build_command(["ps"])
        assert cmd[:2] == ["docker-compose", "-f"]

    def test_alternate_compose_file(self, runner, state_root):
        staged = state_root / "docker-compose.yml.next"
        cmd = runner.build_command(["config", "--quiet"], compose_file=staged)
        assert cmd[-3:] == [str(staged), "config", "--quiet"]

    def test_socket_uri_exported(self, state_root, spawn):
        config = StackConfig(state_root=state_root, container_socket_uri="unix:///run/podman.sock")
        env = ComposeRunner(config, spawn=spawn, environ={"PATH": "/bin"}).build_env()
        assert env["DOCKER_HOST"] == "unix:///run/podman.sock"
        assert env["CONTAINER_HOST"] == "unix:///run/podman.sock"
        assert env["PATH"] == "/bin"

    def test_no_socket_uri(self, runner):
        assert "DOCKER_HOST" not in runner.build_env()


class TestRun:
    def test_success(self, runner, spawn, config):
        spawn.on("ps", stdout="[]")
        result = runner.run(["ps"])
        assert result.ok
        assert result.stdout == "[]"
        assert result.args == ["ps"]
        assert result.attempts == 1
        call = spawn.calls[0]
        assert call.timeout == config.compose_timeout
        assert call.stream is False

    def test_stream_has_no_timeout(self, runner, spawn):
        runner.run(["up", "-d"], stream=True)
        assert spawn.calls[0].timeout is None
        assert spawn.calls[0].stream is True

    def test_timeout_override(self, runner, spawn):
        runner.run(["ps"], timeout=5)
        assert spawn.calls[0].timeout == 5

    def test_failure_classified(self, runner, spawn):
        spawn.on("up", returncode=1, stderr="yaml: line 1: bad")
        result = runner.run(["up", "-d"])
        assert not result.ok
        assert result.code == "invalid_compose"
        assert result.exit_code == 1
        assert "yaml" in result.stderr

    def test_timeout_expired(self, runner, spawn):
        spawn.on("ps", raises=subprocess.TimeoutExpired(["docker"], 30))
        result = runner.run(["ps"])
        assert result.code == "timeout"
        assert len(spawn.calls) == 1

    def test_missing_binary(self, runner, spawn):
        spawn.on("ps", raises=FileNotFoundError(2, "No such file or directory: 'docker'"))
        result = runner.run(["ps"])
        assert not result.ok
        assert result.code == "unknown"

    def test_retries_transient_failure(self, runner, spawn):
        spawn.on("pull", returncode=1, stderr="Cannot connect to the Docker daemon", times=2)
        result = runner.run(["pull"])
        assert result.ok
        assert result.attempts == 3
        assert len(spawn.calls) == 3

    def test_retry_budget_exhausted(self, runner, spawn):
        spawn.on("pull", returncode=1, stderr="manifest unknown")
        result = runner.run(["pull"])
        assert result.code == "image_pull_failed"
        assert result.attempts == 3

    def test_permanent_failure_not_retried(self, runner, spawn):
        spawn.on("up", returncode=1, stderr="permission denied")
        result = runner.run(["up"])
        assert result.attempts == 1

    def test_custom_policy(self, config, spawn):
        runner = ComposeRunner(config, spawn=spawn, policy=RetryPolicy(retries=0))
        spawn.on("ps", returncode=1, stderr="Cannot connect to the Docker daemon")
        assert runner.run(["ps"]).attempts == 1

    def test_runs_in_working_dir(self, state_root):
        captured = {}

        def _spawn(cmd, *, cwd, env, timeout, stream):
            captured["cwd"] = cwd
            return subprocess.CompletedProcess(cmd, 0, "", "")

        config = StackConfig(state_root=state_root, project_dir=state_root / "project")
        ComposeRunner(config, spawn=_spawn).run(["ps"])
        assert captured["cwd"] == state_root / "project"
