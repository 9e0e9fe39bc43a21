"""
Shared test fixtures and configuration.

No test runs a real compose tool or touches the network: compose calls go
through ``FakeSpawn`` and readiness probes through ``FakeFetch``.
"""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
import yaml

from stackplane.adapters.compose.runner import ComposeRunner
from stackplane.adapters.compose.services import ComposeServices
from stackplane.core.config import StackConfig
from stackplane.core.services.stack_manager import StackManager


@dataclass
class SpawnCall:
    cmd: list[str]
    args: list[str]
    compose_file: str
    timeout: float | None
    stream: bool
    env: dict[str, str]


@dataclass
class _Rule:
    prefix: tuple[str, ...]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    raises: BaseException | None = None
    times: int | None = None


@dataclass
class FakeSpawn:
    """Scripted stand-in for the compose subprocess.

    Rules match on the action prefix (the args after ``-f <file>``) and
    are checked most-recent first.  Unmatched calls succeed; ``config
    --services`` lists the services of the compose file actually passed.
    """

    calls: list[SpawnCall] = field(default_factory=list)
    rules: list[_Rule] = field(default_factory=list)

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = "",
           raises: BaseException | None = None, times: int | None = None) -> FakeSpawn:
        self.rules.insert(0, _Rule(prefix, returncode, stdout, stderr, raises, times))
        return self

    def __call__(self, cmd, *, cwd, env, timeout, stream):
        idx = cmd.index("-f")
        compose_file, args = cmd[idx + 1], cmd[idx + 2:]
        self.calls.append(SpawnCall(list(cmd), list(args), compose_file, timeout, stream, dict(env)))

        for rule in self.rules:
            if tuple(args[:len(rule.prefix)]) != rule.prefix:
                continue
            if rule.times is not None:
                if rule.times <= 0:
                    continue
                rule.times -= 1
            if rule.raises is not None:
                raise rule.raises
            return subprocess.CompletedProcess(cmd, rule.returncode, rule.stdout, rule.stderr)

        if args[:2] == ["config", "--services"]:
            return subprocess.CompletedProcess(cmd, 0, _services_of(compose_file), "")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    def actions(self, name: str | None = None) -> list[list[str]]:
        """Args of every call (optionally only those starting with ``name``)."""
        return [c.args for c in self.calls if name is None or c.args[:1] == [name]]


def _services_of(compose_file: str) -> str:
    path = Path(compose_file)
    if not path.is_file():
        return ""
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return "".join(f"{name}\n" for name in (data.get("services") or {}))


@dataclass
class FakeFetch:
    """Scripted HTTP fetch: url → (status, body) or an exception."""

    responses: dict[str, Any] = field(default_factory=dict)
    default: tuple[int, str] = (200, '{"ok": true}')
    calls: list[str] = field(default_factory=list)

    def __call__(self, url: str, timeout: float) -> tuple[int, str]:
        self.calls.append(url)
        response = self.responses.get(url, self.default)
        if isinstance(response, BaseException):
            raise response
        return response


def ps_json(*entries: tuple[str, str, str]) -> str:
    """Build ``ps --format json`` NDJSON output from (service, state, health)."""
    return "\n".join(
        json.dumps({"Service": name, "State": state, "Health": health})
        for name, state, health in entries
    )


@pytest.fixture
def state_root(tmp_path: Path) -> Path:
    root = tmp_path / "state"
    root.mkdir()
    return root


@pytest.fixture
def config(state_root: Path) -> StackConfig:
    return StackConfig(state_root=state_root, readiness_interval=0, readiness_attempts=3)


@pytest.fixture
def spawn() -> FakeSpawn:
    return FakeSpawn()


@pytest.fixture
def runner(config: StackConfig, spawn: FakeSpawn) -> ComposeRunner:
    return ComposeRunner(config, spawn=spawn, environ={"PATH": "/usr/bin"})


@pytest.fixture
def services(runner: ComposeRunner) -> ComposeServices:
    return ComposeServices(runner)


@pytest.fixture
def manager(config: StackConfig) -> StackManager:
    return StackManager(config)


@pytest.fixture
def ready_manager(manager: StackManager) -> StackManager:
    """Manager with the default spec and the core secrets set."""
    manager.ensure_spec()
    manager.upsert_secret("ADMIN_TOKEN", "admin-token")
    manager.upsert_secret("POSTGRES_PASSWORD", "pg-pass")
    return manager


@pytest.fixture
def fetch() -> FakeFetch:
    return FakeFetch()


@pytest.fixture
def make_ps():
    """``make_ps(("gateway", "running", "healthy"), ...)`` → ps JSON output."""
    return ps_json
