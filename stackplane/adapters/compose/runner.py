"""
Compose runner — transport layer for the external compose tool.

Builds the command line, spawns the tool, enforces timeouts, classifies
failures, and retries the transient ones.  It NEVER raises for tool
failures: every call returns a ``ComposeResult``.

Command line::

    <bin> [<subcommand>] [--env-file <runtime env>] -f <compose file> <args...>

Non-streaming calls time out after ``compose_timeout`` seconds (30 by
default).  Streaming calls (``up``, ``pull``, ``logs --follow``) have no
timeout and pass output through the logger line by line as it arrives.

The process is started through an injectable ``spawn`` callable so tests
can script exit codes, stderr, timeouts, and malformed output.
"""

from __future__ import annotations

import logging
import os
import re
import selectors
import subprocess
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from stackplane.core.config import StackConfig
from stackplane.core.models.compose import ComposeResult
from stackplane.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

# spawn(cmd, cwd=..., env=..., timeout=..., stream=...) -> CompletedProcess
# May raise subprocess.TimeoutExpired or OSError.
SpawnFn = Callable[..., subprocess.CompletedProcess]

# Ordered: first match wins.
ERROR_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"Cannot connect to the Docker daemon|error during connect|dial unix", re.I),
     "daemon_unreachable"),
    (re.compile(r"pull access denied|manifest unknown|failed to fetch", re.I),
     "image_pull_failed"),
    (re.compile(r"permission denied|access denied", re.I), "permission_denied"),
    (re.compile(r"yaml:|invalid compose|unsupported config", re.I), "invalid_compose"),
)


def classify_error(stderr: str) -> str:
    """Map tool stderr to an error code (``unknown`` when nothing matches)."""
    for pattern, code in ERROR_PATTERNS:
        if pattern.search(stderr):
            return code
    return "unknown"


# ── Default spawn ───────────────────────────────────────────────


def _run_captured(
    cmd: list[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
    timeout: float | None,
) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        cmd,
        cwd=str(cwd),
        env=dict(env),
        capture_output=True,
        text=True,
        timeout=timeout,
    )


def _run_streaming(
    cmd: list[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
) -> subprocess.CompletedProcess[str]:
    """Run *cmd*, logging stdout/stderr lines live, and collect them.

    Compose writes progress to stderr, so both streams are read
    concurrently through a selector to avoid pipe deadlocks.
    """
    proc = subprocess.Popen(
        cmd,
        cwd=str(cwd),
        env=dict(env),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        bufsize=1,  # line-buffered
    )
    out: dict[str, list[str]] = {"stdout": [], "stderr": []}
    sel = selectors.DefaultSelector()
    try:
        if proc.stdout:
            sel.register(proc.stdout, selectors.EVENT_READ, "stdout")
        if proc.stderr:
            sel.register(proc.stderr, selectors.EVENT_READ, "stderr")

        open_streams = len(sel.get_map())
        while open_streams > 0:
            for key, _ in sel.select():
                line = key.fileobj.readline()  # type: ignore[union-attr]
                if not line:
                    sel.unregister(key.fileobj)
                    open_streams -= 1
                    continue
                out[key.data].append(line)
                logger.info("[compose] %s", line.rstrip("\n"))
    finally:
        sel.close()

    proc.wait()
    return subprocess.CompletedProcess(
        cmd, proc.returncode, "".join(out["stdout"]), "".join(out["stderr"]),
    )


def default_spawn(
    cmd: list[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
    timeout: float | None,
    stream: bool,
) -> subprocess.CompletedProcess[str]:
    if stream:
        return _run_streaming(cmd, cwd=cwd, env=env)
    return _run_captured(cmd, cwd=cwd, env=env, timeout=timeout)


# ── Runner ──────────────────────────────────────────────────────


class ComposeRunner:
    """Invokes the compose tool with the configured binary, files, and policy."""

    def __init__(
        self,
        config: StackConfig,
        *,
        spawn: SpawnFn | None = None,
        policy: RetryPolicy | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self._config = config
        self._spawn = spawn or default_spawn
        self._policy = policy or RetryPolicy(retries=config.compose_retries)
        self._environ = os.environ if environ is None else environ

    @property
    def config(self) -> StackConfig:
        return self._config

    def build_command(self, args: list[str], *, compose_file: Path | None = None) -> list[str]:
        """Full argv for one invocation."""
        cmd = [self._config.compose_bin]
        if self._config.compose_subcommand:
            cmd.append(self._config.compose_subcommand)
        env_file = self._config.runtime_env_path
        # Compose rejects a missing --env-file; before the first render there is none.
        if env_file.is_file():
            cmd.extend(["--env-file", str(env_file)])
        cmd.extend(["-f", str(compose_file or self._config.compose_path)])
        cmd.extend(args)
        return cmd

    def build_env(self) -> dict[str, str]:
        env = dict(self._environ)
        uri = self._config.container_socket_uri
        if uri:
            env["DOCKER_HOST"] = uri
            env["CONTAINER_HOST"] = uri
        return env

    def run(
        self,
        args: list[str],
        *,
        stream: bool = False,
        timeout: float | None = None,
        compose_file: Path | None = None,
    ) -> ComposeResult:
        """Run one compose action, retrying transient failures.

        Args:
            args: Action and its arguments, e.g. ``["up", "-d", "gateway"]``.
            stream: Pass output through live; no timeout applies.
            timeout: Override the non-streaming timeout (seconds).
            compose_file: Run against a different compose document
                (used to validate a staged file).

        Returns:
            ComposeResult — never raises for tool failures.
        """
        if stream:
            effective_timeout = timeout  # None: unbounded
        else:
            effective_timeout = timeout if timeout is not None else self._config.compose_timeout

        cmd = self.build_command(args, compose_file=compose_file)
        env = self.build_env()
        start = time.monotonic()
        attempt = 0

        while True:
            attempt += 1
            result = self._attempt(cmd, env, effective_timeout, stream)
            if result.ok or not self._policy.should_retry(result.code, attempt):
                break
            logger.warning(
                "compose %s failed with %s (attempt %d/%d); retrying",
                args[0] if args else "", result.code, attempt, self._policy.max_attempts,
            )

        return result.model_copy(update={
            "args": list(args),
            "attempts": attempt,
            "duration_ms": int((time.monotonic() - start) * 1000),
        })

    def _attempt(
        self,
        cmd: list[str],
        env: dict[str, str],
        timeout: float | None,
        stream: bool,
    ) -> ComposeResult:
        logger.debug("Running: %s (cwd=%s, timeout=%s)", " ".join(cmd), self._config.working_dir, timeout)
        kwargs: dict[str, Any] = {
            "cwd": self._config.working_dir,
            "env": env,
            "timeout": timeout,
            "stream": stream,
        }
        try:
            proc = self._spawn(cmd, **kwargs)
        except subprocess.TimeoutExpired:
            return ComposeResult.failure(
                cmd, "timeout", stderr=f"compose command timed out after {timeout}s",
            )
        except OSError as e:
            message = str(e)
            return ComposeResult.failure(cmd, classify_error(message), stderr=message)

        stdout = proc.stdout or ""
        stderr = proc.stderr or ""
        if proc.returncode == 0:
            return ComposeResult.success(cmd, stdout=stdout, stderr=stderr, exit_code=0)

        code = classify_error(stderr)
        logger.debug("compose exited %d (%s): %s", proc.returncode, code, stderr.strip()[:500])
        return ComposeResult.failure(
            cmd, code, stderr=stderr, stdout=stdout, exit_code=proc.returncode,
        )
