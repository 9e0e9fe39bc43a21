"""
Compose services — domain layer over the compose runner.

Every action that names a service checks it against an allow-list
first and fails closed with ``service_not_allowed``.  The allow-list is
the fixed core services, the operator-configured extras, and whatever
the compose tool itself reports for the live document.  Discovery is
cached; callers refresh it explicitly (once per apply cycle).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from stackplane.adapters.compose.runner import ComposeRunner
from stackplane.core.models.catalog import CORE_SERVICES, PROXY_SERVICE
from stackplane.core.models.compose import ComposeResult, ServiceHealth

logger = logging.getLogger(__name__)

MIN_TAIL = 1
MAX_TAIL = 5000
DEFAULT_TAIL = 200


def parse_ps_output(stdout: str) -> list[ServiceHealth]:
    """Parse ``ps --format json`` output.

    Compose v2 prints either one JSON array or one JSON object per line
    depending on version; both are accepted.

    Raises:
        ValueError: If the output is not valid JSON of either shape.
    """
    text = stdout.strip()
    if not text:
        return []

    entries: list[Any]
    if text.startswith("["):
        entries = json.loads(text)
        if not isinstance(entries, list):
            raise ValueError("expected a JSON array")
    else:
        entries = [json.loads(line) for line in text.splitlines() if line.strip()]

    services: list[ServiceHealth] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"unexpected ps entry: {entry!r}")
        name = entry.get("Service") or entry.get("Name") or ""
        if not name:
            raise ValueError(f"ps entry without a service name: {entry!r}")
        services.append(ServiceHealth(
            name=name,
            status=str(entry.get("State", "")).lower(),
            health=str(entry.get("Health", "") or "").lower(),
        ))
    return services


class ComposeServices:
    """Typed, allow-listed compose actions."""

    def __init__(
        self,
        runner: ComposeRunner,
        *,
        core_services: Iterable[str] = CORE_SERVICES,
        extra_services: Iterable[str] | None = None,
    ):
        self._runner = runner
        extras = runner.config.extra_services if extra_services is None else extra_services
        self._static = frozenset(core_services) | frozenset(extras)
        self._discovered: frozenset[str] | None = None

    @property
    def runner(self) -> ComposeRunner:
        return self._runner

    # ── Allow-list ──────────────────────────────────────────────

    def refresh_allowlist(self) -> frozenset[str]:
        """Re-read the service list from the compose tool.

        A failed discovery leaves only the static names allowed.
        """
        result = self._runner.run(["config", "--services"])
        if result.ok:
            self._discovered = frozenset(
                line.strip() for line in result.stdout.splitlines() if line.strip()
            )
        else:
            logger.warning("Service discovery failed (%s): %s", result.code, result.stderr.strip())
            self._discovered = frozenset()
        return self.allowed_services()

    def allowed_services(self) -> frozenset[str]:
        if self._discovered is None:
            self.refresh_allowlist()
        return self._static | (self._discovered or frozenset())

    def is_allowed(self, service: str) -> bool:
        return service in self.allowed_services()

    def _denied(self, args: list[str], services: Iterable[str]) -> ComposeResult | None:
        bad = [s for s in services if not self.is_allowed(s)]
        if not bad:
            return None
        logger.warning("Refusing compose %s for non-allow-listed service(s): %s", args[0], bad)
        return ComposeResult.failure(
            args, "service_not_allowed", stderr=f"service_not_allowed: {', '.join(bad)}",
            metadata={"services": bad},
        )

    # ── Actions ─────────────────────────────────────────────────

    def up(self, *services: str) -> ComposeResult:
        """``up -d`` the given services (all services when none given)."""
        args = ["up", "-d", *services]
        return self._denied(args, services) or self._runner.run(args, stream=True)

    def stop(self, *services: str) -> ComposeResult:
        args = ["stop", *services]
        return self._denied(args, services) or self._runner.run(args)

    def restart(self, *services: str) -> ComposeResult:
        args = ["restart", *services]
        return self._denied(args, services) or self._runner.run(args)

    def exec(self, service: str, command: list[str]) -> ComposeResult:
        args = ["exec", "-T", service, *command]
        return self._denied(args, [service]) or self._runner.run(args)

    def reload(self, service: str = PROXY_SERVICE) -> ComposeResult:
        """Hot-reload the proxy config inside its running container."""
        return self.exec(service, list(self._runner.config.proxy_reload_command))

    def pull(self, *services: str) -> ComposeResult:
        args = ["pull", *services]
        return self._denied(args, services) or self._runner.run(args, stream=True)

    def logs(self, service: str, tail: int = DEFAULT_TAIL, *, follow: bool = False) -> ComposeResult:
        """Recent log output of one service.

        ``tail`` must lie in [1, 5000]; anything else is ``invalid_tail``.
        """
        args = ["logs", "--no-color", "--tail", str(tail), service]
        if follow:
            args.insert(1, "--follow")
        if not isinstance(tail, int) or isinstance(tail, bool) or not MIN_TAIL <= tail <= MAX_TAIL:
            return ComposeResult.failure(
                args, "invalid_tail", stderr=f"tail must be between {MIN_TAIL} and {MAX_TAIL}",
            )
        return self._denied(args, [service]) or self._runner.run(args, stream=follow)

    def ps(self) -> tuple[ComposeResult, list[ServiceHealth]]:
        """Process status of every service in the compose project.

        A tool failure is returned as-is; output that cannot be parsed is
        a ``compose_ps_parse_failed`` failure, never an empty list.
        """
        result = self._runner.run(["ps", "--all", "--format", "json"])
        if not result.ok:
            return result, []
        try:
            services = parse_ps_output(result.stdout)
        except ValueError as e:
            logger.warning("Unparseable ps output: %s", e)
            return result.model_copy(update={
                "ok": False,
                "code": "compose_ps_parse_failed",
                "stderr": str(e),
            }), []
        return result, services

    def validate(self, compose_file: Path | None = None) -> ComposeResult:
        """Run the tool's own config validation against a compose document."""
        return self._runner.run(["config", "--quiet"], compose_file=compose_file)

    def remove_orphans(self) -> ComposeResult:
        """Remove containers of services no longer in the compose document."""
        return self._runner.run(["up", "--no-start", "--remove-orphans"], stream=True)
