"""
Readiness prober — confirm the stack converged after an apply.

Each attempt runs two stages:

1. Process status (``compose ps``): every target must exist, be
   ``running``, and, when it declares a healthcheck, be ``healthy``.
2. HTTP probes: only once every target passes stage 1, one GET per
   well-known service, run concurrently, each with its own timeout.
   Success is a 2xx response whose JSON body (where expected) is not
   ``{"ok": false}``.

Attempts are sequential with a fixed sleep between them.  When attempts
run out, recent logs of every still-failing service are attached to the
report so the failure is actionable without a second command.
"""

from __future__ import annotations

import http.client
import json
import logging
import time
import urllib.error
import urllib.request
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from stackplane.adapters.compose.services import ComposeServices
from stackplane.core.config import StackConfig
from stackplane.core.models.catalog import CORE_HTTP_PROBES, CORE_SERVICES, HttpProbe
from stackplane.core.models.compose import ServiceHealth

logger = logging.getLogger(__name__)

LOG_TAIL = 100

# fetch(url, timeout) -> (status code, body); raises on network errors
FetchFn = Callable[[str, float], tuple[int, str]]


def urllib_fetch(url: str, timeout: float) -> tuple[int, str]:
    """GET *url*; an HTTP error status is returned, not raised."""
    req = urllib.request.Request(url, method="GET", headers={"User-Agent": "stackplane-readiness"})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return resp.status, resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        return e.code, e.read().decode("utf-8", errors="replace")


@dataclass
class ServiceCheck:
    """Readiness of one service in one attempt."""

    service: str
    ready: bool
    reason: str = ""        # missing, not_running, unhealthy, http_probe_failed
    url: str = ""
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"service": self.service, "ready": self.ready}
        if self.reason:
            out["reason"] = self.reason
        if self.url:
            out["url"] = self.url
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class ReadinessReport:
    """Outcome of a readiness run."""

    ok: bool
    attempts: int
    code: str | None = None          # setup_not_ready, compose_ps_failed
    checks: list[ServiceCheck] = field(default_factory=list)
    failed_services: list[str] = field(default_factory=list)
    logs: dict[str, str] = field(default_factory=dict)
    ps_error: str = ""
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "code": self.code,
            "attempts": self.attempts,
            "timestamp": self.timestamp,
            "checks": [c.to_dict() for c in self.checks],
            "failed_services": self.failed_services,
            "logs": self.logs,
            "ps_error": self.ps_error,
        }


def check_process_status(targets: Iterable[str], statuses: list[ServiceHealth]) -> list[ServiceCheck]:
    """Stage 1: one check per target from parsed ``ps`` output."""
    by_name = {s.name: s for s in statuses}
    checks = []
    for name in targets:
        status = by_name.get(name)
        if status is None:
            checks.append(ServiceCheck(name, False, "missing"))
        elif not status.running:
            checks.append(ServiceCheck(name, False, "not_running", error=status.status))
        elif status.health and status.health != "healthy":
            checks.append(ServiceCheck(name, False, "unhealthy", error=status.health))
        else:
            checks.append(ServiceCheck(name, True))
    return checks


def evaluate_http_response(status: int, body: str, expect_json: bool) -> str:
    """Return an error string, or "" when the response means ready."""
    if not 200 <= status < 300:
        return f"HTTP {status}"
    if expect_json:
        try:
            data = json.loads(body) if body.strip() else None
        except ValueError:
            return ""
        if isinstance(data, dict) and data.get("ok") is False:
            return "ok=false"
    return ""


class ReadinessProber:
    """Polls compose status and HTTP health until the stack is ready."""

    def __init__(
        self,
        services: ComposeServices,
        config: StackConfig,
        *,
        fetch: FetchFn | None = None,
        sleep: Callable[[float], None] = time.sleep,
        http_probes: Iterable[HttpProbe] = CORE_HTTP_PROBES,
    ):
        self._services = services
        self._config = config
        self._fetch = fetch or urllib_fetch
        self._sleep = sleep
        self._probes = tuple(http_probes)

    def probe_url(self, probe: HttpProbe) -> str:
        return self._config.probe_urls.get(probe.service, probe.url)

    def probe(
        self,
        targets: Iterable[str] | None = None,
        *,
        max_attempts: int | None = None,
        interval: float | None = None,
    ) -> ReadinessReport:
        """Poll until every target is ready or attempts run out.

        Args:
            targets: Services that must be ready (default: core services).
            max_attempts: Override ``readiness_attempts``.
            interval: Override ``readiness_interval`` (seconds).
        """
        wanted = sorted(set(targets if targets is not None else CORE_SERVICES))
        attempts = max_attempts or self._config.readiness_attempts
        delay = self._config.readiness_interval if interval is None else interval

        checks: list[ServiceCheck] = []
        ps_error = ""
        ps_failed = False

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                self._sleep(delay)

            result, statuses = self._services.ps()
            if not result.ok:
                ps_failed = True
                ps_error = f"{result.code}: {result.stderr.strip()}"
                checks = [ServiceCheck(name, False, "not_running", error=ps_error) for name in wanted]
                logger.debug("Readiness attempt %d/%d: ps failed (%s)", attempt, attempts, result.code)
                continue
            ps_failed = False

            checks = check_process_status(wanted, statuses)
            if all(c.ready for c in checks):
                checks = self._merge(checks, self._run_http_probes(wanted))

            failed = [c.service for c in checks if not c.ready]
            if not failed:
                logger.info("Stack ready after %d attempt(s)", attempt)
                return ReadinessReport(ok=True, attempts=attempt, checks=checks)
            logger.debug("Readiness attempt %d/%d: not ready %s", attempt, attempts, failed)

        failed = [c.service for c in checks if not c.ready]
        report = ReadinessReport(
            ok=False,
            attempts=attempts,
            code="compose_ps_failed" if ps_failed else "setup_not_ready",
            checks=checks,
            failed_services=failed,
            ps_error=ps_error,
        )
        report.logs = self._collect_logs(failed)
        logger.warning("Stack not ready after %d attempts: %s", attempts, failed)
        return report

    # ── Internals ───────────────────────────────────────────────

    def _run_http_probes(self, targets: list[str]) -> list[ServiceCheck]:
        probes = [p for p in self._probes if p.service in targets]
        if not probes:
            return []
        with ThreadPoolExecutor(max_workers=len(probes)) as pool:
            return list(pool.map(self._http_check, probes))

    def _http_check(self, probe: HttpProbe) -> ServiceCheck:
        url = self.probe_url(probe)
        try:
            status, body = self._fetch(url, self._config.probe_timeout)
        except (OSError, ValueError, http.client.HTTPException) as e:
            return ServiceCheck(probe.service, False, "http_probe_failed", url=url, error=str(e))
        error = evaluate_http_response(status, body, probe.expect_json)
        if error:
            return ServiceCheck(probe.service, False, "http_probe_failed", url=url, error=error)
        return ServiceCheck(probe.service, True, url=url)

    @staticmethod
    def _merge(base: list[ServiceCheck], http: list[ServiceCheck]) -> list[ServiceCheck]:
        by_service = {c.service: c for c in http}
        return [by_service.get(c.service, c) for c in base]

    def _collect_logs(self, failed: list[str]) -> dict[str, str]:
        logs: dict[str, str] = {}
        for service in failed:
            result = self._services.logs(service, tail=LOG_TAIL)
            if result.ok:
                logs[service] = result.stdout
            else:
                detail = result.stderr.strip() or result.code or "unknown"
                logs[service] = f"log_fetch_failed:{detail}"
        return logs
