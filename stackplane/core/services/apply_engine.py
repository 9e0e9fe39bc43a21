"""
Apply engine — converge the running stack to the current spec.

    lock → validate → stage → apply → {succeeded | rollback → {recovered | fallback}}

1. Lock: take ``apply.lock``; a fresh lock held by another apply fails
   immediately with ``apply_lock_held``.
2. Validate: render; any unresolved secret reference aborts with
   ``secret_validation_failed``.  The candidate compose document is staged
   beside the live one and checked with the tool's own validator
   (``compose_validation_failed``).  Nothing live has changed yet.
3. Stage: write proxy/env files, re-validate the staged compose document
   against them, then atomically promote it.
4. Apply: ``up`` → ``restart`` → ``reload``, one call per service; the
   first failure aborts the rest.
5. On an apply-phase failure: restore the pre-apply snapshot, re-validate,
   bring the recovery set back up.  If that fails too, write the
   admin + proxy fallback bundle and start just those two.  The original
   error is raised either way, with ``recovery`` set.
6. The lock is released unconditionally.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from stackplane.adapters.compose.services import ComposeServices
from stackplane.core.errors import ApplyError, StackplaneError
from stackplane.core.models.artifacts import ImpactPlan, RenderReport
from stackplane.core.models.catalog import CORE_SERVICES, FALLBACK_SERVICES, RECOVERY_SERVICES
from stackplane.core.models.compose import ComposeResult
from stackplane.core.models.spec import StackSpec, compose_service_name
from stackplane.core.observability.readiness import ReadinessProber, ReadinessReport
from stackplane.core.persistence.apply_lock import DEFAULT_LOCK_FILE, ApplyLock
from stackplane.core.persistence.audit import DEFAULT_AUDIT_FILE, AuditEntry, AuditWriter
from stackplane.core.services.impact_planner import plan_impact
from stackplane.core.services.secret_resolver import missing_secret_references
from stackplane.core.services.stack_generator import build_fallback_bundle, generate_stack_artifacts
from stackplane.core.services.stack_manager import StackManager

logger = logging.getLogger(__name__)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"apply-{now}-{short}"


def readiness_targets(spec: StackSpec) -> list[str]:
    """Services that must be up once the spec is applied."""
    targets = list(CORE_SERVICES)
    targets.extend(compose_service_name(kind, name) for kind, name, _e in spec.iter_enabled())
    return sorted(targets)


@dataclass
class ApplyResult:
    """Outcome of a successful (or dry-run) apply."""

    operation_id: str
    plan: ImpactPlan
    report: RenderReport
    dry_run: bool = False
    steps: list[str] = field(default_factory=list)       # "up:gateway", "reload:caddy", ...
    readiness: ReadinessReport | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.readiness is None or self.readiness.ok

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "operation_id": self.operation_id,
            "dry_run": self.dry_run,
            "plan": self.plan.model_dump(),
            "report": self.report.model_dump(mode="json"),
            "steps": self.steps,
            "readiness": self.readiness.to_dict() if self.readiness else None,
            "duration_ms": self.duration_ms,
        }


class ApplyEngine:
    """Transactional apply for one state root."""

    def __init__(
        self,
        manager: StackManager,
        services: ComposeServices,
        *,
        prober: ReadinessProber | None = None,
        lock: ApplyLock | None = None,
        audit: AuditWriter | None = None,
    ):
        root = manager.config.state_root
        self._manager = manager
        self._store = manager.store
        self._services = services
        self._prober = prober
        self._lock = lock or ApplyLock(root / DEFAULT_LOCK_FILE)
        self._audit = audit or AuditWriter(root / DEFAULT_AUDIT_FILE)
        self._plan = ImpactPlan()
        self._report = RenderReport()

    def apply(self, *, dry_run: bool = False, wait_ready: bool = False) -> ApplyResult:
        """Apply the current spec.

        Args:
            dry_run: Validate and plan only; nothing is written or run.
            wait_ready: Run the readiness prober after a successful apply.

        Returns:
            ApplyResult with the executed plan.

        Raises:
            ApplyError: With the failing step's code, service, and raw
                tool stderr; ``recovery`` says what recovery ran.
        """
        operation_id = generate_operation_id()
        start = time.monotonic()

        try:
            self._lock.acquire()
        except StackplaneError as e:
            raise ApplyError(e.code, e.detail) from e

        self._plan = ImpactPlan()
        self._report = RenderReport()
        try:
            try:
                result = self._apply_locked(operation_id, dry_run, wait_ready)
            except ApplyError as e:
                self._write_audit(operation_id, "failed", self._plan, self._report, start, error=e)
                raise
            result.duration_ms = int((time.monotonic() - start) * 1000)
            if not dry_run:
                self._write_audit(operation_id, "ok", result.plan, result.report, start)
            return result
        finally:
            self._lock.release()

    # ── Phases ──────────────────────────────────────────────────

    def _apply_locked(self, operation_id: str, dry_run: bool, wait_ready: bool) -> ApplyResult:
        try:
            spec = self._manager.get_spec()
            secrets = self._manager.get_secrets()
        except StackplaneError as e:
            raise ApplyError(e.code, e.detail, e.service) from e

        # Validating
        artifacts = generate_stack_artifacts(spec, secrets)
        missing = missing_secret_references(spec, secrets)
        report = RenderReport(
            changed_artifacts=self._store.changed_paths(artifacts),
            missing_secret_references=missing,
        )
        self._manager.write_render_report(report)
        self._report = report
        if missing:
            raise ApplyError("secret_validation_failed", ", ".join(missing), errors=missing)

        snapshot = self._store.snapshot()
        plan = plan_impact(snapshot, artifacts)
        self._plan = plan
        logger.info("Apply %s plan: up=%s restart=%s reload=%s down=%s",
                    operation_id, plan.up, plan.restart, plan.reload, plan.down)
        if dry_run:
            return ApplyResult(operation_id, plan, report, dry_run=True)

        staged = self._store.stage_compose(artifacts.compose)
        try:
            self._check_valid(self._services.validate(staged))

            # Staging
            try:
                self._store.write(artifacts, include_compose=False)
                self._check_valid(self._services.validate(staged))
                self._store.promote_compose()
            except (ApplyError, OSError):
                self._store.restore(snapshot)
                raise
        except OSError as e:
            raise ApplyError("artifact_write_failed", str(e)) from e
        finally:
            self._store.discard_staged()

        if plan.down:
            logger.warning("Services removed from the stack are not stopped automatically: %s "
                           "(run 'stackplane prune')", plan.down)

        # Applying
        self._services.refresh_allowlist()
        steps: list[str] = []
        try:
            self._execute(plan, steps)
        except ApplyError as e:
            self._recover(e, snapshot, spec, secrets)
            raise

        result = ApplyResult(operation_id, plan, report, steps=steps)
        if wait_ready and self._prober is not None:
            result.readiness = self._prober.probe(readiness_targets(spec))
        logger.info("Apply %s succeeded (%d steps)", operation_id, len(steps))
        return result

    def _check_valid(self, result: ComposeResult) -> None:
        if not result.ok:
            raise ApplyError("compose_validation_failed", result.stderr.strip())

    def _execute(self, plan: ImpactPlan, steps: list[str]) -> None:
        phases = (
            ("up", plan.up, self._services.up),
            ("restart", plan.restart, self._services.restart),
            ("reload", plan.reload, self._services.reload),
        )
        for action, names, call in phases:
            for service in names:
                result = call(service)
                if not result.ok:
                    logger.error("compose %s %s failed (%s): %s",
                                 action, service, result.code, result.stderr.strip())
                    raise ApplyError(
                        f"compose_{action}_failed:{service}",
                        result.stderr.strip(),
                        service,
                    )
                steps.append(f"{action}:{service}")

    # ── Failure handling ────────────────────────────────────────

    def _recover(
        self,
        error: ApplyError,
        snapshot: dict[str, str | None],
        spec: StackSpec,
        secrets: dict[str, str],
    ) -> None:
        """Rollback, then fallback.  Sets ``error.recovery``; never raises."""
        logger.warning("Apply failed (%s); rolling back", error.code)
        try:
            self._store.restore(snapshot)
            validation = self._services.validate()
            if validation.ok:
                self._services.refresh_allowlist()
                up = self._services.up(*RECOVERY_SERVICES)
                if up.ok:
                    error.recovery = "recovered"
                    logger.info("Rollback succeeded; previous artifacts restored")
                    return
                error.notes.append(f"rollback_up_failed:{up.code}")
            else:
                error.notes.append("rollback_validation_failed")
        except OSError as e:
            error.notes.append(f"rollback_restore_failed:{e}")

        error.notes.append("rollback_failed_attempting_fallback")
        logger.error("Rollback failed; starting fallback bundle (%s)", ", ".join(FALLBACK_SERVICES))
        try:
            self._store.write_files(build_fallback_bundle(spec, secrets))
            up = self._services.up(*FALLBACK_SERVICES)
        except OSError as e:
            error.notes.append(f"fallback_write_failed:{e}")
            error.recovery = "fallback_failed"
            return
        if up.ok:
            error.recovery = "fallback_applied"
        else:
            error.recovery = "fallback_failed"
            error.notes.append(f"fallback_up_failed:{up.code}")
        logger.error("Fallback %s", error.recovery)

    def _write_audit(
        self,
        operation_id: str,
        status: str,
        plan: ImpactPlan,
        report: RenderReport,
        start: float,
        *,
        error: ApplyError | None = None,
    ) -> None:
        entry = AuditEntry(
            operation_id=operation_id,
            status=status,
            plan=plan.model_dump(),
            changed_artifacts=report.changed_artifacts,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        if error is not None:
            entry.errors = [error.code, *error.errors]
            entry.recovery = error.recovery
            entry.notes = list(error.notes)
            if error.detail:
                entry.context["detail"] = error.detail[:2000]
        self._audit.write(entry)
