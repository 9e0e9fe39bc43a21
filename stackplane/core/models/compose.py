"""
Compose result models — the I/O contract of the compose runner.

The runner NEVER raises for tool failures: every invocation returns a
``ComposeResult``.  A failed result carries a classified ``code``
(``daemon_unreachable``, ``image_pull_failed``, ``service_not_allowed``...)
and the raw stderr so callers can surface exactly what the tool said.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field


class ComposeResult(BaseModel):
    """Outcome of one compose action (possibly after retries)."""

    ok: bool
    args: list[str] = Field(default_factory=list)
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    code: str | None = None          # error code when not ok
    attempts: int = 1
    duration_ms: int = 0

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return not self.ok

    @classmethod
    def success(cls, args: list[str], stdout: str = "", **kwargs: Any) -> ComposeResult:
        """Create a success result."""
        return cls(ok=True, args=args, stdout=stdout, **kwargs)

    @classmethod
    def failure(cls, args: list[str], code: str, stderr: str = "", **kwargs: Any) -> ComposeResult:
        """Create a failure result."""
        return cls(ok=False, args=args, code=code, stderr=stderr, **kwargs)


@dataclass
class ServiceHealth:
    """Process-level status of one compose service."""

    name: str
    status: str           # running, exited, restarting, created, ...
    health: str = ""      # healthy, unhealthy, starting, or "" without a healthcheck

    @property
    def running(self) -> bool:
        return self.status == "running"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "status": self.status, "health": self.health}
