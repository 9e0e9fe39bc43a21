"""
Error base — stable machine-readable failure codes.

Every failure that crosses a component boundary carries a ``code``: a
short token such as ``secret_in_use`` or ``compose_up_failed:gateway``.
Callers (CLI, admin UI) branch on the code; the human detail is for logs.
"""

from __future__ import annotations


class StackplaneError(Exception):
    """Base error carrying a stable failure code.

    Attributes:
        code:    Machine token (see error taxonomy).
        detail:  Free-form detail, usually raw tool stderr.
        service: The service the failure relates to, if any.
    """

    def __init__(self, code: str, detail: str = "", service: str | None = None):
        self.code = code
        self.detail = detail
        self.service = service
        super().__init__(f"{code}: {detail}" if detail else code)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "detail": self.detail,
            "service": self.service,
        }


class ApplyError(StackplaneError):
    """Apply failure.

    Raised after any rollback/fallback has run, so ``recovery`` tells the
    caller what is running now:

        None                no recovery was needed (failed before any change)
        recovered           previous artifacts restored, core services back up
        fallback_applied    recovery failed; admin + proxy bundle is up
        fallback_failed     even the fallback bundle could not be started
    """

    def __init__(
        self,
        code: str,
        detail: str = "",
        service: str | None = None,
        *,
        errors: list[str] | None = None,
    ):
        super().__init__(code, detail, service)
        self.errors = list(errors or [])
        self.recovery: str | None = None
        self.notes: list[str] = []

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["errors"] = self.errors
        out["recovery"] = self.recovery
        out["notes"] = self.notes
        return out
