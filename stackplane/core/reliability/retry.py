"""
Retry policy for compose invocations.

Transient tool failures (daemon briefly unreachable, registry hiccup on
pull) are re-attempted immediately, with no backoff, up to a fixed
bound.  Every other failure is final on first occurrence.  ``timeout``
is never retried: a hung call repeated is just a longer hang.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 2
RETRYABLE_CODES: frozenset[str] = frozenset({"daemon_unreachable", "image_pull_failed"})


@dataclass(frozen=True)
class RetryPolicy:
    """How many extra attempts a classified failure gets."""

    retries: int = DEFAULT_RETRIES
    retryable: frozenset[str] = field(default=RETRYABLE_CODES)

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def should_retry(self, code: str | None, attempt: int) -> bool:
        """Whether to re-run after ``attempt`` (1-based) failed with ``code``."""
        if code is None or code not in self.retryable:
            return False
        if attempt >= self.max_attempts:
            logger.debug("Retry budget exhausted after %d attempts (%s)", attempt, code)
            return False
        return True
