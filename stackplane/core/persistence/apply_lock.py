"""
Apply lock — one apply at a time per state root.

A JSON record ``{"pid": ..., "timestamp": ...}`` at ``apply.lock``.  The
lock lives on disk rather than in memory because the process driving an
apply may itself be restarted by that apply.  A record older than
``LOCK_STALE_SECONDS`` is considered abandoned and is taken over.
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable

from stackplane.core.errors import StackplaneError
from stackplane.core.persistence.state_file import atomic_write_text

logger = logging.getLogger(__name__)

DEFAULT_LOCK_FILE = "apply.lock"
LOCK_STALE_SECONDS = 10 * 60


class ApplyLock:
    """File-based apply lock.

    Usage::

        with ApplyLock(state_root / "apply.lock"):
            ...
    """

    def __init__(
        self,
        path: Path,
        *,
        clock: Callable[[], float] = time.time,
        pid: int | None = None,
    ):
        self._path = path
        self._clock = clock
        self._pid = pid if pid is not None else os.getpid()
        self._token: dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> dict[str, Any] | None:
        """Current lock record, or None if absent or unreadable."""
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable apply lock %s (%s); treating as stale", self._path, e)
            return None
        if not isinstance(data, dict):
            return None
        return data

    def is_held(self) -> bool:
        record = self.read()
        return record is not None and self._is_fresh(record)

    def acquire(self) -> None:
        """Take the lock.

        A missing lock is created exclusively.  A stale or unreadable one is
        replaced, then read back to confirm this process won the takeover.

        Raises:
            StackplaneError: ``apply_lock_held`` if a fresh lock exists or
                another apply took it first.
        """
        token = {"pid": self._pid, "timestamp": self._clock()}
        if not self._create_exclusive(token):
            record = self.read()
            if record is not None and self._is_fresh(record):
                raise self._held_error(record)
            logger.warning("Taking over stale apply lock from pid %s",
                           record.get("pid") if record else "unknown")
            atomic_write_text(self._path, json.dumps(token))
            current = self.read()
            if current != token:
                raise self._held_error(current or {})
        self._token = token
        logger.debug("Apply lock acquired (pid %d)", self._pid)

    def release(self) -> None:
        """Remove the lock if this instance still owns it."""
        if self._token is None:
            return
        token, self._token = self._token, None
        record = self.read()
        if record != token:
            logger.warning("Apply lock %s now owned by pid %s; leaving it in place",
                           self._path, record.get("pid") if record else None)
            return
        self._path.unlink(missing_ok=True)
        logger.debug("Apply lock released")

    def __enter__(self) -> ApplyLock:
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()

    # ── Internals ───────────────────────────────────────────────

    def _is_fresh(self, record: dict[str, Any]) -> bool:
        try:
            age = self._clock() - float(record.get("timestamp", 0))
        except (TypeError, ValueError):
            return False
        return age < LOCK_STALE_SECONDS

    def _create_exclusive(self, token: dict[str, Any]) -> bool:
        """Create the lock file only if absent; False when it already exists."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(token))
        return True

    @staticmethod
    def _held_error(record: dict[str, Any]) -> StackplaneError:
        return StackplaneError(
            "apply_lock_held",
            f"apply in progress (pid {record.get('pid')}, since {record.get('timestamp')})",
        )
