"""
Artifact store — the generated files on disk under the state root.

Provides the three primitives the apply engine is built on:

- ``snapshot()``: capture every managed file (None for absent ones)
- ``write()`` / ``restore()``: converge the directory to a set of files,
  removing env files that are no longer generated
- ``stage_compose()`` / ``promote_compose()``: write the candidate compose
  document beside the live one so it can be validated before it replaces it
"""

from __future__ import annotations

import logging
from pathlib import Path

from stackplane.core.models.artifacts import (
    COMPOSE_FILE,
    ENV_DIR,
    PROXY_FILE,
    SYSTEM_ENV_FILE,
    GeneratedArtifacts,
    service_for_env_file,
)
from stackplane.core.persistence.state_file import atomic_write_text, read_text

logger = logging.getLogger(__name__)

STAGED_SUFFIX = ".next"

# path → content; None means "file absent"
Snapshot = dict[str, str | None]


class ArtifactStore:
    """Managed artifact files rooted at ``root``."""

    def __init__(self, root: Path):
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    @property
    def staged_compose_path(self) -> Path:
        return self._root / f"{COMPOSE_FILE}{STAGED_SUFFIX}"

    def path(self, relpath: str) -> Path:
        return self._root / relpath

    def read(self, relpath: str) -> str | None:
        return read_text(self.path(relpath))

    # ── Snapshot / restore ──────────────────────────────────────

    def managed_paths(self) -> list[str]:
        """Relative paths of every managed file currently relevant."""
        paths = [COMPOSE_FILE, PROXY_FILE, SYSTEM_ENV_FILE]
        env_dir = self._root / ENV_DIR
        if env_dir.is_dir():
            for f in sorted(env_dir.glob("*.env")):
                paths.append(f"{ENV_DIR}/{f.name}")
        return paths

    def snapshot(self) -> Snapshot:
        """Capture the current content of every managed file."""
        snap = {relpath: self.read(relpath) for relpath in self.managed_paths()}
        logger.debug("Artifact snapshot: %d files (%d present)",
                     len(snap), sum(1 for v in snap.values() if v is not None))
        return snap

    def restore(self, snap: Snapshot) -> None:
        """Put the directory back exactly as captured by ``snapshot()``."""
        for relpath in self.managed_paths():
            if relpath not in snap:
                self._remove(relpath)
        for relpath, content in snap.items():
            if content is None:
                self._remove(relpath)
            else:
                atomic_write_text(self.path(relpath), content)
        self.discard_staged()
        logger.info("Restored %d artifact files from snapshot", len(snap))

    # ── Write ───────────────────────────────────────────────────

    def changed_paths(self, artifacts: GeneratedArtifacts) -> list[str]:
        """Paths whose on-disk content differs from ``artifacts``.

        Env files on disk that the render no longer produces count as
        changed (they are about to be removed).
        """
        files = artifacts.files()
        changed = [p for p, content in files.items() if self.read(p) != content]
        for relpath in self.managed_paths():
            if relpath not in files and service_for_env_file(relpath) is not None:
                changed.append(relpath)
        return sorted(changed)

    def write(self, artifacts: GeneratedArtifacts, *, include_compose: bool = True) -> list[str]:
        """Write generated files and drop stale env files.

        Args:
            artifacts: The rendered file set.
            include_compose: False when the compose document is promoted
                separately from a staged copy.

        Returns:
            Relative paths that were written or removed.
        """
        files = artifacts.files()
        touched: list[str] = []
        for relpath, content in files.items():
            if relpath == COMPOSE_FILE and not include_compose:
                continue
            if self.read(relpath) != content:
                atomic_write_text(self.path(relpath), content)
                touched.append(relpath)
        for relpath in self.managed_paths():
            if relpath not in files and service_for_env_file(relpath) is not None:
                self._remove(relpath)
                touched.append(relpath)
        logger.debug("Artifacts written: %s", touched or "(none changed)")
        return touched

    def write_files(self, files: dict[str, str]) -> None:
        """Write exactly these files; nothing else is touched."""
        for relpath, content in files.items():
            atomic_write_text(self.path(relpath), content)

    # ── Staged compose ──────────────────────────────────────────

    def stage_compose(self, content: str) -> Path:
        """Write the candidate compose document next to the live one."""
        path = self.staged_compose_path
        atomic_write_text(path, content)
        return path

    def promote_compose(self) -> None:
        """Atomically replace the live compose document with the staged one."""
        self.staged_compose_path.replace(self.path(COMPOSE_FILE))
        logger.debug("Promoted staged compose document")

    def discard_staged(self) -> None:
        self.staged_compose_path.unlink(missing_ok=True)

    def _remove(self, relpath: str) -> None:
        target = self.path(relpath)
        if target.exists():
            target.unlink()
            logger.debug("Removed %s", relpath)
