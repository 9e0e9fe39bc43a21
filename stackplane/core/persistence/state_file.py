"""
State file persistence — atomic read/write for the spec document.

The spec is stored as YAML in ``stack.yml``.  Writes are atomic
(write to temp file, then rename) so readers never observe a partial
document, even if the process dies mid-write.  Every other file this
package writes goes through ``atomic_write_text`` as well.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import yaml

from stackplane.core.models.spec import SpecError, StackSpec, parse_stack_spec

logger = logging.getLogger(__name__)

DEFAULT_SPEC_FILE = "stack.yml"


def default_spec_path(state_root: Path) -> Path:
    """Get the default spec document path under a state root."""
    return state_root / DEFAULT_SPEC_FILE


def atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* atomically.

    Uses write-to-temp-then-rename in the target directory, so the
    rename never crosses a filesystem boundary.

    Args:
        path: Target file.
        content: Full file content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        tmp.replace(path)
        logger.debug("Wrote %s (%d bytes)", path, len(content))
    except Exception:
        tmp.unlink(missing_ok=True)
        raise


def read_text(path: Path) -> str | None:
    """Read a text file, or None if it does not exist."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def dump_spec(spec: StackSpec) -> str:
    """Serialise a spec to its canonical YAML text."""
    return yaml.safe_dump(
        spec.to_document(),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )


def parse_spec_text(raw: str, source: Path | str = "<string>") -> StackSpec:
    """Parse and validate spec YAML already read from *source*."""
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise SpecError("invalid_stack_spec", f"Invalid YAML in {source}: {e}") from e
    return parse_stack_spec(data)


def load_spec(path: Path) -> StackSpec | None:
    """Load the spec document.

    Args:
        path: Path to stack.yml.

    Returns:
        Validated StackSpec, or None if the file does not exist.

    Raises:
        SpecError: If the file is not valid YAML or fails validation.
            A corrupt desired state is never silently replaced.
    """
    raw = read_text(path)
    if raw is None:
        return None
    spec = parse_spec_text(raw, path)
    logger.debug("Loaded spec from %s (%d channels, %d services)",
                 path, len(spec.channels), len(spec.services))
    return spec


def save_spec(spec: StackSpec, path: Path) -> None:
    """Save the spec document (atomic write)."""
    try:
        atomic_write_text(path, dump_spec(spec))
    except OSError as e:
        logger.error("Failed to save spec to %s: %s", path, e)
        raise
