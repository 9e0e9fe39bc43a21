"""
Secrets store — flat ``NAME=value`` file kept apart from the spec.

Values are sanitized before they are written: newlines and control
characters are stripped so a value can never inject a second line into
this file or into any generated env file.
"""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path

from stackplane.core.persistence.state_file import atomic_write_text, read_text

logger = logging.getLogger(__name__)

DEFAULT_SECRETS_FILE = "secrets.env"

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_env_scalar(value: str) -> str:
    """Strip control characters (newlines included) and surrounding whitespace."""
    return _CONTROL_CHARS_RE.sub("", str(value)).strip()


def sanitize_secret_name(name: str) -> str:
    """Normalise a user-supplied secret name: sanitized, upper-cased."""
    return sanitize_env_scalar(name).upper()


def parse_env_content(content: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines into a dict.

    Handles:
    - KEY=value
    - KEY="value" / KEY='value'
    - export KEY=value
    - Comments (#) and empty lines
    """
    result: dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        if line.startswith("export "):
            line = line[7:].strip()

        if "=" not in line:
            continue

        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]

        if key:
            result[key] = value
    return result


def _quote_if_needed(value: str) -> str:
    # parse_env_content strips one pair of matching quotes
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        wrap = "'" if value[0] == '"' else '"'
        return f"{wrap}{value}{wrap}"
    return value


def format_env_content(values: dict[str, str]) -> str:
    """Serialise a mapping as sorted ``KEY=VALUE`` lines.

    Values are written unquoted unless they are themselves wrapped in
    quotes, so :func:`parse_env_content` reads back exactly what was saved.
    """
    lines = [
        f"{key}={_quote_if_needed(sanitize_env_scalar(values[key]))}" for key in sorted(values)
    ]
    return "\n".join(lines) + "\n" if lines else ""


class SecretsFile:
    """Read/write access to the secrets env file.

    ``load()`` caches the parsed map keyed by a hash of the file content,
    so an external edit is picked up on the next read regardless of
    filesystem timestamp granularity.
    """

    def __init__(self, path: Path):
        self._path = path
        self._cache: dict[str, str] | None = None
        self._cache_key: str | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, str]:
        """Current secrets map (a fresh copy on every call)."""
        raw = read_text(self._path)
        if raw is None:
            self._cache, self._cache_key = {}, None
            return {}
        key = hashlib.sha256(raw.encode("utf-8")).hexdigest()
        if self._cache is None or key != self._cache_key:
            self._cache = parse_env_content(raw)
            self._cache_key = key
            logger.debug("Loaded %d secrets from %s", len(self._cache), self._path)
        return dict(self._cache)

    def save(self, values: dict[str, str]) -> None:
        atomic_write_text(self._path, format_env_content(values))
        self.invalidate()

    def set(self, name: str, value: str) -> None:
        values = self.load()
        values[name] = sanitize_env_scalar(value)
        self.save(values)

    def delete(self, name: str) -> bool:
        """Remove a secret. Returns False if it was not present."""
        values = self.load()
        if name not in values:
            return False
        del values[name]
        self.save(values)
        return True

    def invalidate(self) -> None:
        self._cache = None
        self._cache_key = None
