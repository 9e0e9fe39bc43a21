"""
Logging setup for the stackplane process, driven by ``StackConfig``.

main.py calls :func:`setup_logging` once with the loaded config; every
module logs through ``logging.getLogger(__name__)`` under the
``stackplane`` hierarchy.

Level precedence: CLI override > ``config.log_level`` > WARNING.
``config.log_file`` adds a detailed file handler at
``config.log_file_level`` (default: the console level).
"""

from __future__ import annotations

import logging
import sys

from stackplane.core.config import StackConfig

# Console: bare messages for operators, context once they ask for INFO/DEBUG
_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname).1s %(name)s:%(lineno)d %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s %(name)s: %(message)s", "%H:%M:%S"),
}
_CONSOLE_DEFAULT = ("%(levelname)s: %(message)s", None)

_FILE_FORMAT = "%(asctime)s %(process)d %(levelname)s %(name)s:%(lineno)d %(message)s"

# Loggers kept at WARNING unless the process runs at DEBUG
_QUIET_LOGGERS = ("urllib3", "concurrent.futures")

_OWNED_ATTR = "_stackplane_owned"


def parse_level(level: str | None) -> int:
    """Level name to its number; unknown or empty names give WARNING."""
    numeric = logging.getLevelName(level.upper()) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING


def console_level(config: StackConfig, override: str | None = None) -> int:
    return parse_level(override or config.log_level)


def setup_logging(
    config: StackConfig,
    *,
    level_override: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """(Re)configure the root logger from *config*.

    Handlers installed by an earlier call are replaced, so the CLI can be
    invoked repeatedly in one process.
    """
    level = console_level(config, level_override)
    handlers = [_console_handler(level)]
    if config.log_file:
        file_level = parse_level(config.log_file_level) if config.log_file_level else level
        handlers.append(_file_handler(config.log_file, file_level))

    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
        if getattr(old, _OWNED_ATTR, False):
            old.close()
    for handler in handlers:
        setattr(handler, _OWNED_ATTR, True)
        root.addHandler(handler)
    root.setLevel(min(h.level for h in handlers))

    quiet = quiet_third_party and level > logging.DEBUG
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING if quiet else logging.NOTSET)


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = _CONSOLE_FORMATS.get(level, _CONSOLE_DEFAULT)
    if level < logging.DEBUG:
        fmt, datefmt = _CONSOLE_FORMATS[logging.DEBUG]
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler
