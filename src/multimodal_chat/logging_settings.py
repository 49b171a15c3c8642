"""Parse ``logging_settings.conf``.

The file holds ``key = level`` lines. Recognised keys:

``terminal``
    Root console/file handler level.
``conversations``
    Minimum level at which per-turn transcripts are written.
``upstream``
    Level for gateway and HTTP transport loggers.

Levels are ``debug``, ``info``, ``warning``, ``error`` or ``off``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

LEVELS: Mapping[str, int | None] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": None,
}

DEFAULTS: Mapping[str, str] = {
    "terminal": "info",
    "conversations": "info",
    "upstream": "warning",
}


@dataclass(frozen=True)
class LoggingSettings:
    terminal_level: int | None = logging.INFO
    conversations_level: int | None = logging.INFO
    upstream_level: int | None = logging.WARNING

    def level_for(self, key: str) -> int | None:
        return getattr(self, f"{key}_level")


def parse_logging_settings(path: Path) -> LoggingSettings:
    """Read ``path``; a missing file yields the defaults.

    Unknown keys, comments and unparseable lines are skipped. An unknown
    level name falls back to that key's default.
    """

    chosen = dict(DEFAULTS)
    if path.is_file():
        for raw_line in path.read_text(encoding="utf-8").splitlines():
            line = raw_line.split("#", 1)[0].strip()
            key, separator, value = line.partition("=")
            key = key.strip().lower()
            if not separator or key not in DEFAULTS:
                continue
            value = value.strip().lower()
            if value in LEVELS:
                chosen[key] = value

    return LoggingSettings(
        **{f"{key}_level": LEVELS[name] for key, name in chosen.items()}
    )


__all__ = ["DEFAULTS", "LEVELS", "LoggingSettings", "parse_logging_settings"]
