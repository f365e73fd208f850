"""
Logging configuration — one setup call for the CLI.

main.py calls ``setup_logging()`` once; modules just do
``logger = logging.getLogger(__name__)``.

Console level, first match wins:
    --debug / --verbose / --quiet  >  HC_LOG_LEVEL  >  WARNING

HC_LOG_FILE adds a file handler (level from HC_LOG_FILE_LEVEL, else the
console level). File lines carry the id of the run that produced them,
so one log file can hold many applies. Secret values are never handed
to a logger, so the file is safe to keep.
"""

from __future__ import annotations

import logging
import os
import sys

# ── Formats ─────────────────────────────────────────────────────

_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
}
_CONSOLE_DEFAULT = ("%(message)s", None)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(run_id)s] %(name)s:%(lineno)d — %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

_NO_RUN = "-"

# Libraries that chatter below WARNING
_NOISY_LOGGERS = ("asyncio",)


class RunContextFilter(logging.Filter):
    """Stamps every record with ``run_id`` (``-`` outside a run)."""

    current: str = _NO_RUN

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = RunContextFilter.current
        return True


def bind_run(run_id: str | None) -> None:
    """Attribute subsequent log lines to ``run_id``; None clears it."""
    RunContextFilter.current = run_id or _NO_RUN


def resolve_level(cli_level: str | None) -> str:
    """CLI flag wins, then $HC_LOG_LEVEL, then WARNING."""
    return cli_level or os.environ.get("HC_LOG_LEVEL") or "WARNING"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure logging for the whole process.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional log file path (defaults to ``$HC_LOG_FILE``).
        log_file_level: Level for the file (defaults to ``$HC_LOG_FILE_LEVEL``,
            then ``level``).
        quiet_third_party: Keep noisy library loggers at WARNING unless
            running at DEBUG.
    """
    console_level = _parse_level(level)
    log_file = log_file or os.environ.get("HC_LOG_FILE")
    log_file_level = log_file_level or os.environ.get("HC_LOG_FILE_LEVEL")

    fmt, datefmt = _console_format(console_level)
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        root_level = min(root_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.addFilter(RunContextFilter())
        fh.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        root.addHandler(fh)

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def _console_format(level: int) -> tuple[str, str | None]:
    for threshold in sorted(_CONSOLE_FORMATS):
        if level <= threshold:
            return _CONSOLE_FORMATS[threshold]
    return _CONSOLE_DEFAULT


def _parse_level(level: str | None) -> int:
    """Level name to its numeric constant; unknown names mean WARNING."""
    if not level:
        return logging.WARNING
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else logging.WARNING
