"""Run log — buffers this run's log lines and appends them to a daily file.

Lines look like ``[2025-10-22 11:45:00.123] [profile] message`` in civil
time. The buffer is written to ``<log_dir>/YYYYMMDD.log`` on ``flush()``
(called explicitly at the end of a run and again by ``logging.shutdown``).
A failed write keeps the buffer and records the failure in it, so the note
lands in the file on the next successful flush.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from typing import TYPE_CHECKING

from reservebot.clock import format_timestamp

if TYPE_CHECKING:
    from pathlib import Path

    from reservebot.clock import Clock

_PACKAGE_LOGGER = "reservebot"


class RunLogFormatter(logging.Formatter):
    """Formats records as ``[civil timestamp] [profile] message``."""

    def __init__(self, profile: str, clock: Clock) -> None:
        super().__init__()
        self._profile = profile
        self._clock = clock

    def format(self, record: logging.LogRecord) -> str:
        stamp = format_timestamp(datetime.fromtimestamp(record.created, self._clock.tz))
        message = record.getMessage()
        if record.levelno >= logging.WARNING:
            message = f"{record.levelname}: {message}"
        line = f"[{stamp}] [{self._profile}] {message}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class RunLogHandler(logging.Handler):
    """Buffering handler that appends to a per-day log file on flush."""

    def __init__(self, log_dir: Path, profile: str, clock: Clock) -> None:
        super().__init__()
        self._log_dir = log_dir
        self._clock = clock
        self._buffer: list[str] = []
        self.setFormatter(RunLogFormatter(profile, clock))

    @property
    def buffered(self) -> list[str]:
        return list(self._buffer)

    def log_file(self) -> Path:
        return self._log_dir / f"{self._clock.now():%Y%m%d}.log"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        self.acquire()
        try:
            self._buffer.append(line)
        finally:
            self.release()

    def record(self, message: str) -> None:
        """Append a raw line to the buffer, bypassing formatting."""
        self.acquire()
        try:
            self._buffer.append(message)
        finally:
            self.release()

    def flush(self) -> None:
        self.acquire()
        try:
            if not self._buffer:
                return
            text = "\n".join(self._buffer) + "\n\n"
            try:
                self._log_dir.mkdir(parents=True, exist_ok=True)
                # Undecodable input (surrogate-escaped paths, OS error text) is kept as escapes
                with self.log_file().open("a", encoding="utf-8", errors="backslashreplace") as fh:
                    fh.write(text)
            except OSError as exc:
                self._buffer.append(f"Failed to write log file: {exc}")
                return
            self._buffer.clear()
        finally:
            self.release()


def configure_logging(
    profile: str,
    clock: Clock,
    log_dir: Path,
    *,
    production: bool = False,
    level: str = "INFO",
) -> RunLogHandler:
    """Install the run-log handler (and a console handler unless *production*).

    Returns the run-log handler so the caller can flush it at the end of a run.
    """
    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)

    run_log = RunLogHandler(log_dir, profile, clock)
    package_logger.addHandler(run_log)

    if not production:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(RunLogFormatter(profile, clock))
        package_logger.addHandler(console)
    return run_log
