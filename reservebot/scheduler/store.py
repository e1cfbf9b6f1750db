"""StatusStore — aiosqlite-backed, externally pollable status record per task."""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import aiosqlite

from reservebot.clock import format_timestamp
from reservebot.errors import StatusStoreError

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS task_status (
    task_id TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

_UPSERT = """
INSERT INTO task_status (task_id, value, updated_at) VALUES (?, ?, ?)
ON CONFLICT(task_id) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
"""

_ELAPSED_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")
# Characters that would break the "<ts>@<Phase>#<summary>#<elapsed>s" layout
_RESERVED_RE = re.compile(r"[@#\r\n]+")


class Phase(str, Enum):
    RUNNING = "Running"
    SUCCESS = "Success"
    FAILURE = "Failure"


@dataclass(frozen=True)
class StatusRecord:
    """A parsed status value: ``"<timestamp>@<Phase>[#<summary>][#<elapsed>s]"``."""

    timestamp: str
    phase: Phase
    detail: str | None = None
    elapsed_seconds: float | None = None

    @classmethod
    def running(cls, at: datetime) -> StatusRecord:
        return cls(format_timestamp(at), Phase.RUNNING)

    @classmethod
    def success(cls, at: datetime, elapsed_seconds: float) -> StatusRecord:
        return cls(format_timestamp(at), Phase.SUCCESS, elapsed_seconds=elapsed_seconds)

    @classmethod
    def failure(cls, at: datetime, summary: str, elapsed_seconds: float | None) -> StatusRecord:
        return cls(format_timestamp(at), Phase.FAILURE, summary, elapsed_seconds)

    def render(self) -> str:
        value = f"{self.timestamp}@{self.phase.value}"
        if self.detail:
            detail = self.detail.encode("utf-8", "backslashreplace").decode("utf-8")
            value += "#" + " ".join(_RESERVED_RE.sub(" ", detail).split())
        if self.elapsed_seconds is not None:
            value += f"#{max(self.elapsed_seconds, 0.0):.3f}s"
        return value

    @classmethod
    def parse(cls, value: str) -> StatusRecord:
        """Parse a rendered status value.

        Raises:
            ValueError: If *value* does not follow the status layout.
        """
        timestamp, sep, rest = value.partition("@")
        if not sep or not rest:
            msg = f"Not a status value: {value!r}"
            raise ValueError(msg)
        parts = rest.split("#")
        phase = Phase(parts[0])
        elapsed = None
        if len(parts) > 1:
            match = _ELAPSED_RE.match(parts[-1])
            if match:
                elapsed = float(match.group(1))
                parts = parts[:-1]
        detail = "#".join(parts[1:]) or None
        return cls(timestamp, phase, detail, elapsed)


class StatusStore:
    """Persists one status record per task id in SQLite.

    Each write replaces the whole record in a single statement, so pollers
    never see a mix of old and new content. Pass an explicit *db_path* for
    test isolation (e.g. ``tmp_path / "status.db"``).
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    # -- Public API ------------------------------------------------------------

    async def write(self, task_id: str, record: StatusRecord) -> None:
        """Overwrite the record for *task_id*."""
        value = record.render()
        try:
            db = await self._connect()
            try:
                await db.execute(_UPSERT, (task_id, value, record.timestamp))
                await db.commit()
            finally:
                await db.close()
        except (OSError, sqlite3.Error, UnicodeError) as exc:
            msg = f"Cannot write status for {task_id}: {exc}"
            raise StatusStoreError(msg) from exc
        logger.debug("Status %s = %s", task_id, value)

    async def read_value(self, task_id: str) -> str | None:
        """Return the raw status value, or None if the task never started."""
        if not self._db_path.exists():
            return None
        try:
            db = await self._connect()
            try:
                cursor = await db.execute(
                    "SELECT value FROM task_status WHERE task_id = ?", (task_id,)
                )
                row = await cursor.fetchone()
            finally:
                await db.close()
        except (OSError, sqlite3.Error, UnicodeError) as exc:
            msg = f"Cannot read status for {task_id}: {exc}"
            raise StatusStoreError(msg) from exc
        return row[0] if row else None

    async def read(self, task_id: str) -> StatusRecord | None:
        value = await self.read_value(task_id)
        return StatusRecord.parse(value) if value is not None else None
