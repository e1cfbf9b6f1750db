"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import logging
import zoneinfo
from datetime import datetime, timedelta

import pytest

from reservebot.scheduler.driver import ActionDriver
from reservebot.scheduler.models import AttemptOutcome, TaskConfig
from reservebot.scheduler.store import StatusStore

TOKYO = zoneinfo.ZoneInfo("Asia/Tokyo")


class FakeClock:
    """Deterministic clock: time only moves when something sleeps or advances it."""

    def __init__(self, start: datetime | None = None) -> None:
        self._start = start or datetime(2025, 10, 22, 11, 40, 0, tzinfo=TOKYO)
        self._offset = 0.0
        self.sleeps: list[float] = []

    @property
    def tz(self) -> zoneinfo.ZoneInfo:
        return TOKYO

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._offset)

    def monotonic(self) -> float:
        return self._offset

    def advance(self, seconds: float) -> None:
        self._offset += seconds

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            return
        self.sleeps.append(seconds)
        self._offset += seconds
        await asyncio.sleep(0)

    def localize(self, dt: datetime) -> datetime:
        if dt.tzinfo is None:
            return dt.replace(tzinfo=TOKYO)
        return dt.astimezone(TOKYO)


class ScriptedDriver(ActionDriver):
    """Action Driver that replays a script of outcomes (or exceptions).

    The last scripted item repeats once the script runs out. Each probe
    advances *clock* by *probe_cost* seconds when a FakeClock is given.
    """

    def __init__(
        self,
        script: list[AttemptOutcome | Exception],
        clock: FakeClock | None = None,
        probe_cost: float = 0.0,
    ) -> None:
        self._script = list(script)
        self._clock = clock
        self._probe_cost = probe_cost
        self.calls: list[str] = []
        self.probe_times: list[float] = []
        self.setup_at: datetime | None = None
        self.first_probe_at: datetime | None = None
        self.setup_error: Exception | None = None
        self.commit_error: Exception | None = None
        self.teardown_error: Exception | None = None
        self.reset_error: Exception | None = None

    @property
    def reset_count(self) -> int:
        return self.calls.count("reset_view")

    @property
    def probe_count(self) -> int:
        return self.calls.count("probe")

    async def setup(self) -> None:
        self.calls.append("setup")
        if self._clock is not None:
            self.setup_at = self._clock.now()
        if self.setup_error is not None:
            raise self.setup_error

    async def probe(self) -> AttemptOutcome:
        self.calls.append("probe")
        if self._clock is not None:
            if self.first_probe_at is None:
                self.first_probe_at = self._clock.now()
            self.probe_times.append(self._clock.monotonic())
            self._clock.advance(self._probe_cost)
        elif self._probe_cost:
            await asyncio.sleep(self._probe_cost)
        item = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def reset_view(self) -> None:
        self.calls.append("reset_view")
        if self.reset_error is not None:
            raise self.reset_error

    async def commit_final(self) -> None:
        self.calls.append("commit_final")
        if self.commit_error is not None:
            raise self.commit_error

    async def teardown(self) -> None:
        self.calls.append("teardown")
        if self.teardown_error is not None:
            raise self.teardown_error


class RecordingStore(StatusStore):
    """StatusStore that also keeps every rendered value it wrote."""

    def __init__(self, db_path) -> None:
        super().__init__(db_path)
        self.history: list[str] = []

    async def write(self, task_id, record) -> None:
        self.history.append(record.render())
        await super().write(task_id, record)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def status_store(tmp_path) -> RecordingStore:
    return RecordingStore(tmp_path / "status.db")


def make_config(clock: FakeClock, **overrides) -> TaskConfig:
    """TaskConfig whose target is ten minutes after *clock*'s now."""
    defaults = {
        "task_id": "test",
        "target_instant": clock.now() + timedelta(minutes=10),
        "lead_offset": timedelta(minutes=2),
        "flying_bias": timedelta(seconds=0.5),
        "confirm_final_step": True,
        "retry_budget": timedelta(seconds=60),
        "max_attempts": 1000,
    }
    defaults.update(overrides)
    return TaskConfig(**defaults)


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Drop handlers installed by configure_logging so they don't leak across tests."""
    package_logger = logging.getLogger("reservebot")
    level = package_logger.level
    yield
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(level)
