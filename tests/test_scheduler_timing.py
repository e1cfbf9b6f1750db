"""Tests for Scheduler — instants, validation, and suspend_until."""

from __future__ import annotations

import time
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from conftest import FakeClock

from reservebot.clock import Clock
from reservebot.errors import InvalidScheduleError
from reservebot.scheduler.timing import Scheduler


@pytest.fixture
def scheduler(fake_clock: FakeClock) -> Scheduler:
    return Scheduler(fake_clock, engage_lead=timedelta(seconds=1))


# -- Instants ------------------------------------------------------------------


def test_compute_arm_instant(scheduler: Scheduler, fake_clock: FakeClock) -> None:
    target = fake_clock.now() + timedelta(minutes=10)
    assert scheduler.compute_arm_instant(target, timedelta(minutes=2)) == target - timedelta(
        minutes=2
    )


def test_compute_engage_instant(scheduler: Scheduler, fake_clock: FakeClock) -> None:
    target = fake_clock.now() + timedelta(minutes=10)
    assert scheduler.compute_engage_instant(target) == target - timedelta(seconds=1)


def test_negative_engage_lead_rejected(fake_clock: FakeClock) -> None:
    with pytest.raises(ValueError, match="engage_lead"):
        Scheduler(fake_clock, engage_lead=timedelta(seconds=-1))


# -- validate ------------------------------------------------------------------


def test_validate_accepts_future(scheduler: Scheduler, fake_clock: FakeClock) -> None:
    scheduler.validate(fake_clock.now() + timedelta(milliseconds=1))


def test_validate_rejects_now(scheduler: Scheduler, fake_clock: FakeClock) -> None:
    with pytest.raises(InvalidScheduleError, match="not after now"):
        scheduler.validate(fake_clock.now())


def test_validate_rejects_past(scheduler: Scheduler, fake_clock: FakeClock) -> None:
    with pytest.raises(InvalidScheduleError):
        scheduler.validate(fake_clock.now() - timedelta(hours=1))


# -- suspend_until (fake clock) --------------------------------------------------


async def test_suspend_until_past_does_not_sleep(
    scheduler: Scheduler, fake_clock: FakeClock
) -> None:
    await scheduler.suspend_until(fake_clock.now() - timedelta(seconds=5))
    assert fake_clock.sleeps == []


async def test_suspend_until_now_does_not_sleep(
    scheduler: Scheduler, fake_clock: FakeClock
) -> None:
    await scheduler.suspend_until(fake_clock.now())
    assert fake_clock.sleeps == []


async def test_suspend_until_long_wait_is_chunked(
    scheduler: Scheduler, fake_clock: FakeClock
) -> None:
    target = fake_clock.now() + timedelta(seconds=95)
    await scheduler.suspend_until(target)

    assert fake_clock.now() >= target
    assert sum(fake_clock.sleeps) == pytest.approx(95)
    assert max(fake_clock.sleeps) <= 30


# -- suspend_until (real clock) --------------------------------------------------


async def test_suspend_until_real_future_instant() -> None:
    clock = Clock("Asia/Tokyo")
    scheduler = Scheduler(clock)
    target = clock.now() + timedelta(milliseconds=200)

    await scheduler.suspend_until(target)

    woke = clock.now()
    assert woke >= target
    assert (woke - target).total_seconds() <= 0.05


async def test_suspend_until_real_past_instant_returns_immediately() -> None:
    clock = Clock("Asia/Tokyo")
    clock.sleep = AsyncMock()  # type: ignore[method-assign]
    scheduler = Scheduler(clock)

    started = time.monotonic()
    await scheduler.suspend_until(clock.now() - timedelta(seconds=1))

    assert time.monotonic() - started < 0.005
    clock.sleep.assert_not_called()
