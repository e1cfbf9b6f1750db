"""Scheduler — computes the arm/engage instants and suspends until them."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from reservebot.clock import format_timestamp
from reservebot.errors import InvalidScheduleError

if TYPE_CHECKING:
    from reservebot.clock import Clock

logger = logging.getLogger(__name__)

# Longest single sleep; long waits are re-evaluated against the wall clock
_MAX_SLEEP_CHUNK_SECONDS = 30.0


class Scheduler:
    """Timing computations for a single acquisition run.

    Args:
        clock: Civil clock used for every "now".
        engage_lead: Short offset before the target instant at which the
            contested step is armed.
    """

    def __init__(self, clock: Clock, engage_lead: timedelta = timedelta(seconds=1)) -> None:
        if engage_lead < timedelta(0):
            msg = "engage_lead must not be negative"
            raise ValueError(msg)
        self._clock = clock
        self._engage_lead = engage_lead

    @property
    def engage_lead(self) -> timedelta:
        return self._engage_lead

    def validate(self, target_instant: datetime) -> None:
        """Raise InvalidScheduleError unless *target_instant* is strictly in the future."""
        now = self._clock.now()
        if target_instant <= now:
            msg = (
                f"Target instant {format_timestamp(self._clock.localize(target_instant))} "
                f"is not after now ({format_timestamp(now)})"
            )
            raise InvalidScheduleError(msg)

    def compute_arm_instant(self, target_instant: datetime, lead_offset: timedelta) -> datetime:
        return target_instant - lead_offset

    def compute_engage_instant(self, target_instant: datetime) -> datetime:
        return target_instant - self._engage_lead

    async def suspend_until(self, instant: datetime) -> None:
        """Wait until the clock reaches *instant*. Past instants return immediately."""
        remaining = (instant - self._clock.now()).total_seconds()
        if remaining <= 0:
            return

        logger.info(
            "Waiting until %s (%.3fs)",
            format_timestamp(self._clock.localize(instant)),
            remaining,
        )
        while remaining > 0:
            await self._clock.sleep(min(remaining, _MAX_SLEEP_CHUNK_SECONDS))
            remaining = (instant - self._clock.now()).total_seconds()
