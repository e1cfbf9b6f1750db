"""RetryEngine — the attempt-classification loop.

Each iteration checks the budget and the attempt cap, asks the driver for one
probe, then follows the outcome unless the budget or the cap ran out meanwhile:

- ``ACQUIRED``          → terminal success
- ``CONTESTED``         → reset the driver's view, probe again at once
- ``TRANSIENT_FAILURE`` → short fixed backoff, probe again without a reset
- ``FATAL_FAILURE``     → reset the driver's view (logged as unexpected)

Nothing attempt-level escapes as an exception.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from reservebot.scheduler.models import (
    AttemptOutcome,
    AttemptRecord,
    LoopResult,
    LoopState,
)

if TYPE_CHECKING:
    from reservebot.clock import Clock
    from reservebot.scheduler.driver import ActionDriver

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF = timedelta(milliseconds=100)

# Outcome → follow-up state. Every AttemptOutcome must appear here.
TRANSITIONS: dict[AttemptOutcome, LoopState] = {
    AttemptOutcome.ACQUIRED: LoopState.ACQUIRED,
    AttemptOutcome.CONTESTED: LoopState.REFRESHING,
    AttemptOutcome.TRANSIENT_FAILURE: LoopState.BACKOFF,
    AttemptOutcome.FATAL_FAILURE: LoopState.REFRESHING,
}


def classify_exception(exc: Exception) -> AttemptOutcome:
    """Map an exception escaping ``probe()`` onto an outcome."""
    if isinstance(exc, TimeoutError):
        return AttemptOutcome.TRANSIENT_FAILURE
    # Playwright's TimeoutError does not subclass the builtin one
    if type(exc).__name__ == "TimeoutError":
        return AttemptOutcome.TRANSIENT_FAILURE
    return AttemptOutcome.FATAL_FAILURE


class RetryEngine:
    """Drives probe attempts until acquisition, budget exhaustion, or the cap.

    Args:
        driver: The Action Driver performing each attempt.
        clock: Clock supplying monotonic time and sleeps.
        retry_budget: Wall-clock budget measured from the first iteration.
        max_attempts: Hard cap on attempts.
        backoff: Delay applied after a transient failure.
    """

    def __init__(
        self,
        driver: ActionDriver,
        clock: Clock,
        retry_budget: timedelta,
        max_attempts: int,
        backoff: timedelta = DEFAULT_BACKOFF,
    ) -> None:
        if retry_budget <= timedelta(0):
            msg = "retry_budget must be positive"
            raise ValueError(msg)
        if max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        self._driver = driver
        self._clock = clock
        self._budget = retry_budget.total_seconds()
        self._max_attempts = max_attempts
        self._backoff = backoff.total_seconds()
        self._state = LoopState.IDLE

    @property
    def state(self) -> LoopState:
        return self._state

    async def run(self) -> LoopResult:
        """Run the loop to a terminal state."""
        loop_start = self._clock.monotonic()
        deadline = loop_start + self._budget
        attempts = 0
        resets = 0
        backoffs = 0
        timeline: list[AttemptRecord] = []
        logger.info(
            "Retry loop started (budget=%.3fs, max_attempts=%d)", self._budget, self._max_attempts
        )

        while True:
            if self._out_of_bounds(attempts, loop_start, deadline):
                break

            attempts += 1
            self._state = LoopState.PROBING
            outcome, detail = await self._probe()
            offset = self._clock.monotonic() - loop_start
            timeline.append(AttemptRecord(attempts, outcome, offset, detail))
            logger.info("Attempt %d at +%.3fs: %s", attempts, offset, outcome.value)

            self._state = TRANSITIONS[outcome]
            if self._state is LoopState.ACQUIRED:
                break
            # No backoff or reset once the loop is over
            if self._out_of_bounds(attempts, loop_start, deadline):
                break
            if self._state is LoopState.BACKOFF:
                backoffs += 1
                logger.info("Attempt %d: target not clickable, retrying after backoff", attempts)
                await self._clock.sleep(self._backoff)
                continue

            if outcome is AttemptOutcome.FATAL_FAILURE:
                logger.warning(
                    "Attempt %d: unexpected failure (%s), refreshing view", attempts, detail
                )
            else:
                logger.info("Attempt %d: target already taken, refreshing view", attempts)
            resets += 1
            await self._reset(attempts)

        elapsed = self._clock.monotonic() - loop_start
        return LoopResult(
            state=self._state,
            attempts=attempts,
            elapsed_seconds=elapsed,
            timeline=timeline,
            resets=resets,
            backoffs=backoffs,
        )

    def _out_of_bounds(self, attempts: int, loop_start: float, deadline: float) -> bool:
        """Move to a terminal state if the budget or the attempt cap is spent."""
        now = self._clock.monotonic()
        # The first attempt always runs so a started loop reports attempts >= 1
        if attempts and now > deadline:
            self._state = LoopState.TIMED_OUT
            logger.warning(
                "Retry budget exhausted after %d attempt(s) (%.3fs)", attempts, now - loop_start
            )
            return True
        if attempts >= self._max_attempts:
            self._state = LoopState.ABORTED
            logger.warning("Attempt cap reached (%d attempt(s))", attempts)
            return True
        return False

    async def _probe(self) -> tuple[AttemptOutcome, str]:
        try:
            outcome = await self._driver.probe()
        except Exception as exc:
            outcome = classify_exception(exc)
            return outcome, f"{type(exc).__name__}: {exc}"
        if not isinstance(outcome, AttemptOutcome):
            return AttemptOutcome.FATAL_FAILURE, f"driver returned {outcome!r}"
        return outcome, ""

    async def _reset(self, attempt: int) -> None:
        try:
            await self._driver.reset_view()
        except Exception:
            # A broken view resurfaces on the next probe
            logger.exception("Attempt %d: view reset failed", attempt)
