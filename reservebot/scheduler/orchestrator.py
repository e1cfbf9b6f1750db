"""TaskOrchestrator — sequences one acquisition run end to end."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from reservebot.clock import format_timestamp
from reservebot.errors import (
    DriverCommitError,
    DriverSetupError,
    DriverTeardownError,
    InvalidScheduleError,
    StatusStoreError,
)
from reservebot.scheduler.models import TaskResult, TerminationReason
from reservebot.scheduler.retry import DEFAULT_BACKOFF, RetryEngine
from reservebot.scheduler.store import StatusRecord

if TYPE_CHECKING:
    from reservebot.clock import Clock
    from reservebot.scheduler.driver import ActionDriver
    from reservebot.scheduler.models import TaskConfig
    from reservebot.scheduler.store import StatusStore
    from reservebot.scheduler.timing import Scheduler

logger = logging.getLogger(__name__)


class TaskOrchestrator:
    """Runs validate → arm → setup → engage → retry loop → commit → teardown.

    Only setup/commit failures and the schedule check are fatal; everything
    inside the loop is resolved by the RetryEngine. Teardown and the terminal
    status write happen on every path once the task has started.

    Args:
        config: Immutable task configuration.
        driver: Action Driver for the target surface.
        scheduler: Scheduler sharing *clock*.
        store: StatusStore for the externally visible record.
        clock: Civil clock.
        backoff: Delay after a transient attempt failure.
    """

    def __init__(
        self,
        config: TaskConfig,
        driver: ActionDriver,
        scheduler: Scheduler,
        store: StatusStore,
        clock: Clock,
        backoff: timedelta = DEFAULT_BACKOFF,
    ) -> None:
        self._config = config
        self._driver = driver
        self._scheduler = scheduler
        self._store = store
        self._clock = clock
        self._backoff = backoff
        self._attempts = 0

    async def run(self) -> TaskResult:
        """Execute the task and return its result. Never raises for task failures."""
        config = self._config
        started = self._clock.monotonic()
        logger.info("Task %s started", config.task_id)

        try:
            self._scheduler.validate(config.target_instant)
        except InvalidScheduleError as exc:
            logger.error("%s", exc)
            result = TaskResult(
                succeeded=False,
                attempts=0,
                elapsed_seconds=self._clock.monotonic() - started,
                termination_reason=TerminationReason.INVALID_SCHEDULE,
                error_summary=str(exc),
            )
            await self._finish(result)
            return result

        await self._write_status(StatusRecord.running(self._clock.now()))

        try:
            result = await self._run_started(started)
        except DriverSetupError as exc:
            logger.error("Driver setup failed: %s", exc.__cause__ or exc)
            result = self._failed(started, TerminationReason.SETUP_FAILED, exc)
        except DriverCommitError as exc:
            logger.error("Final commit failed: %s", exc.__cause__ or exc)
            result = self._failed(started, TerminationReason.COMMIT_FAILED, exc, self._attempts)
        except Exception as exc:
            logger.exception("Task %s failed unexpectedly", config.task_id)
            result = self._failed(started, TerminationReason.UNEXPECTED_ERROR, exc, self._attempts)
        finally:
            try:
                await self._teardown()
            except DriverTeardownError as exc:
                logger.warning("Driver teardown failed, ignoring: %s", exc)

        result.elapsed_seconds = self._clock.monotonic() - started
        await self._finish(result)
        return result

    # -- Internal --------------------------------------------------------------

    async def _run_started(self, started: float) -> TaskResult:
        config = self._config
        arm_at = self._scheduler.compute_arm_instant(config.target_instant, config.lead_offset)
        engage_at = self._scheduler.compute_engage_instant(config.target_instant)

        await self._scheduler.suspend_until(arm_at)
        logger.info("Arm instant reached, setting up driver")
        try:
            await self._driver.setup()
        except Exception as exc:
            msg = f"{type(exc).__name__}: {exc}"
            raise DriverSetupError(msg) from exc

        await self._scheduler.suspend_until(engage_at)
        if config.flying_bias > timedelta(0):
            logger.info("Applying flying bias of %.3fs", config.flying_bias.total_seconds())
            await self._clock.sleep(config.flying_bias.total_seconds())
        logger.info("Engaging at %s", format_timestamp(self._clock.now()))

        engine = RetryEngine(
            driver=self._driver,
            clock=self._clock,
            retry_budget=config.retry_budget,
            max_attempts=config.max_attempts,
            backoff=self._backoff,
        )
        loop = await engine.run()
        self._attempts = loop.attempts

        if not loop.acquired:
            logger.warning("Acquisition loop ended without success: %s", loop.reason.value)
            return TaskResult(
                succeeded=False,
                attempts=loop.attempts,
                elapsed_seconds=self._clock.monotonic() - started,
                termination_reason=loop.reason,
                timeline=loop.timeline,
            )

        logger.info("Acquired after %d attempt(s) in %.3fs", loop.attempts, loop.elapsed_seconds)
        if config.confirm_final_step:
            try:
                await self._driver.commit_final()
            except Exception as exc:
                msg = f"{type(exc).__name__}: {exc}"
                raise DriverCommitError(msg) from exc
            logger.info("Final step committed")
        else:
            logger.info("confirm_final_step is off, stopping before the final commit")

        return TaskResult(
            succeeded=True,
            attempts=loop.attempts,
            elapsed_seconds=self._clock.monotonic() - started,
            termination_reason=TerminationReason.ACQUIRED,
            timeline=loop.timeline,
        )

    def _failed(
        self,
        started: float,
        reason: TerminationReason,
        exc: Exception,
        attempts: int = 0,
    ) -> TaskResult:
        return TaskResult(
            succeeded=False,
            attempts=attempts,
            elapsed_seconds=self._clock.monotonic() - started,
            termination_reason=reason,
            error_summary=str(exc),
        )

    async def _teardown(self) -> None:
        try:
            await self._driver.teardown()
        except Exception as exc:
            msg = f"{type(exc).__name__}: {exc}"
            raise DriverTeardownError(msg) from exc

    async def _finish(self, result: TaskResult) -> None:
        now = self._clock.now()
        if result.succeeded:
            record = StatusRecord.success(now, result.elapsed_seconds)
        else:
            record = StatusRecord.failure(now, result.status_summary(), result.elapsed_seconds)
        await self._write_status(record)
        logger.info(
            "Task %s finished: %s after %d attempt(s); total run time %.3fs (%.2f min)",
            self._config.task_id,
            "success" if result.succeeded else result.termination_reason.value,
            result.attempts,
            result.elapsed_seconds,
            result.elapsed_seconds / 60,
        )

    async def _write_status(self, record: StatusRecord) -> None:
        try:
            await self._store.write(self._config.task_id, record)
        except StatusStoreError:
            logger.exception("Status write failed for %s", self._config.task_id)
