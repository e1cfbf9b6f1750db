"""Timed acquisition core: scheduling, the retry loop, status records, orchestration."""

from reservebot.scheduler.driver import ActionDriver
from reservebot.scheduler.models import (
    AttemptOutcome,
    LoopState,
    TaskConfig,
    TaskResult,
    TerminationReason,
)
from reservebot.scheduler.orchestrator import TaskOrchestrator
from reservebot.scheduler.retry import RetryEngine
from reservebot.scheduler.store import StatusRecord, StatusStore
from reservebot.scheduler.timing import Scheduler

__all__ = [
    "ActionDriver",
    "AttemptOutcome",
    "LoopState",
    "RetryEngine",
    "Scheduler",
    "StatusRecord",
    "StatusStore",
    "TaskConfig",
    "TaskOrchestrator",
    "TaskResult",
    "TerminationReason",
]
