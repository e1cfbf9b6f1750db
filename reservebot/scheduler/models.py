"""Core data model: task configuration, attempt outcomes, and task results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum


class AttemptOutcome(str, Enum):
    """What the Action Driver observed on one probe/attempt cycle."""

    ACQUIRED = "acquired"
    CONTESTED = "contested"
    TRANSIENT_FAILURE = "transient_failure"
    FATAL_FAILURE = "fatal_failure"


class LoopState(str, Enum):
    """States of the retry engine."""

    IDLE = "idle"
    PROBING = "probing"
    REFRESHING = "refreshing"
    BACKOFF = "backoff"
    ACQUIRED = "acquired"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({LoopState.ACQUIRED, LoopState.TIMED_OUT, LoopState.ABORTED})


class TerminationReason(str, Enum):
    """Why a task ended. The value doubles as the status-record summary."""

    ACQUIRED = "acquired"
    RETRY_BUDGET_EXHAUSTED = "retry budget exhausted"
    ATTEMPT_CAP_REACHED = "attempt cap reached"
    INVALID_SCHEDULE = "invalid schedule"
    INVALID_CONFIG = "invalid configuration"
    SETUP_FAILED = "driver setup failed"
    COMMIT_FAILED = "final commit failed"
    UNEXPECTED_ERROR = "unexpected error"


@dataclass(frozen=True)
class TaskConfig:
    """Immutable configuration for one acquisition run.

    Attributes:
        task_id: Opaque identifier used for the status record and log lines.
        target_instant: Aware civil instant at which the window opens.
        lead_offset: How long before ``target_instant`` setup must be done.
        flying_bias: Extra delay after the engage instant before the first
            attempt; may be zero.
        confirm_final_step: When False the run stops short of the
            irreversible commit (dry run).
        retry_budget: Wall-clock budget for the attempt loop, measured from
            its first iteration.
        max_attempts: Hard cap on the number of attempts.
    """

    task_id: str
    target_instant: datetime
    lead_offset: timedelta = timedelta(minutes=2)
    flying_bias: timedelta = timedelta(0)
    confirm_final_step: bool = False
    retry_budget: timedelta = timedelta(seconds=60)
    max_attempts: int = 1_000_000

    def __post_init__(self) -> None:
        if self.target_instant.tzinfo is None:
            msg = "target_instant must be timezone-aware"
            raise ValueError(msg)
        if self.lead_offset <= timedelta(0):
            msg = "lead_offset must be positive"
            raise ValueError(msg)
        if self.flying_bias < timedelta(0):
            msg = "flying_bias must not be negative"
            raise ValueError(msg)
        if self.retry_budget <= timedelta(0):
            msg = "retry_budget must be positive"
            raise ValueError(msg)
        if self.max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)


@dataclass(frozen=True)
class AttemptRecord:
    """One line of the attempt timeline."""

    attempt: int
    outcome: AttemptOutcome
    offset_seconds: float
    detail: str = ""


@dataclass
class LoopResult:
    """Terminal state of the retry engine."""

    state: LoopState
    attempts: int
    elapsed_seconds: float
    timeline: list[AttemptRecord] = field(default_factory=list)
    resets: int = 0
    backoffs: int = 0

    @property
    def acquired(self) -> bool:
        return self.state is LoopState.ACQUIRED

    @property
    def reason(self) -> TerminationReason:
        if self.state is LoopState.ACQUIRED:
            return TerminationReason.ACQUIRED
        if self.state is LoopState.TIMED_OUT:
            return TerminationReason.RETRY_BUDGET_EXHAUSTED
        return TerminationReason.ATTEMPT_CAP_REACHED


@dataclass
class TaskResult:
    """Outcome of a whole task run."""

    succeeded: bool
    attempts: int
    elapsed_seconds: float
    termination_reason: TerminationReason
    error_summary: str | None = None
    timeline: list[AttemptRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.succeeded and self.termination_reason is not TerminationReason.ACQUIRED:
            msg = "a successful result must terminate with ACQUIRED"
            raise ValueError(msg)

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def status_summary(self) -> str:
        """One-line failure summary for the status record."""
        if self.error_summary:
            return f"{self.termination_reason.value}: {self.error_summary}"
        return self.termination_reason.value
