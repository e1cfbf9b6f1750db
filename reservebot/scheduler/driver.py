"""Action Driver capability — the concrete interaction with the target surface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from reservebot.scheduler.models import AttemptOutcome


class ActionDriver(ABC):
    """Abstract base for drivers consumed by the orchestrator and retry engine.

    Every method must carry its own bounded timeout; the core cannot preempt
    a stuck call.

    Example::

        class MyDriver(ActionDriver):
            async def setup(self) -> None: ...
            async def probe(self) -> AttemptOutcome:
                return AttemptOutcome.CONTESTED
            async def reset_view(self) -> None: ...
            async def commit_final(self) -> None: ...
            async def teardown(self) -> None: ...
    """

    @abstractmethod
    async def setup(self) -> None:
        """Establish the session up to the step just before the contested one."""

    @abstractmethod
    async def probe(self) -> AttemptOutcome:
        """Perform one probe/attempt cycle and classify what happened."""

    @abstractmethod
    async def reset_view(self) -> None:
        """Return to a consistent baseline and re-arm for the next cycle."""

    @abstractmethod
    async def commit_final(self) -> None:
        """Perform the irreversible final commit."""

    @abstractmethod
    async def teardown(self) -> None:
        """Release resources. Best effort."""
