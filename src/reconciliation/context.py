"""
Invocation context for engine calls.

A Context is an immutable value handed to every Reconciler, RetryPolicy and
Waiter call. It carries read-only configuration plus the time source, the sleep
function and the cancellation signal, so there is no provider-level global state
and tests can substitute a fake clock.
"""

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from ..config import Config
from .errors import ReconcileTimeoutError

Clock = Callable[[], float]
Sleeper = Callable[[float], None]


@dataclass(frozen=True)
class Context:
    """
    Read-only configuration and control signals for one or more engine calls.

    Attributes:
        region: AWS region the caller's clients target (informational)
        partition: AWS partition, e.g. ``aws`` or ``aws-us-gov``
        clock: Monotonic time source in seconds
        sleeper: Sleep function; when None, sleeps wait on ``cancel_event`` so
            that cancellation interrupts them immediately
        cancel_event: Set by the caller to abort any in-progress sleep
        deadline: Absolute ``clock()`` value after which sleeps abort
    """

    region: Optional[str] = None
    partition: str = "aws"
    clock: Clock = time.monotonic
    sleeper: Optional[Sleeper] = None
    cancel_event: threading.Event = field(default_factory=threading.Event, compare=False)
    deadline: Optional[float] = None

    @classmethod
    def from_config(cls, config: Config, **overrides: object) -> "Context":
        """Build a context from the loaded configuration."""
        return cls(region=config.aws_region, partition=config.aws_partition, **overrides)  # type: ignore[arg-type]

    def with_timeout(self, seconds: float) -> "Context":
        """Return a copy whose deadline is ``seconds`` from now (never later than the current one)."""
        deadline = self.clock() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return replace(self, deadline=deadline)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        if self.cancel_event.is_set():
            return True
        return self.deadline is not None and self.clock() >= self.deadline

    def sleep(self, seconds: float) -> None:
        """
        Sleep for up to ``seconds``, honouring cancellation.

        Raises:
            ReconcileTimeoutError: If the context is cancelled or its deadline
                passes before or during the sleep
        """
        if self.cancelled:
            raise ReconcileTimeoutError("operation cancelled", cancelled=True)

        if self.deadline is not None:
            seconds = min(seconds, max(0.0, self.deadline - self.clock()))

        if self.sleeper is None:
            interrupted = self.cancel_event.wait(max(0.0, seconds))
        else:
            self.sleeper(max(0.0, seconds))
            interrupted = self.cancel_event.is_set()

        if interrupted or self.cancelled:
            raise ReconcileTimeoutError("operation cancelled", cancelled=True)
