"""
Retry Policy Module.

Bounded, classifier-driven retries for remote calls. Transient failures are
retried with capped exponential backoff until a timeout elapses. Exactly one
attempt runs at or after the deadline and its outcome is returned verbatim, so a
real error is never hidden behind a generic timeout.

Implementation: tenacity drives the loop. Time is measured against the
invocation Context's clock and every sleep goes through Context.sleep, which is
what makes cancellation and fake clocks work.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

import tenacity
from tenacity.retry import retry_base
from tenacity.wait import wait_base

from ..config import Config
from ..utils import setup_logging
from .classifier import DEFAULT_CLASSIFIER, ErrorClassifier
from .context import Clock, Context
from .errors import ReconcileTimeoutError

logger = setup_logging()

T = TypeVar("T")


class RetryContext:
    """
    Attempt counter and elapsed-time tracker for one logical operation.

    Created at the start of a RetryPolicy.run or Waiter.wait_for call and
    discarded when that call returns.
    """

    def __init__(self, clock: Clock) -> None:
        self.clock = clock
        self.started_at = clock()
        self.attempts = 0
        self.last_attempt_at = self.started_at

    def record_attempt(self) -> None:
        self.attempts += 1
        self.last_attempt_at = self.clock()

    def elapsed(self) -> float:
        return self.clock() - self.started_at

    def remaining(self, timeout: float) -> float:
        return max(0.0, timeout - self.elapsed())


def stop_after_elapsed(retry_context: RetryContext, timeout: float) -> Callable[[tenacity.RetryCallState], bool]:
    """Tenacity stop condition measured on the context clock."""

    def stop(retry_state: tenacity.RetryCallState) -> bool:
        return retry_context.elapsed() >= timeout

    return stop


def wait_within(wait: wait_base, retry_context: RetryContext, timeout: float) -> Callable[[tenacity.RetryCallState], float]:
    """Clip a tenacity wait strategy so no single sleep overshoots the timeout."""

    def clipped(retry_state: tenacity.RetryCallState) -> float:
        return min(wait(retry_state), retry_context.remaining(timeout))

    return clipped


def build_retrying(
    context: Context,
    retry_context: RetryContext,
    timeout: float,
    wait: wait_base,
    retry: retry_base,
    before_sleep: Optional[Callable[[tenacity.RetryCallState], None]] = None,
) -> tenacity.Retrying:
    """
    Build the tenacity loop shared by RetryPolicy and Waiter.

    The loop never re-raises on exhaustion: callers receive tenacity.RetryError
    and decide what a timeout means for them.
    """
    return tenacity.Retrying(
        stop=stop_after_elapsed(retry_context, timeout),
        wait=wait_within(wait, retry_context, timeout),
        retry=retry,
        sleep=context.sleep,
        before_sleep=before_sleep,
        reraise=False,
    )


@dataclass
class RetryPolicy:
    """
    Configuration for retrying a single remote call.

    Attributes:
        timeout: Seconds to keep retrying transient failures
        base_delay: Delay before the second attempt
        max_delay: Upper bound on any single backoff delay
        jitter: Maximum random seconds added to each delay
        classifier: Decides which errors are transient
    """

    timeout: float = 180.0
    base_delay: float = 0.5
    max_delay: float = 10.0
    jitter: float = 0.5
    classifier: ErrorClassifier = field(default=DEFAULT_CLASSIFIER, repr=False)

    @classmethod
    def from_config(cls, config: Config, classifier: Optional[ErrorClassifier] = None) -> "RetryPolicy":
        return cls(
            timeout=config.retry_timeout_seconds,
            base_delay=config.retry_base_delay_seconds,
            max_delay=config.retry_max_delay_seconds,
            jitter=config.retry_jitter_seconds,
            classifier=classifier or DEFAULT_CLASSIFIER,
        )

    def with_timeout(self, timeout: float) -> "RetryPolicy":
        return RetryPolicy(
            timeout=timeout,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
            classifier=self.classifier,
        )

    def should_retry(self, exc: BaseException) -> bool:
        if isinstance(exc, ReconcileTimeoutError):
            return False
        return self.classifier.is_retryable(exc)

    def wait_strategy(self) -> wait_base:
        # min(base_delay * 2^attempt, max_delay) + U(0, jitter)
        return tenacity.wait_exponential(multiplier=self.base_delay, max=self.max_delay) + tenacity.wait_random(0, self.jitter)

    def run(self, fn: Callable[[], T], context: Optional[Context] = None, operation: str = "operation") -> T:
        """
        Execute ``fn`` with retry logic.

        Args:
            fn: Zero-argument callable performing the remote call
            context: Invocation context (clock, sleep, cancellation)
            operation: Name used in log messages

        Returns:
            Whatever ``fn`` returns on its first successful attempt

        Raises:
            Exception: The first non-transient error raised by ``fn``, or the
                outcome of the final attempt after the timeout
            ReconcileTimeoutError: If the context is cancelled during a backoff sleep
        """
        context = context or Context()
        retry_context = RetryContext(context.clock)

        def attempt() -> T:
            retry_context.record_attempt()
            return fn()

        def before_sleep(retry_state: tenacity.RetryCallState) -> None:
            exception = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"{operation} attempt {retry_context.attempts} failed: {exception}. Retrying in {delay:.1f}s..."
            )

        retrying = build_retrying(
            context,
            retry_context,
            self.timeout,
            wait=self.wait_strategy(),
            retry=tenacity.retry_if_exception(self.should_retry),
            before_sleep=before_sleep,
        )

        try:
            return retrying(attempt)
        except tenacity.RetryError as e:
            last_error = e.last_attempt.exception()
            if retry_context.last_attempt_at - retry_context.started_at >= self.timeout:
                # The last attempt already ran at the deadline; it is the final one.
                logger.warning(f"{operation} timed out after {retry_context.attempts} attempts: {last_error}")
                e.reraise()
            logger.warning(
                f"{operation} still failing after {retry_context.elapsed():.1f}s "
                f"({retry_context.attempts} attempts): {last_error}. Making one final attempt"
            )
            return attempt()
