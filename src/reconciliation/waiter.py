"""
Waiter Module.

Polls a status function until the remote object reaches a target state, a
failure state, disappears, or a timeout elapses. The poll loop is the same
tenacity loop RetryPolicy uses, with a linearly growing poll interval so that
long provisioning operations do not hammer the API.

State machine:
    Polling --(state in target, seen N times in a row)--> Succeeded
    Polling --(state in failure / permanent error)------> Failed
    Polling --(not found)--> Succeeded | Polling | Failed (per WaitSpec)
    Polling --(elapsed >= timeout)-----------------------> TimedOut
Any other state, and transient fetch errors, keep the waiter in Polling.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, FrozenSet, Iterable, Optional, Union

import tenacity

from ..config import Config
from ..utils import setup_logging
from .classifier import DEFAULT_CLASSIFIER, ErrorClassifier
from .context import Context
from .errors import ErrorKind, ReconcileTimeoutError, ResourceNotFoundError, WaitFailedError
from .retry import RetryContext, build_retrying
from .types import State

logger = setup_logging()


@dataclass(frozen=True)
class Status:
    """
    One observation of a remote object.

    Attributes:
        state: Status string reported by the API; None when the object was not found
        resource: The raw description returned alongside the state, if any
        reason: Failure reason reported by the API, if any
    """

    state: Optional[State]
    resource: Any = None
    reason: Optional[str] = None

    @classmethod
    def of(cls, value: Union["Status", State, None]) -> "Status":
        if isinstance(value, Status):
            return value
        return cls(state=value)


StatusFetcher = Callable[[], Union[Status, State, None]]


def _frozen(values: Iterable[State]) -> FrozenSet[State]:
    if isinstance(values, str):
        return frozenset([values])
    return frozenset(values)


@dataclass(frozen=True)
class WaitSpec:
    """
    What to wait for and for how long.

    ``target`` may be empty only for deletion waits (``succeed_on_not_found``).
    A state that is in none of the sets is treated like a pending state.
    """

    target: FrozenSet[State] = field(default_factory=frozenset)
    pending: FrozenSet[State] = field(default_factory=frozenset)
    failure: FrozenSet[State] = field(default_factory=frozenset)
    timeout: float = 600.0
    poll_interval: float = 5.0
    poll_increment: float = 0.0
    max_poll_interval: Optional[float] = None
    delay: float = 0.0
    not_found_checks: int = 0
    succeed_on_not_found: bool = False
    continuous_target_occurrence: int = 1
    description: str = "resource"

    def __post_init__(self) -> None:
        object.__setattr__(self, "target", _frozen(self.target))
        object.__setattr__(self, "pending", _frozen(self.pending))
        object.__setattr__(self, "failure", _frozen(self.failure))

        if self.timeout <= 0:
            raise ValueError("WaitSpec timeout must be positive")
        if self.poll_interval < 0 or self.poll_increment < 0 or self.delay < 0:
            raise ValueError("WaitSpec intervals must not be negative")
        if self.continuous_target_occurrence < 1:
            raise ValueError("continuous_target_occurrence must be at least 1")
        if self.not_found_checks < 0:
            raise ValueError("not_found_checks must not be negative")
        if not self.target and not self.succeed_on_not_found:
            raise ValueError("WaitSpec needs target states unless it waits for deletion")
        overlap = self.target & self.failure
        if overlap:
            raise ValueError(f"states cannot be both target and failure: {sorted(overlap)}")

    @classmethod
    def deleted(cls, pending: Iterable[State], **kwargs: Any) -> "WaitSpec":
        """Spec for waiting until the object is gone."""
        return cls(target=frozenset(), pending=_frozen(pending), succeed_on_not_found=True, **kwargs)

    @classmethod
    def from_config(cls, config: Config, target: Iterable[State], **kwargs: Any) -> "WaitSpec":
        """Spec using the configured timeout and poll interval defaults."""
        settings = {
            "timeout": config.wait_timeout_seconds,
            "poll_interval": config.wait_poll_interval_seconds,
            "poll_increment": config.wait_poll_increment_seconds,
            "max_poll_interval": config.wait_max_poll_interval_seconds,
        }
        settings.update(kwargs)
        return cls(target=_frozen(target), **settings)

    def wait_strategy(self) -> tenacity.wait.wait_base:
        if self.max_poll_interval is not None:
            ceiling = self.max_poll_interval
        elif self.poll_increment == 0:
            ceiling = self.poll_interval
        else:
            ceiling = float("inf")
        return tenacity.wait_incrementing(start=self.poll_interval, increment=self.poll_increment, max=ceiling)


@dataclass(frozen=True)
class WaitResult:
    """Outcome of a successful wait."""

    state: Optional[State]
    resource: Any
    polls: int
    elapsed: float


@dataclass
class _Observation:
    done: bool
    status: Status


class Waiter:
    """Runs WaitSpecs against status functions."""

    def __init__(self, classifier: Optional[ErrorClassifier] = None) -> None:
        self.classifier = classifier or DEFAULT_CLASSIFIER

    def wait_for(self, spec: WaitSpec, fetch_status: StatusFetcher, context: Optional[Context] = None) -> WaitResult:
        """
        Block until ``spec`` resolves.

        Args:
            spec: States, timeout and poll interval
            fetch_status: Returns the current state, a Status, or None when the
                object does not exist; may raise remote errors
            context: Invocation context (clock, sleep, cancellation)

        Returns:
            WaitResult describing the final observation

        Raises:
            WaitFailedError: A failure state was reached or fetching failed permanently
            ResourceNotFoundError: The object disappeared and the spec does not allow it
            ReconcileTimeoutError: The timeout elapsed, or the context was cancelled
        """
        context = context or Context()
        retry_context = RetryContext(context.clock)
        counters = {"not_found": 0, "target": 0}
        last = {"status": Status(state=None), "error": None}

        if spec.delay > 0:
            context.sleep(spec.delay)

        def observe(status: Status) -> _Observation:
            last["status"] = status
            state = status.state

            if state is None:
                counters["target"] = 0
                counters["not_found"] += 1
                if spec.succeed_on_not_found:
                    return _Observation(True, status)
                if counters["not_found"] > spec.not_found_checks:
                    raise ResourceNotFoundError(
                        f"{spec.description} not found while waiting for {sorted(spec.target)}",
                        last_error=last["error"],
                    )
                return _Observation(False, status)

            counters["not_found"] = 0

            if state in spec.failure:
                counters["target"] = 0
                message = f"{spec.description} reached failure state {state}"
                if status.reason:
                    message = f"{message}: {status.reason}"
                raise WaitFailedError(message, state=state, reason=status.reason)

            if state in spec.target:
                counters["target"] += 1
                return _Observation(counters["target"] >= spec.continuous_target_occurrence, status)

            counters["target"] = 0
            if spec.pending and state not in spec.pending:
                logger.debug(f"{spec.description} reported unexpected state {state}; still waiting")
            return _Observation(False, status)

        def poll() -> _Observation:
            retry_context.record_attempt()
            try:
                raw = fetch_status()
            except Exception as err:
                kind = self.classifier.classify(err)
                last["error"] = err
                if kind is ErrorKind.NOT_FOUND:
                    return observe(Status(state=None))
                if kind.is_transient:
                    logger.debug(f"Transient error polling {spec.description}: {err}")
                    raise
                raise WaitFailedError(f"error waiting for {spec.description}: {err}", reason=str(err)) from err
            last["error"] = None
            observation = observe(Status.of(raw))
            logger.debug(f"Waiting for {spec.description}: state={observation.status.state}")
            return observation

        def transient(exc: BaseException) -> bool:
            if isinstance(exc, (WaitFailedError, ResourceNotFoundError, ReconcileTimeoutError)):
                return False
            return self.classifier.is_retryable(exc)

        retrying = build_retrying(
            context,
            retry_context,
            spec.timeout,
            wait=spec.wait_strategy(),
            retry=tenacity.retry_if_exception(transient) | tenacity.retry_if_result(lambda obs: not obs.done),
        )

        try:
            observation = retrying(poll)
        except tenacity.RetryError:
            state = last["status"].state
            raise ReconcileTimeoutError(
                f"timeout while waiting for {spec.description} to become {sorted(spec.target) or 'deleted'} "
                f"(last state: {state or 'not found'}, timeout: {spec.timeout}s)",
                last_state=state,
                last_error=last["error"],
            )

        return WaitResult(
            state=observation.status.state,
            resource=observation.status.resource,
            polls=retry_context.attempts,
            elapsed=retry_context.elapsed(),
        )


def wait_for(spec: WaitSpec, fetch_status: StatusFetcher, context: Optional[Context] = None) -> WaitResult:
    """Wait using the default classifier."""
    return Waiter().wait_for(spec, fetch_status, context)
