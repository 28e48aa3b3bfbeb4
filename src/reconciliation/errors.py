"""
Error taxonomy for the reconciliation engine.

Every failure the engine raises carries an ErrorKind. Remote failures are tagged
once, at the adapter boundary, and the tag travels with the exception from then
on: retry loops and waiters read ``err.kind`` and never look at the raw message.
"""

from enum import Enum
from typing import Any, List, Optional


class ErrorKind(Enum):
    """Classification of a failure."""

    NOT_FOUND = "not_found"
    RETRYABLE = "retryable"
    CONFLICT = "conflict"
    PERMANENT = "permanent"
    TIMED_OUT = "timed_out"

    @property
    def is_transient(self) -> bool:
        """True when repeating the same call could plausibly succeed."""
        return self in (ErrorKind.RETRYABLE, ErrorKind.CONFLICT)


class ReconcileError(Exception):
    """Base class for all errors raised by the engine."""

    kind = ErrorKind.PERMANENT


class RemoteError(ReconcileError):
    """
    A remote API failure that has already been classified.

    Args:
        message: Human readable error message
        kind: Classification decided by the ErrorClassifier
        code: Provider error code (e.g. ``InvalidParameterValue``)
        http_status: HTTP status code of the failed call, if known
        operation: Name of the remote operation that failed
        cause: The raw provider exception
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.PERMANENT,
        code: str = "",
        http_status: Optional[int] = None,
        operation: str = "",
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.code = code
        self.http_status = http_status
        self.operation = operation
        self.cause = cause

    def __str__(self) -> str:
        prefix = f"{self.code}: " if self.code else ""
        if self.operation:
            return f"{self.operation} failed: {prefix}{self.message}"
        return f"{prefix}{self.message}"


class ReconcileTimeoutError(ReconcileError):
    """
    A blocking engine call ran out of time or was cancelled.

    This is deliberately distinct from a permanent failure: the remote object
    may still converge, so callers should re-read state rather than assume the
    object is broken.
    """

    kind = ErrorKind.TIMED_OUT

    def __init__(
        self,
        message: str,
        last_state: Optional[str] = None,
        cancelled: bool = False,
        last_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.last_state = last_state
        self.cancelled = cancelled
        self.last_error = last_error


class WaitFailedError(ReconcileError):
    """The waited-on object reached a failure state or a permanent error."""

    def __init__(self, message: str, state: Optional[str] = None, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.state = state
        self.reason = reason


class ResourceNotFoundError(ReconcileError):
    """The remote object does not exist (or no longer exists)."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, last_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class PartialCreateError(ReconcileError):
    """
    The create call succeeded but the object did not converge.

    ``resource_id`` is always set so the caller can persist it and clean up or
    import the object later instead of leaking it.
    """

    def __init__(self, resource_id: str, cause: BaseException) -> None:
        super().__init__(f"resource {resource_id} was created but did not become ready: {cause}")
        self.resource_id = resource_id
        self.cause = cause
        self.kind = getattr(cause, "kind", ErrorKind.PERMANENT)


class BatchApplyError(ReconcileError):
    """
    Applying one batch of an update failed.

    Batches before ``batch_index`` were applied and stay applied.
    """

    def __init__(self, batch_index: int, applied: int, cause: BaseException) -> None:
        super().__init__(f"error applying batch {batch_index + 1} ({applied} batch(es) already applied): {cause}")
        self.batch_index = batch_index
        self.applied = applied
        self.cause = cause
        self.kind = getattr(cause, "kind", ErrorKind.PERMANENT)


class WorkaroundError(ReconcileError):
    """A removal workaround was attempted and failed."""

    def __init__(self, key: str, step: str, cause: BaseException) -> None:
        super().__init__(f"error attempting {key} workaround ({step}): {cause}")
        self.key = key
        self.step = step
        self.cause = cause


class CompositeIdError(ReconcileError, ValueError):
    """A composite identifier could not be encoded or decoded."""

    def __init__(self, message: str, parts: Optional[List[Any]] = None) -> None:
        super().__init__(message)
        self.parts = parts


def error_kind(err: BaseException) -> Optional[ErrorKind]:
    """Return the kind tag carried by an engine error, or None for untagged errors."""
    kind = getattr(err, "kind", None)
    return kind if isinstance(kind, ErrorKind) else None


def is_not_found(err: Optional[BaseException]) -> bool:
    """True when ``err`` is tagged NOT_FOUND."""
    return err is not None and error_kind(err) is ErrorKind.NOT_FOUND


def is_timed_out(err: Optional[BaseException]) -> bool:
    """True when ``err`` is tagged TIMED_OUT."""
    return err is not None and error_kind(err) is ErrorKind.TIMED_OUT
