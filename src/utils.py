"""
Utility functions for the Terraform reconciliation engine.
"""

import functools
import logging
from typing import TYPE_CHECKING, Callable, Optional, TypeVar, cast

from botocore.exceptions import ClientError

if TYPE_CHECKING:
    from .reconciliation.classifier import ErrorClassifier

LOGGER_NAME = "reconciliation"


def setup_logging(log_level: Optional[str] = None) -> logging.Logger:
    """
    Sets up logging configuration for the engine.

    The first call installs a stream handler; later calls return the same
    logger and only change its level when one is passed explicitly.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Prevent duplicate handlers
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        if log_level is None:
            logger.setLevel(logging.INFO)

    if log_level is not None:
        logger.setLevel(getattr(logging, log_level.upper()))

    return logger


F = TypeVar("F", bound=Callable[..., object])


def remote_call(
    func: Optional[F] = None, *, classifier: Optional["ErrorClassifier"] = None, operation: str = ""
) -> F:
    """
    Decorator that turns botocore ClientErrors into classified RemoteErrors.

    The wrapped function is a RemoteAPI call. Any ClientError it raises is
    classified exactly once here and re-raised as a RemoteError carrying the
    ErrorKind, so nothing downstream has to inspect codes or messages again.
    Other exceptions propagate unchanged.

    Usage::

        @remote_call
        def describe(client, name): ...

        @remote_call(operation="ResetCacheParameterGroup")
        def reset(client, name, params): ...
    """

    def decorate(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args: object, **kwargs: object) -> object:
            try:
                return fn(*args, **kwargs)
            except ClientError as e:
                from .reconciliation.classifier import DEFAULT_CLASSIFIER

                active = classifier or DEFAULT_CLASSIFIER
                error = active.wrap(e, operation=operation or fn.__name__)
                setup_logging().debug(f"AWS ClientError in {fn.__name__} classified as {error.kind.value}: {e}")
                raise error from e

        return cast(F, wrapper)

    if func is not None:
        return decorate(func)
    return cast(F, decorate)
