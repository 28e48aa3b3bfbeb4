"""
Removal Workarounds Module.

Some APIs refuse to reset particular keys through their normal reset call. A
removal workaround recognises that specific refusal and removes the key another
way: set a related key, reset that related key, then carry on with the rest of
the batch.

The only workaround shipped here is ElastiCache's ``reserved-memory`` parameter.
Resetting it fails with one of two shapes depending on the partition:

  - commercial: 400 ``InvalidParameterValue: Parameter reserved-memory doesn't exist``
  - GovCloud: 500 ``InternalFailure``, which SDK retries turn into a timeout

Both mean the same thing. Switching the group to ``reserved-memory-percent=0``
and then resetting ``reserved-memory-percent`` leaves neither key set.
"""

from typing import Callable, Iterable, Optional, Tuple

from botocore.exceptions import ClientError

from ..utils import setup_logging
from .classifier import ErrorRule, client_error_details
from .errors import ErrorKind, RemoteError, WorkaroundError, is_timed_out
from .patch import REMOVE, REPLACE, Operation, OperationBatch
from .types import DeclaredCollection

logger = setup_logging()

BatchApplier = Callable[[OperationBatch], None]


def _error_parts(err: BaseException) -> Optional[Tuple[str, str, Optional[int]]]:
    if isinstance(err, RemoteError):
        return err.code, err.message, err.http_status
    if isinstance(err, ClientError):
        code, message, status, _ = client_error_details(err)
        return code, message, status
    return None


class SubstituteThenReset:
    """
    Remove ``key`` by setting ``substitute_key`` and then resetting it.

    Args:
        key: Key whose plain removal the API rejects
        substitute_key: Related key that replaces ``key`` when set
        substitute_value: Value to set ``substitute_key`` to before resetting it
        error_rules: Error shapes that mean "cannot remove ``key``"; their kind is ignored
        match_timeout: Also treat a timeout while removing ``key`` as that refusal
        unsupported: When True the substitute key does not exist for this resource,
            so the offending removal is dropped without a substitution
    """

    def __init__(
        self,
        key: str,
        substitute_key: str,
        substitute_value: str,
        error_rules: Iterable[ErrorRule],
        match_timeout: bool = False,
        unsupported: bool = False,
    ) -> None:
        self.key = key
        self.substitute_key = substitute_key
        self.substitute_value = substitute_value
        self.error_rules = tuple(error_rules)
        self.match_timeout = match_timeout
        self.unsupported = unsupported

    def __repr__(self) -> str:
        return f"SubstituteThenReset({self.key!r} -> {self.substitute_key!r}={self.substitute_value!r})"

    def handles(self, batch: OperationBatch) -> bool:
        """True when ``batch`` removes this workaround's key."""
        return any(op.is_remove and op.key == self.key for op in batch)

    def matches(self, err: BaseException) -> bool:
        """True only for the specific refusal this workaround knows about."""
        if self.match_timeout and is_timed_out(err):
            return True
        parts = _error_parts(err)
        if parts is None:
            return False
        return any(rule.matches(*parts) for rule in self.error_rules)

    def remove(self, new: DeclaredCollection, apply: BatchApplier, index: int = 0) -> None:
        """
        Remove ``key`` without a plain reset.

        Skipped when ``new`` already sets the substitute key (that update takes
        care of it) or when the substitute key is unsupported.

        Raises:
            WorkaroundError: If setting or resetting the substitute key fails
        """
        if self.substitute_key in new:
            logger.info(f"Not substituting {self.key}: {self.substitute_key} is being set explicitly")
            return

        if self.unsupported:
            logger.warning(f"Cannot remove {self.key}: {self.substitute_key} is not supported for this resource")
            return

        logger.warning(f"Removing {self.key} by setting {self.substitute_key}={self.substitute_value} and resetting it")

        switch = OperationBatch(index, (Operation(REPLACE, self.substitute_key, self.substitute_value),))
        try:
            apply(switch)
        except Exception as e:
            raise WorkaroundError(self.key, f"switch to {self.substitute_key}", e) from e

        reset = OperationBatch(index, (Operation(REMOVE, self.substitute_key),))
        try:
            apply(reset)
        except Exception as e:
            raise WorkaroundError(self.key, f"reset {self.substitute_key}", e) from e

    def recover(self, batch: OperationBatch, new: DeclaredCollection, apply: BatchApplier) -> None:
        """
        Finish a batch that failed because it tried to remove ``key``.

        Drops the offending removal, removes ``key`` the substitute way, then
        applies the rest of the batch. Errors from the rest of the batch propagate
        unchanged.
        """
        self.remove(new, apply, index=batch.index)

        remainder = batch.without(self.key)
        if len(remainder):
            apply(remainder)


RESERVED_MEMORY_ERROR_RULES: Tuple[ErrorRule, ...] = (
    ErrorRule(ErrorKind.PERMANENT, code="InvalidParameterValue", message="Parameter reserved-memory doesn't exist"),
    ErrorRule(ErrorKind.PERMANENT, code="InvalidParameterValueException", message="Parameter reserved-memory doesn't exist"),
    ErrorRule(ErrorKind.PERMANENT, code="InternalFailure", http_status=500),
)

# reserved-memory-percent does not exist in these families
RESERVED_MEMORY_PERCENT_UNSUPPORTED = ("redis2.6", "redis2.8")


def reserved_memory_workaround(family: str) -> SubstituteThenReset:
    """Workaround for resetting ``reserved-memory`` in an ElastiCache parameter group of ``family``."""
    return SubstituteThenReset(
        key="reserved-memory",
        substitute_key="reserved-memory-percent",
        substitute_value="0",
        error_rules=RESERVED_MEMORY_ERROR_RULES,
        match_timeout=True,
        unsupported=family in RESERVED_MEMORY_PERCENT_UNSUPPORTED,
    )
