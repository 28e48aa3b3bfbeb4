"""
Error Classifier Module.

Decides whether a remote failure is transient (worth retrying), a not-found
condition, a concurrent-modification conflict, or permanent. Classification is a
pure function of the error value and is driven by an ordered rule table, so new
service-specific transient patterns are added as table rows rather than new
control flow at call sites.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from botocore.exceptions import ClientError

from .errors import ErrorKind, ReconcileError, RemoteError, error_kind


@dataclass(frozen=True)
class ErrorRule:
    """
    One row of the classification table.

    Every criterion that is set must match for the rule to apply. ``message`` is
    a case-insensitive substring; ``code`` is an exact match; ``code_prefix`` and
    ``code_suffix`` accept a single string or a tuple of alternatives.

    A ``message`` rule must also name a code: the same wording turns up under
    unrelated codes (``AccessDenied: ... is not authorized to perform``).
    """

    kind: ErrorKind
    code: Optional[str] = None
    message: Optional[str] = None
    http_status: Optional[int] = None
    code_prefix: Optional[Tuple[str, ...]] = None
    code_suffix: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if self.message is not None and self.code is None and self.code_prefix is None and self.code_suffix is None:
            raise ValueError(f"error rule matching message {self.message!r} must also match an error code")

    def matches(self, code: str, message: str, http_status: Optional[int]) -> bool:
        if self.code is not None and code != self.code:
            return False
        if self.message is not None and self.message.lower() not in message.lower():
            return False
        if self.http_status is not None and http_status != self.http_status:
            return False
        if self.code_prefix is not None and not code.startswith(self.code_prefix):
            return False
        if self.code_suffix is not None and not code.endswith(self.code_suffix):
            return False
        return True


# Order matters: the first matching rule wins. Every message rule is paired with
# the error code the message was observed with.
DEFAULT_RULES: Tuple[ErrorRule, ...] = (
    # Entity gone or never existed
    ErrorRule(ErrorKind.NOT_FOUND, code_suffix=("NotFound", "NotFoundException", "NotFoundFault")),
    ErrorRule(ErrorKind.NOT_FOUND, code_prefix=("NoSuch",)),
    ErrorRule(ErrorKind.NOT_FOUND, code="ResourceNotFound"),
    ErrorRule(ErrorKind.NOT_FOUND, code="WAFNonexistentItemException"),
    ErrorRule(ErrorKind.NOT_FOUND, code="ValidationException", message="RecordNotFound"),
    ErrorRule(ErrorKind.NOT_FOUND, code="InvalidRequestException", message="does not exist"),
    ErrorRule(ErrorKind.NOT_FOUND, code="InvalidRequestException", message="not found"),
    # Concurrent modification
    ErrorRule(ErrorKind.CONFLICT, code="ConflictException"),
    ErrorRule(ErrorKind.CONFLICT, code="ConcurrentModificationException"),
    ErrorRule(ErrorKind.CONFLICT, code="StaleDataException"),
    ErrorRule(ErrorKind.CONFLICT, code="WAFStaleDataException"),
    # Resource busy
    ErrorRule(ErrorKind.RETRYABLE, code="InvalidCacheParameterGroupState"),
    ErrorRule(ErrorKind.RETRYABLE, code="InvalidCacheParameterGroupStateFault", message="has pending changes"),
    ErrorRule(ErrorKind.RETRYABLE, code="InvalidParameterException", message="a previous asynchronous operation has not completed"),
    ErrorRule(ErrorKind.RETRYABLE, code="InvalidOperationException", message="still in use"),
    # IAM eventual consistency
    ErrorRule(ErrorKind.RETRYABLE, code="InvalidParameterValueException", message="cannot be assumed by"),
    ErrorRule(ErrorKind.RETRYABLE, code="InvalidParameterValueException", message="execution role does not have permissions"),
    ErrorRule(ErrorKind.RETRYABLE, code="InvalidParameterValueException", message="KMS key is invalid for CreateGrant"),
    ErrorRule(ErrorKind.RETRYABLE, code="InvalidInputException", message="is not authorized to perform"),
    ErrorRule(ErrorKind.RETRYABLE, code="InvalidInputException", message="should be given assume role permissions"),
    ErrorRule(ErrorKind.RETRYABLE, code="BadRequestException", message="can't access your IAM role"),
    ErrorRule(ErrorKind.RETRYABLE, code="MalformedPolicyDocumentException", message="principal"),
    # Throttling
    ErrorRule(ErrorKind.RETRYABLE, code="Throttling"),
    ErrorRule(ErrorKind.RETRYABLE, code="ThrottlingException"),
    ErrorRule(ErrorKind.RETRYABLE, code="RequestLimitExceeded"),
    ErrorRule(ErrorKind.RETRYABLE, code="TooManyRequestsException"),
    ErrorRule(ErrorKind.RETRYABLE, code="InvalidParameterValueException", message="Your request has been throttled"),
    # Bare HTTP status fallbacks
    ErrorRule(ErrorKind.NOT_FOUND, http_status=404),
    ErrorRule(ErrorKind.CONFLICT, http_status=409),
)


def client_error_details(err: ClientError) -> Tuple[str, str, Optional[int], str]:
    """
    Pull code, message, HTTP status and operation name out of a botocore ClientError.

    Returns:
        Tuple of (code, message, http_status, operation_name)
    """
    response = getattr(err, "response", None) or {}
    error = response.get("Error", {}) or {}
    metadata = response.get("ResponseMetadata", {}) or {}
    code = str(error.get("Code", "") or "")
    message = str(error.get("Message", "") or "")
    status = metadata.get("HTTPStatusCode")
    return code, message, int(status) if status is not None else None, getattr(err, "operation_name", "") or ""


class ErrorClassifier:
    """
    Table-driven classifier for remote errors.

    Errors that already carry an ErrorKind (anything raised by the engine, or a
    RemoteError produced by an adapter) are returned as tagged and never
    re-inspected. Raw botocore ClientErrors are matched against the rule table.
    Anything else is permanent.
    """

    def __init__(self, rules: Optional[Iterable[ErrorRule]] = None) -> None:
        self.rules: Tuple[ErrorRule, ...] = tuple(DEFAULT_RULES if rules is None else rules)

    def with_rules(self, rules: Iterable[ErrorRule], prepend: bool = True) -> "ErrorClassifier":
        """
        Return a new classifier with extra rules.

        Args:
            rules: Rules to add
            prepend: When True the new rules take precedence over the existing table

        Returns:
            A new ErrorClassifier; this one is left unchanged
        """
        extra = tuple(rules)
        return ErrorClassifier(extra + self.rules if prepend else self.rules + extra)

    def classify(self, err: Optional[BaseException]) -> ErrorKind:
        if err is None:
            raise ValueError("classify() called without an error")

        if isinstance(err, ReconcileError):
            return error_kind(err) or ErrorKind.PERMANENT

        if isinstance(err, ClientError):
            code, message, status, _ = client_error_details(err)
            return self.classify_parts(code, message, status)

        return ErrorKind.PERMANENT

    def classify_parts(self, code: str, message: str, http_status: Optional[int] = None) -> ErrorKind:
        """Classify an error from its already-extracted parts."""
        for rule in self.rules:
            if rule.matches(code, message, http_status):
                return rule.kind
        return ErrorKind.PERMANENT

    def wrap(self, err: ClientError, operation: str = "") -> RemoteError:
        """
        Tag a raw botocore error once, at the adapter boundary.

        Args:
            err: The ClientError raised by a boto3 client
            operation: Operation name to record when botocore did not provide one

        Returns:
            A RemoteError carrying the classification and the original error
        """
        code, message, status, operation_name = client_error_details(err)
        return RemoteError(
            message or str(err),
            kind=self.classify_parts(code, message, status),
            code=code,
            http_status=status,
            operation=operation_name or operation,
            cause=err,
        )

    def is_retryable(self, err: BaseException) -> bool:
        return self.classify(err).is_transient


DEFAULT_CLASSIFIER = ErrorClassifier()
