"""
Terraform Reconciliation Engine Package.

This package provides the service-independent core used by AWS resource
bindings to drive imperative AWS APIs as declarative resources: error
classification, bounded retries, state waiters, collection diffs batched into
patch operations, and composite identifiers.

The reconciliation process:
1. Diffs the old and new declared collections of a resource
2. Splits the resulting operations into batches within the API's limit
3. Submits each batch under the retry policy, applying known workarounds
4. Waits for the remote object to reach a target state
"""

from .classifier import DEFAULT_CLASSIFIER, ErrorClassifier, ErrorRule
from .context import Context
from .differ import CollectionDiffer, DiffItem, DiffResult
from .errors import (
    BatchApplyError,
    CompositeIdError,
    ErrorKind,
    PartialCreateError,
    ReconcileError,
    ReconcileTimeoutError,
    RemoteError,
    ResourceNotFoundError,
    WaitFailedError,
    WorkaroundError,
    is_not_found,
    is_timed_out,
)
from .identity import CompositeId, decode_id, encode_id
from .patch import Operation, OperationBatch, PatchBuilder, to_patch_operations
from .reconciler import CreateResult, Reconciler, UpdateResult
from .retry import RetryContext, RetryPolicy
from .waiter import Status, Waiter, WaitResult, WaitSpec, wait_for
from .workarounds import SubstituteThenReset, reserved_memory_workaround

__all__ = [
    "BatchApplyError",
    "CollectionDiffer",
    "CompositeId",
    "CompositeIdError",
    "Context",
    "CreateResult",
    "DEFAULT_CLASSIFIER",
    "DiffItem",
    "DiffResult",
    "ErrorClassifier",
    "ErrorKind",
    "ErrorRule",
    "Operation",
    "OperationBatch",
    "PartialCreateError",
    "PatchBuilder",
    "ReconcileError",
    "ReconcileTimeoutError",
    "Reconciler",
    "RemoteError",
    "ResourceNotFoundError",
    "RetryContext",
    "RetryPolicy",
    "Status",
    "SubstituteThenReset",
    "UpdateResult",
    "WaitFailedError",
    "WaitResult",
    "WaitSpec",
    "Waiter",
    "WorkaroundError",
    "decode_id",
    "encode_id",
    "is_not_found",
    "is_timed_out",
    "reserved_memory_workaround",
    "to_patch_operations",
    "wait_for",
]
