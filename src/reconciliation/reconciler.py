"""
Reconciler Module.

Drives an imperative remote API as a declarative resource: create, update and
delete are sequenced as submit -> wait -> read back, with every remote call run
under the RetryPolicy and updates shrunk to the minimal batched operations.

The Reconciler only ever sees callables supplied by resource-binding code; it
never builds requests, parses responses, or persists state itself.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..config import Config
from ..utils import setup_logging
from .context import Context
from .differ import CollectionDiffer, DiffResult
from .errors import (
    BatchApplyError,
    ErrorKind,
    PartialCreateError,
    ReconcileError,
    ReconcileTimeoutError,
    WorkaroundError,
)
from .patch import OperationBatch, PatchBuilder
from .retry import RetryPolicy
from .types import DeclaredCollection, Request, ResourceId
from .waiter import StatusFetcher, Waiter, WaitResult, WaitSpec
from .workarounds import SubstituteThenReset

logger = setup_logging()


@dataclass(frozen=True)
class CreateResult:
    resource_id: ResourceId
    resource: Any = None


@dataclass(frozen=True)
class UpdateResult:
    diff: DiffResult
    batches_applied: int

    @property
    def changed(self) -> bool:
        return not self.diff.empty


class Reconciler:
    """
    Create, update and delete orchestration for one resource type.

    Args:
        context: Invocation context (clock, sleep, cancellation)
        retry_policy: Retry settings for every remote call
        patch_builder: Batching limit for update calls
    """

    def __init__(
        self,
        context: Optional[Context] = None,
        retry_policy: Optional[RetryPolicy] = None,
        patch_builder: Optional[PatchBuilder] = None,
    ) -> None:
        self.context = context or Context()
        self.retry_policy = retry_policy or RetryPolicy()
        self.patch_builder = patch_builder or PatchBuilder()

    @classmethod
    def from_config(cls, config: Config, context: Optional[Context] = None) -> "Reconciler":
        return cls(
            context=context or Context.from_config(config),
            retry_policy=RetryPolicy.from_config(config),
            patch_builder=PatchBuilder.from_config(config),
        )

    def _is_not_found(self, err: BaseException) -> bool:
        return self.retry_policy.classifier.classify(err) is ErrorKind.NOT_FOUND

    def wait_for(self, spec: WaitSpec, fetch_status: StatusFetcher) -> WaitResult:
        """Run a Waiter with this reconciler's context and classifier."""
        return Waiter(self.retry_policy.classifier).wait_for(spec, fetch_status, self.context)

    def create(
        self,
        build: Callable[[], Request],
        submit: Callable[[Request], ResourceId],
        wait: Optional[Callable[[ResourceId], Any]] = None,
        read: Optional[Callable[[ResourceId], Any]] = None,
    ) -> CreateResult:
        """
        Create a remote object and wait for it to converge.

        Args:
            build: Builds the create request
            submit: Performs the create call and returns the new object's ID
            wait: Blocks until the object is ready (e.g. a WaitSpec-based waiter)
            read: Reads the object back once it is ready

        Returns:
            CreateResult with the ID and the read-back object, if any

        Raises:
            Exception: Whatever the create call raised; no object exists
            PartialCreateError: The object was created but waiting or reading failed
        """
        request = build()
        resource_id = self.retry_policy.run(lambda: submit(request), self.context, operation="create")
        if not resource_id:
            raise ReconcileError("create call succeeded but returned no resource identifier")

        logger.info(f"Created {resource_id}")

        resource = None
        try:
            if wait is not None:
                wait(resource_id)
            if read is not None:
                resource = self.retry_policy.run(lambda: read(resource_id), self.context, operation="read")
        except Exception as e:
            logger.error(f"{resource_id} was created but did not converge: {e}")
            raise PartialCreateError(resource_id, e) from e

        return CreateResult(resource_id=resource_id, resource=resource)

    def update(
        self,
        old: Optional[DeclaredCollection],
        new: Optional[DeclaredCollection],
        apply: Callable[[OperationBatch], Any],
        differ: Optional[CollectionDiffer] = None,
        wait: Optional[Callable[[], Any]] = None,
        workaround: Optional[SubstituteThenReset] = None,
        split_on_action: bool = True,
    ) -> UpdateResult:
        """
        Reconcile a declared collection by applying the minimal batched changes.

        Batches are applied in order, each under the RetryPolicy. A failed batch
        is not retried by later batches and earlier batches stay applied.

        Args:
            old: Collection currently applied
            new: Collection that should be applied
            apply: Submits one batch (e.g. a reset or modify call)
            differ: Diff settings; defaults to a case-sensitive differ
            wait: Blocks until the object has converged after all batches
            workaround: Handles the one removal the API is known to refuse
            split_on_action: Never mix removes and adds in one batch

        Returns:
            UpdateResult with the diff and the number of batches applied

        Raises:
            BatchApplyError: A batch failed and no workaround applies
            WorkaroundError: The workaround was attempted and failed
        """
        differ = differ or CollectionDiffer()
        new = new or {}
        result = differ.diff(old, new)

        if result.empty:
            logger.debug("No changes to apply")
            return UpdateResult(diff=result, batches_applied=0)

        logger.debug(f"Items to remove: {[item.key for item in result.to_remove]}")
        logger.debug(f"Items to add or update: {[item.key for item in result.to_add_or_update]}")

        def apply_batch(batch: OperationBatch) -> None:
            self.retry_policy.run(lambda: apply(batch), self.context, operation=f"apply batch {batch.index + 1}")

        ops = result.operations()
        for key in result.protected_keys:
            if workaround is None or workaround.key != key:
                raise ReconcileError(f"{key} cannot be removed directly and no workaround is configured for it")
            ops = [op for op in ops if not (op.is_remove and op.key == key)]
            workaround.remove(new, apply_batch)

        applied = 0
        for batch in self.patch_builder.batch(ops, split_on_action=split_on_action):
            try:
                apply_batch(batch)
            except Exception as e:
                cancelled = isinstance(e, ReconcileTimeoutError) and e.cancelled
                if cancelled or workaround is None or not (workaround.handles(batch) and workaround.matches(e)):
                    logger.error(f"Error applying batch {batch.index + 1}: {e}")
                    raise BatchApplyError(batch.index, applied, e) from e

                logger.warning(f"Batch {batch.index + 1} rejected removal of {workaround.key}: {e}")
                try:
                    workaround.recover(batch, new, apply_batch)
                except WorkaroundError:
                    raise
                except Exception as err:
                    raise BatchApplyError(batch.index, applied, err) from err
            applied += 1

        if wait is not None:
            wait()

        logger.info(
            f"Applied {len(result.to_remove)} removal(s) and {len(result.to_add_or_update)} "
            f"addition(s)/update(s) in {applied} batch(es)"
        )
        return UpdateResult(diff=result, batches_applied=applied)

    def delete(
        self,
        remove: Callable[[], Any],
        wait: Optional[Callable[[], Any]] = None,
        exists: Optional[Callable[[], bool]] = None,
    ) -> bool:
        """
        Delete a remote object. Deleting an object that is already gone succeeds.

        Args:
            remove: Performs the delete call
            wait: Blocks until the object is gone
            exists: Reports whether the object still exists

        Returns:
            True if this call deleted the object, False if it was already gone

        Raises:
            ReconcileError: If the object still exists after the delete completed
        """
        try:
            self.retry_policy.run(remove, self.context, operation="delete")
        except Exception as e:
            if not self._is_not_found(e):
                raise
            logger.info(f"Nothing to delete, resource already gone: {e}")
            return False

        if wait is not None:
            try:
                wait()
            except Exception as e:
                if not self._is_not_found(e):
                    raise

        if exists is not None:
            try:
                still_exists = self.retry_policy.run(exists, self.context, operation="exists")
            except Exception as e:
                if not self._is_not_found(e):
                    raise
                still_exists = False
            if still_exists:
                raise ReconcileError("resource still exists after delete")

        return True
