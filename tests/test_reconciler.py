"""
Unit tests for the Reconciler: create, update (including the reserved-memory
removal workaround) and delete.

Remote calls are MagicMocks or a small in-memory parameter group; no AWS calls.
"""

import unittest
from typing import Dict, List, Optional
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from src.reconciliation.differ import CollectionDiffer
from src.reconciliation.errors import (
    BatchApplyError,
    ErrorKind,
    PartialCreateError,
    ReconcileError,
    ReconcileTimeoutError,
    RemoteError,
    WaitFailedError,
    WorkaroundError,
)
from src.reconciliation.patch import OperationBatch, PatchBuilder
from src.reconciliation.reconciler import Reconciler
from src.reconciliation.retry import RetryPolicy
from src.reconciliation.waiter import WaitSpec
from src.reconciliation.workarounds import reserved_memory_workaround
from tests.fakes import FakeClock, client_error, fake_context


class FakeParameterGroup:
    """
    In-memory stand-in for an ElastiCache parameter group.

    Resetting reserved-memory is refused the way the commercial partition
    refuses it; setting reserved-memory-percent replaces reserved-memory.
    """

    def __init__(self, parameters: Dict[str, str], refusal: Optional[Exception] = None) -> None:
        self.parameters = dict(parameters)
        self.calls: List[List[tuple]] = []
        self.refusal = refusal or RemoteError(
            "Parameter reserved-memory doesn't exist",
            kind=ErrorKind.PERMANENT,
            code="InvalidParameterValue",
            http_status=400,
            operation="ResetCacheParameterGroup",
        )

    def apply(self, batch: OperationBatch) -> None:
        self.calls.append([(op.action, op.key, op.value) for op in batch])
        if any(op.is_remove and op.key == "reserved-memory" for op in batch):
            raise self.refusal
        for op in batch:
            if op.is_remove:
                self.parameters.pop(op.key, None)
            else:
                if op.key == "reserved-memory-percent":
                    self.parameters.pop("reserved-memory", None)
                self.parameters[op.key] = op.value


class ReconcilerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.reconciler = Reconciler(
            context=fake_context(self.clock),
            retry_policy=RetryPolicy(timeout=30.0, base_delay=1.0, max_delay=5.0, jitter=0.0),
        )


class TestCreate(ReconcilerTestCase):
    """Create: submit, wait, read back."""

    def test_create_success(self) -> None:
        submit = MagicMock(return_value="my-group")
        wait = MagicMock()
        read = MagicMock(return_value={"CacheParameterGroupName": "my-group"})

        result = self.reconciler.create(lambda: {"CacheParameterGroupName": "my-group"}, submit, wait, read)

        self.assertEqual(result.resource_id, "my-group")
        self.assertEqual(result.resource, {"CacheParameterGroupName": "my-group"})
        submit.assert_called_once_with({"CacheParameterGroupName": "my-group"})
        wait.assert_called_once_with("my-group")
        read.assert_called_once_with("my-group")

    def test_create_retries_transient_submit(self) -> None:
        submit = MagicMock(side_effect=[client_error("InvalidParameterValueException", "role cannot be assumed by"), "fn-1"])
        result = self.reconciler.create(dict, submit)
        self.assertEqual(result.resource_id, "fn-1")
        self.assertEqual(submit.call_count, 2)

    def test_create_failure_has_no_id(self) -> None:
        submit = MagicMock(side_effect=client_error("InvalidParameterCombination", "bad request"))
        wait = MagicMock()
        with self.assertRaises(ClientError):
            self.reconciler.create(dict, submit, wait)
        wait.assert_not_called()

    def test_create_convergence_failure_reports_id(self) -> None:
        submit = MagicMock(return_value="cluster-1")
        wait = MagicMock(side_effect=WaitFailedError("cluster reached failure state failed", state="failed"))
        with self.assertRaises(PartialCreateError) as context:
            self.reconciler.create(dict, submit, wait)
        self.assertEqual(context.exception.resource_id, "cluster-1")
        self.assertIsInstance(context.exception.cause, WaitFailedError)

    def test_create_wait_timeout_keeps_kind(self) -> None:
        submit = MagicMock(return_value="cluster-1")
        spec = WaitSpec(target={"available"}, pending={"creating"}, timeout=10.0, poll_interval=5.0)
        fetch = MagicMock(return_value="creating")

        with self.assertRaises(PartialCreateError) as context:
            self.reconciler.create(dict, submit, wait=lambda _id: self.reconciler.wait_for(spec, fetch))
        self.assertEqual(context.exception.kind, ErrorKind.TIMED_OUT)
        self.assertIsInstance(context.exception.cause, ReconcileTimeoutError)

    def test_create_without_id(self) -> None:
        with self.assertRaises(ReconcileError):
            self.reconciler.create(dict, MagicMock(return_value=""))


class TestUpdate(ReconcilerTestCase):
    """Update: diff, batch, apply."""

    def test_no_changes(self) -> None:
        apply = MagicMock()
        result = self.reconciler.update({"a": "1"}, {"a": "1"}, apply)
        self.assertFalse(result.changed)
        self.assertEqual(result.batches_applied, 0)
        apply.assert_not_called()

    def test_batches_removes_then_adds(self) -> None:
        old = {f"old-{i:02d}": "1" for i in range(25)}
        new = {f"new-{i:02d}": "1" for i in range(3)}
        apply = MagicMock()
        wait = MagicMock()

        result = self.reconciler.update(old, new, apply, wait=wait)

        batches = [call.args[0] for call in apply.call_args_list]
        self.assertEqual([len(batch) for batch in batches], [20, 5, 3])
        self.assertEqual([batch.action for batch in batches], ["remove", "remove", "add"])
        self.assertEqual(result.batches_applied, 3)
        wait.assert_called_once()

    def test_failed_batch_is_not_followed_or_resubmitted(self) -> None:
        reconciler = Reconciler(
            context=fake_context(self.clock),
            retry_policy=RetryPolicy(timeout=30.0, base_delay=1.0, jitter=0.0),
            patch_builder=PatchBuilder(max_batch_size=2),
        )
        apply = MagicMock(side_effect=[None, client_error("InvalidParameterValue", "bad value"), None])

        with self.assertRaises(BatchApplyError) as context:
            reconciler.update({}, {"a": "1", "b": "2", "c": "3", "d": "4", "e": "5"}, apply)

        self.assertEqual(context.exception.batch_index, 1)
        self.assertEqual(context.exception.applied, 1)
        self.assertEqual(apply.call_count, 2)
        self.assertEqual(context.exception.kind, ErrorKind.PERMANENT)

    def test_transient_batch_errors_are_retried(self) -> None:
        apply = MagicMock(side_effect=[client_error("InvalidCacheParameterGroupState", "has pending changes"), None])
        result = self.reconciler.update({}, {"a": "1"}, apply)
        self.assertEqual(result.batches_applied, 1)
        self.assertEqual(apply.call_count, 2)


class TestReservedMemoryWorkaround(ReconcilerTestCase):
    """Removing reserved-memory via reserved-memory-percent."""

    def test_substitute_then_reset(self) -> None:
        group = FakeParameterGroup({"reserved-memory": "0", "appendonly": "yes"})

        self.reconciler.update(
            {"reserved-memory": "0", "appendonly": "yes"},
            {"appendonly": "yes"},
            group.apply,
            workaround=reserved_memory_workaround("redis6.x"),
        )

        self.assertEqual(group.parameters, {"appendonly": "yes"})
        self.assertEqual(
            group.calls,
            [
                [("remove", "reserved-memory", "0")],
                [("replace", "reserved-memory-percent", "0")],
                [("remove", "reserved-memory-percent", None)],
            ],
        )

    def test_remainder_of_batch_is_applied(self) -> None:
        group = FakeParameterGroup({"reserved-memory": "0", "timeout": "300"})

        self.reconciler.update(
            {"reserved-memory": "0", "timeout": "300"}, {}, group.apply, workaround=reserved_memory_workaround("redis5.0")
        )

        self.assertEqual(group.parameters, {})
        self.assertEqual(group.calls[-1], [("remove", "timeout", "300")])

    def test_sibling_key_skips_substitution(self) -> None:
        group = FakeParameterGroup({"reserved-memory": "0"})

        self.reconciler.update(
            {"reserved-memory": "0"},
            {"reserved-memory-percent": "25"},
            group.apply,
            workaround=reserved_memory_workaround("redis6.x"),
        )

        self.assertEqual(group.parameters, {"reserved-memory-percent": "25"})
        self.assertNotIn([("replace", "reserved-memory-percent", "0")], group.calls)
        self.assertEqual(group.calls[-1], [("add", "reserved-memory-percent", "25")])

    def test_govcloud_internal_failure(self) -> None:
        group = FakeParameterGroup(
            {"reserved-memory": "0"}, refusal=client_error("InternalFailure", "An internal error has occurred", 500)
        )

        self.reconciler.update({"reserved-memory": "0"}, {}, group.apply, workaround=reserved_memory_workaround("redis6.x"))

        self.assertEqual(group.parameters, {})

    def test_govcloud_timeout_while_resetting(self) -> None:
        group = FakeParameterGroup({"reserved-memory": "0"}, refusal=ReconcileTimeoutError("timeout while resetting parameters"))

        self.reconciler.update({"reserved-memory": "0"}, {}, group.apply, workaround=reserved_memory_workaround("redis6.x"))

        self.assertEqual(group.parameters, {})
        self.assertEqual(
            group.calls,
            [
                [("remove", "reserved-memory", "0")],
                [("replace", "reserved-memory-percent", "0")],
                [("remove", "reserved-memory-percent", None)],
            ],
        )

    def test_cancelled_timeout_is_not_recovered(self) -> None:
        refusal = ReconcileTimeoutError("cancelled", cancelled=True)
        group = FakeParameterGroup({"reserved-memory": "0"}, refusal=refusal)

        with self.assertRaises(BatchApplyError) as context:
            self.reconciler.update({"reserved-memory": "0"}, {}, group.apply, workaround=reserved_memory_workaround("redis6.x"))
        self.assertIs(context.exception.cause, refusal)
        self.assertEqual(len(group.calls), 1)

    def test_unsupported_family_drops_the_removal(self) -> None:
        group = FakeParameterGroup({"reserved-memory": "0", "timeout": "300"})

        with self.assertLogs("reconciliation", level="WARNING") as logs:
            self.reconciler.update(
                {"reserved-memory": "0", "timeout": "300"}, {}, group.apply, workaround=reserved_memory_workaround("redis2.8")
            )

        self.assertEqual(group.parameters, {"reserved-memory": "0"})
        self.assertEqual(len(group.calls), 2)
        self.assertTrue(any("not supported" in line for line in logs.output))

    def test_unrelated_failure_is_not_swallowed(self) -> None:
        refusal = RemoteError("Unknown parameter", kind=ErrorKind.PERMANENT, code="InvalidParameterValue")
        group = FakeParameterGroup({"reserved-memory": "0"}, refusal=refusal)

        with self.assertRaises(BatchApplyError) as context:
            self.reconciler.update(
                {"reserved-memory": "0"}, {}, group.apply, workaround=reserved_memory_workaround("redis6.x")
            )
        self.assertIs(context.exception.cause, refusal)
        self.assertEqual(len(group.calls), 1)

    def test_workaround_failure_propagates(self) -> None:
        apply = MagicMock(
            side_effect=[
                RemoteError("Parameter reserved-memory doesn't exist", code="InvalidParameterValue"),
                client_error("InvalidParameterValue", "reserved-memory-percent is read only"),
            ]
        )

        with self.assertRaises(WorkaroundError) as context:
            self.reconciler.update(
                {"reserved-memory": "0"}, {}, apply, workaround=reserved_memory_workaround("redis6.x")
            )
        self.assertEqual(context.exception.key, "reserved-memory")
        self.assertIn("reserved-memory-percent", context.exception.step)

    def test_protected_key_uses_workaround_up_front(self) -> None:
        group = FakeParameterGroup({"reserved-memory": "0", "appendonly": "yes"})
        differ = CollectionDiffer(cannot_remove=lambda key: key == "reserved-memory")

        self.reconciler.update(
            {"reserved-memory": "0", "appendonly": "yes"},
            {"appendonly": "no"},
            group.apply,
            differ=differ,
            workaround=reserved_memory_workaround("redis6.x"),
        )

        self.assertEqual(group.parameters, {"appendonly": "no"})
        self.assertNotIn([("remove", "reserved-memory", "0")], group.calls)

    def test_protected_key_without_workaround(self) -> None:
        differ = CollectionDiffer(cannot_remove=lambda key: key == "reserved-memory")
        apply = MagicMock()
        with self.assertRaises(ReconcileError):
            self.reconciler.update({"reserved-memory": "0"}, {}, apply, differ=differ)
        apply.assert_not_called()


class TestDelete(ReconcilerTestCase):
    """Delete is idempotent."""

    def test_delete_success(self) -> None:
        remove = MagicMock()
        self.assertTrue(self.reconciler.delete(remove))
        remove.assert_called_once()

    def test_delete_twice(self) -> None:
        gone = client_error("CacheParameterGroupNotFoundFault", "CacheParameterGroup not found", 404)
        remove = MagicMock(side_effect=[None, gone])
        self.assertTrue(self.reconciler.delete(remove))
        self.assertFalse(self.reconciler.delete(remove))

    def test_delete_retries_while_in_use(self) -> None:
        remove = MagicMock(side_effect=[client_error("InvalidCacheParameterGroupState", "still in use"), None])
        self.assertTrue(self.reconciler.delete(remove))
        self.assertEqual(remove.call_count, 2)

    def test_not_found_during_wait_is_success(self) -> None:
        remove = MagicMock()
        wait = MagicMock(side_effect=RemoteError("gone", kind=ErrorKind.NOT_FOUND))
        self.assertTrue(self.reconciler.delete(remove, wait=wait))

    def test_existence_check(self) -> None:
        self.assertTrue(
            self.reconciler.delete(MagicMock(), exists=MagicMock(side_effect=client_error("NoSuchEntity")))
        )
        self.assertTrue(self.reconciler.delete(MagicMock(), exists=MagicMock(return_value=False)))
        with self.assertRaises(ReconcileError):
            self.reconciler.delete(MagicMock(), exists=MagicMock(return_value=True))

    def test_permanent_failure_propagates(self) -> None:
        remove = MagicMock(side_effect=client_error("AccessDenied", "nope"))
        with self.assertRaises(ClientError):
            self.reconciler.delete(remove)

    def test_not_found_wording_from_other_errors_propagates(self) -> None:
        err = client_error("InvalidParameterValue", "KMS key arn:aws:kms:us-east-1:123456789012:key/abc not found")
        remove = MagicMock(side_effect=err)
        with self.assertRaises(ClientError) as context:
            self.reconciler.delete(remove)
        self.assertIs(context.exception, err)
        remove.assert_called_once()


if __name__ == "__main__":
    unittest.main()
