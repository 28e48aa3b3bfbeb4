"""
Patch Builder Module.

Turns a flat list of operations into contiguous batches no larger than an API's
per-call mutation cap, and renders batches as JSON-patch style operation lists.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from ..config import Config
from ..utils import setup_logging
from .types import PatchOperation

logger = setup_logging()

REMOVE = "remove"
ADD = "add"
REPLACE = "replace"

ACTIONS = (REMOVE, ADD, REPLACE)

# Observed cap on ModifyCacheParameterGroup / ResetCacheParameterGroup.
DEFAULT_MAX_BATCH_SIZE = 20


@dataclass(frozen=True)
class Operation:
    """A single mutation of one collection item."""

    action: str
    key: str
    value: Optional[str] = None

    def __post_init__(self) -> None:
        if self.action not in ACTIONS:
            raise ValueError(f"unknown operation action {self.action!r}, expected one of {', '.join(ACTIONS)}")

    @property
    def is_remove(self) -> bool:
        return self.action == REMOVE


@dataclass(frozen=True)
class OperationBatch:
    """A contiguous slice of operations submitted in one API call."""

    index: int
    operations: Tuple[Operation, ...]

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self):
        return iter(self.operations)

    @property
    def keys(self) -> List[str]:
        return [op.key for op in self.operations]

    @property
    def action(self) -> Optional[str]:
        """The single action of this batch, or None if it mixes actions."""
        actions = {op.action for op in self.operations}
        return actions.pop() if len(actions) == 1 else None

    def without(self, key: str) -> "OperationBatch":
        """Copy of this batch with every operation on ``key`` dropped."""
        return OperationBatch(self.index, tuple(op for op in self.operations if op.key != key))


class PatchBuilder:
    """
    Splits operation lists into bounded batches.

    Args:
        max_batch_size: Maximum operations per batch
    """

    def __init__(self, max_batch_size: int = DEFAULT_MAX_BATCH_SIZE) -> None:
        if max_batch_size < 1:
            raise ValueError(f"max_batch_size must be at least 1, got {max_batch_size}")
        self.max_batch_size = max_batch_size

    @classmethod
    def from_config(cls, config: Config) -> "PatchBuilder":
        return cls(max_batch_size=config.max_batch_size)

    def batch(self, ops: Iterable[Operation], split_on_action: bool = False) -> List[OperationBatch]:
        """
        Split ``ops`` into contiguous batches, preserving order.

        Args:
            ops: Operations in the order they must be applied
            split_on_action: Start a new batch whenever the action changes, for
                APIs that use distinct calls for resets and modifications

        Returns:
            Batches whose concatenation reproduces ``ops`` exactly
        """
        batches: List[OperationBatch] = []
        current: List[Operation] = []

        for op in ops:
            full = len(current) >= self.max_batch_size
            switched = split_on_action and current and current[-1].action != op.action
            if full or switched:
                batches.append(OperationBatch(len(batches), tuple(current)))
                current = []
            current.append(op)

        if current:
            batches.append(OperationBatch(len(batches), tuple(current)))

        logger.debug(f"Split {sum(len(b) for b in batches)} operations into {len(batches)} batch(es)")
        return batches


def _escape_pointer(key: str) -> str:
    # RFC 6901 escaping
    return key.replace("~", "~0").replace("/", "~1")


def to_patch_operations(batch: Iterable[Operation], path_prefix: str = "/") -> List[PatchOperation]:
    """
    Render operations as ``patchOperations`` entries.

    >>> to_patch_operations([Operation("replace", "description", "x")])
    [{'op': 'replace', 'path': '/description', 'value': 'x'}]
    """
    prefix = path_prefix if path_prefix.endswith("/") else f"{path_prefix}/"
    rendered = []
    for op in batch:
        entry = {"op": op.action, "path": f"{prefix}{_escape_pointer(op.key)}"}
        if op.action != REMOVE and op.value is not None:
            entry["value"] = op.value
        rendered.append(entry)
    return rendered
