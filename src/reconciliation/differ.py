"""
Collection Differ Module.

Compares the old and new declared collections of a resource (tags, parameters,
settings) and reports the minimal set of removals and additions/updates that
reconcile them. Results are sorted by key so they are reproducible.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..utils import setup_logging
from .patch import ADD, REMOVE, REPLACE, Operation
from .types import DeclaredCollection

logger = setup_logging()


@dataclass(frozen=True)
class DiffItem:
    key: str
    value: str


@dataclass(frozen=True)
class DiffResult:
    """
    Outcome of a diff.

    Attributes:
        to_remove: Items present in old and absent from new
        to_add_or_update: Items in new that are absent from old or whose value changed
        protected_keys: Removed keys that cannot be removed through a plain remove
        added_keys: Keys in to_add_or_update that were absent from old
    """

    to_remove: List[DiffItem] = field(default_factory=list)
    to_add_or_update: List[DiffItem] = field(default_factory=list)
    protected_keys: Tuple[str, ...] = ()
    added_keys: Tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.to_remove and not self.to_add_or_update

    def operations(self) -> List[Operation]:
        """Removes first, then adds and replaces."""
        ops = [Operation(REMOVE, item.key, item.value) for item in self.to_remove]
        for item in self.to_add_or_update:
            action = ADD if item.key in self.added_keys else REPLACE
            ops.append(Operation(action, item.key, item.value))
        return ops


class CollectionDiffer:
    """
    Diffs two declared collections.

    Args:
        case_insensitive_keys: Treat keys differing only in case as the same item
        case_insensitive_values: Treat values differing only in case as equal
        cannot_remove: Predicate marking keys that need a removal workaround
    """

    def __init__(
        self,
        case_insensitive_keys: bool = False,
        case_insensitive_values: bool = False,
        cannot_remove: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self.case_insensitive_keys = case_insensitive_keys
        self.case_insensitive_values = case_insensitive_values
        self.cannot_remove = cannot_remove

    def _fold_key(self, key: str) -> str:
        return key.lower() if self.case_insensitive_keys else key

    def _values_equal(self, a: str, b: str) -> bool:
        if self.case_insensitive_values:
            return a.lower() == b.lower()
        return a == b

    def _index(self, collection: DeclaredCollection, side: str) -> Dict[str, Tuple[str, str]]:
        indexed: Dict[str, Tuple[str, str]] = {}
        for key, value in collection.items():
            folded = self._fold_key(key)
            if folded in indexed:
                raise ValueError(f"duplicate key {key!r} in {side} collection (conflicts with {indexed[folded][0]!r})")
            indexed[folded] = (key, value)
        return indexed

    def diff(self, old: Optional[DeclaredCollection], new: Optional[DeclaredCollection]) -> DiffResult:
        """
        Compute removals and additions/updates between two collections.

        Args:
            old: Collection currently applied (None means empty)
            new: Collection that should be applied (None means empty)

        Returns:
            DiffResult sorted by key

        Raises:
            ValueError: If a collection holds two keys that fold to the same key
        """
        old_index = self._index(old or {}, "old")
        new_index = self._index(new or {}, "new")

        to_remove = [DiffItem(*old_index[k]) for k in old_index if k not in new_index]

        to_add_or_update = []
        added_keys = []
        for folded, (key, value) in new_index.items():
            previous = old_index.get(folded)
            if previous is None:
                added_keys.append(key)
                to_add_or_update.append(DiffItem(key, value))
            elif not self._values_equal(previous[1], value):
                to_add_or_update.append(DiffItem(key, value))

        to_remove.sort(key=lambda item: item.key)
        to_add_or_update.sort(key=lambda item: item.key)

        protected = ()
        if self.cannot_remove is not None:
            protected = tuple(item.key for item in to_remove if self.cannot_remove(item.key))
            if protected:
                logger.debug(f"Keys needing a removal workaround: {', '.join(protected)}")

        return DiffResult(
            to_remove=to_remove,
            to_add_or_update=to_add_or_update,
            protected_keys=protected,
            added_keys=tuple(sorted(added_keys)),
        )

