"""
Composite Identifier Module.

Packs several natural keys (name, account, region, ...) into the single ID
string Terraform stores, and unpacks it again on import and read. Parts that
are empty or contain the delimiter are rejected rather than escaped.
"""

from typing import List, Optional, Sequence

from .errors import CompositeIdError


class CompositeId:
    """
    Encoder/decoder for delimited composite IDs.

    Args:
        delimiter: Separator placed between parts
        field_names: Part names used in error messages (e.g. ``["NAME", "ACCOUNT"]``)
    """

    def __init__(self, delimiter: str = ":", field_names: Optional[Sequence[str]] = None) -> None:
        if not delimiter:
            raise ValueError("delimiter must not be empty")
        self.delimiter = delimiter
        self.field_names = list(field_names) if field_names else None

    def _expected_format(self, arity: int) -> str:
        names = self.field_names if self.field_names and len(self.field_names) == arity else None
        if names is None:
            names = [f"PART{i + 1}" for i in range(arity)]
        return self.delimiter.join(names)

    def encode(self, parts: Sequence[str]) -> str:
        """
        Join ``parts`` into one identifier.

        Raises:
            CompositeIdError: If there are no parts, or a part is empty or contains the delimiter
        """
        parts = list(parts)
        if not parts:
            raise CompositeIdError("cannot encode an ID with no parts", parts)

        for i, part in enumerate(parts):
            if not isinstance(part, str) or part == "":
                raise CompositeIdError(f"unable to encode ID: part {i + 1} is empty", parts)
            if self.delimiter in part:
                raise CompositeIdError(
                    f"unable to encode ID: part {i + 1} ({part}) contains the delimiter {self.delimiter!r}", parts
                )

        return self.delimiter.join(parts)

    def decode(self, id: str, expected_arity: Optional[int] = None) -> List[str]:
        """
        Split an identifier into exactly ``expected_arity`` non-empty parts.

        ``expected_arity`` defaults to the number of field names.

        Raises:
            CompositeIdError: If the number of parts differs or any part is empty
        """
        if expected_arity is None:
            if not self.field_names:
                raise ValueError("expected_arity is required when no field names are configured")
            expected_arity = len(self.field_names)
        if expected_arity < 1:
            raise ValueError("expected_arity must be at least 1")

        parts = id.split(self.delimiter) if id else []
        if len(parts) != expected_arity or any(part == "" for part in parts):
            raise CompositeIdError(
                f"unexpected format of ID ({id}), expected {self._expected_format(expected_arity)}", parts
            )
        return parts


def encode_id(parts: Sequence[str], delimiter: str = ":") -> str:
    return CompositeId(delimiter).encode(parts)


def decode_id(id: str, expected_arity: int, delimiter: str = ":") -> List[str]:
    return CompositeId(delimiter).decode(id, expected_arity)
