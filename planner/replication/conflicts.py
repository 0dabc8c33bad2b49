"""Whole-document conflict detection for optimistic pushes."""

from typing import Any
from typing import Mapping
from typing import Optional


def deep_equal(left: Any, right: Any) -> bool:
    """Structural equality over decoded JSON values.

    Objects compare regardless of key order, lists compare positionally, and
    booleans never equal numbers (``True != 1`` here, unlike plain ``==``).
    """

    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right

    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if left.keys() != right.keys():
            return False
        return all(deep_equal(left[key], right[key]) for key in left)

    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        if len(left) != len(right):
            return False
        return all(deep_equal(a, b) for a, b in zip(left, right))

    if isinstance(left, (Mapping, list, tuple)) or isinstance(right, (Mapping, list, tuple)):
        return False

    return left == right


def _drop_nulls(document: Mapping[str, Any]) -> dict:
    # A null top-level field and an absent one mean the same on the wire
    return {key: value for key, value in document.items() if value is not None}


def documents_equal(stored: Mapping[str, Any], assumed: Mapping[str, Any]) -> bool:
    return deep_equal(_drop_nulls(stored), _drop_nulls(assumed))


def is_conflict(stored: Optional[Mapping[str, Any]], assumed: Optional[Mapping[str, Any]]) -> bool:
    """Return *True* when the client's assumed state no longer matches storage.

    No assumed state means an unconditional write, and an assumed state for a
    row the server has never stored is accepted as a create.  Neither case is
    a conflict.
    """

    if assumed is None or stored is None:
        return False
    return not documents_equal(stored, assumed)


__all__ = ["deep_equal", "documents_equal", "is_conflict"]
