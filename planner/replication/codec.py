"""Reversible mapping between wire documents and storage rows.

A *wire document* is the dict exchanged with clients: payload fields, the
collection's identity field and the ``deleted`` tombstone flag.  A *storage
row* additionally carries the owner and change-time, names the tombstone
``is_deleted`` and keeps semi-structured fields (lists and objects) as JSON
text.

Each collection declares its semi-structured fields as :class:`StructuredField`
entries; :class:`FieldCodec` applies them uniformly so call sites never
type-check field values themselves.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from typing import Dict
from typing import Mapping
from typing import Sequence

from planner.replication.exceptions import StorageError
from planner.replication.exceptions import ValidationError

WIRE_DELETED = "deleted"
STORE_DELETED = "is_deleted"
OWNER_COLUMN = "user_id"
CHANGE_TIME_COLUMN = "change_time"

_INTERNAL_COLUMNS = frozenset({OWNER_COLUMN, CHANGE_TIME_COLUMN, STORE_DELETED})

# Column python type -> accepted wire types
_SCALAR_TYPES = {
    str: (str,),
    int: (int,),
    float: (int, float),
    bool: (bool,),
}


@dataclass(frozen=True)
class StructuredField:
    """A payload field that is a list/object on the wire and text in storage."""

    name: str
    kind: type  # ``list`` or ``dict``

    def empty(self) -> Any:
        return self.kind()

    def encode(self, value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            # Pre-encoded text must decode to this field's kind once stored
            try:
                value = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"Field '{self.name}' is not valid JSON") from exc
            if not isinstance(value, self.kind):
                raise ValidationError(
                    f"Field '{self.name}' must encode a {self.kind.__name__}, got {type(value).__name__}"
                )
        if isinstance(value, self.kind):
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        raise ValidationError(
            f"Field '{self.name}' must be a {self.kind.__name__} or an encoded string, got {type(value).__name__}"
        )

    def decode(self, value: Any) -> Any:
        if value is None:
            return self.empty()
        if not isinstance(value, str):
            # Already structured (e.g. a JSON column on another dialect)
            return value
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Stored field '{self.name}' is not valid JSON", exc) from exc
        if not isinstance(parsed, self.kind):
            raise StorageError(f"Stored field '{self.name}' decoded to {type(parsed).__name__}, expected {self.kind.__name__}")
        return parsed


class FieldCodec:
    """Per-collection ``encode``/``decode`` pair.

    ``decode(encode(doc)) == doc`` holds for every valid document, i.e. one
    whose structured fields are given in structured form and whose null
    scalars are simply absent.
    """

    def __init__(self, model: Any, identity_field: str, structured_fields: Sequence[StructuredField] = ()):
        self.model = model
        self.identity_field = identity_field
        self.structured = {field.name: field for field in structured_fields}

        columns = {column.key: column for column in model.__table__.columns}
        self.payload_columns = {key: column for key, column in columns.items() if key not in _INTERNAL_COLUMNS}

        unknown = set(self.structured) - set(self.payload_columns)
        if unknown:
            raise ValueError(f"{model.__name__} has no column(s) for structured fields: {sorted(unknown)}")
        if identity_field not in self.payload_columns:
            raise ValueError(f"{model.__name__} has no identity column '{identity_field}'")

    # ------------------------------------------------------------------
    # storage -> wire
    # ------------------------------------------------------------------

    def decode(self, row: Any) -> Dict[str, Any]:
        """Project a stored row (ORM instance or mapping) onto its wire shape."""

        values = _row_values(row, list(self.payload_columns) + [STORE_DELETED])
        document: Dict[str, Any] = {}

        for key in self.payload_columns:
            value = values.get(key)
            field = self.structured.get(key)
            if field is not None:
                document[key] = field.decode(value)
            elif value is not None:
                document[key] = value

        document[WIRE_DELETED] = bool(values.get(STORE_DELETED) or False)
        return document

    # ------------------------------------------------------------------
    # wire -> storage
    # ------------------------------------------------------------------

    def encode(self, document: Mapping[str, Any], owner: str | None = None) -> Dict[str, Any]:
        """Turn a wire document into column values.

        Every payload column is present in the result (absent fields become
        ``None``) so the values can overwrite a stored row wholesale.  The
        owner is attached when given; ``is_deleted`` mirrors the document's
        tombstone flag and defaults to false.
        """

        if not isinstance(document, Mapping):
            raise ValidationError("Document must be an object")

        unknown = set(document) - set(self.payload_columns) - {WIRE_DELETED}
        if unknown:
            raise ValidationError(f"Unknown field(s) for {self.model.__tablename__}: {', '.join(sorted(unknown))}")

        identity = document.get(self.identity_field)
        if not isinstance(identity, str) or not identity:
            raise ValidationError(f"Field '{self.identity_field}' must be a non-empty string")

        deleted = document.get(WIRE_DELETED, False)
        if not isinstance(deleted, bool):
            raise ValidationError(f"Field '{WIRE_DELETED}' must be a boolean")

        row: Dict[str, Any] = {}
        for key, column in self.payload_columns.items():
            value = document.get(key)
            field = self.structured.get(key)
            if field is not None:
                row[key] = field.encode(value)
            else:
                row[key] = _check_scalar(key, column, value)

        if owner is not None:
            row[OWNER_COLUMN] = owner
        row[STORE_DELETED] = deleted
        return row


def _row_values(row: Any, keys: Sequence[str]) -> Dict[str, Any]:
    if isinstance(row, Mapping):
        return {key: row.get(key) for key in keys}
    return {key: getattr(row, key, None) for key in keys}


def _check_scalar(key: str, column: Any, value: Any) -> Any:
    if value is None:
        return None

    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value

    accepted = _SCALAR_TYPES.get(python_type)
    if accepted is None:
        return value
    # bool is an int subclass; keep the two apart
    if isinstance(value, bool) and python_type is not bool:
        raise ValidationError(f"Field '{key}' must be {python_type.__name__}, got bool")
    if not isinstance(value, accepted):
        raise ValidationError(f"Field '{key}' must be {python_type.__name__}, got {type(value).__name__}")
    return value


__all__ = ["FieldCodec", "StructuredField", "WIRE_DELETED", "STORE_DELETED"]
