"""Static per-collection replication configuration.

The registry is the single place that knows which field identifies a document
and whether a collection is keyed by a compound (owner, identity) constraint
or by a globally unique identity.  Pull and push handlers only ever talk to a
:class:`CollectionConfig`, never to a concrete field name.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

from sqlalchemy import PrimaryKeyConstraint
from sqlalchemy import UniqueConstraint

from planner.models.models import Folder
from planner.models.models import Item
from planner.models.models import PlannerData
from planner.models.models import Semester
from planner.replication.codec import OWNER_COLUMN
from planner.replication.codec import FieldCodec
from planner.replication.codec import StructuredField
from planner.replication.exceptions import UnknownCollectionError

ORDER_ASC = "asc"


@dataclass(frozen=True)
class CollectionConfig:
    name: str
    model: Any
    identity_field: str
    unique_constraint: Optional[str] = None
    structured_fields: Tuple[StructuredField, ...] = ()
    codec: FieldCodec = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "codec", FieldCodec(self.model, self.identity_field, self.structured_fields))
        if self.unique_constraint is not None:
            # Resolved eagerly so a bad constraint name fails at import
            self.key_columns  # noqa: B018

    # Identity capability --------------------------------------------------

    def get_identity(self, document: Dict[str, Any]) -> Any:
        return document.get(self.identity_field)

    def with_identity(self, document: Dict[str, Any], value: str) -> Dict[str, Any]:
        return {**document, self.identity_field: value}

    # Storage helpers ------------------------------------------------------

    @property
    def identity_column(self):
        return getattr(self.model, self.identity_field)

    @property
    def change_time_column(self):
        return self.model.change_time

    @property
    def owner_column(self):
        return getattr(self.model, OWNER_COLUMN)

    @property
    def order_by(self) -> List[Tuple[str, str]]:
        """Stable pull order: change-time ascending, identity ascending."""
        return [("change_time", ORDER_ASC), (self.identity_field, ORDER_ASC)]

    @property
    def key_columns(self) -> Tuple[str, ...]:
        """Columns that locate one owner's row.

        With a compound constraint these are the constraint's own columns;
        otherwise the (globally unique) identity narrowed to the owner.
        """
        if self.unique_constraint is None:
            return (OWNER_COLUMN, self.identity_field)

        for constraint in self.model.__table__.constraints:
            if isinstance(constraint, (PrimaryKeyConstraint, UniqueConstraint)) and (
                constraint.name == self.unique_constraint
            ):
                return tuple(column.key for column in constraint.columns)
        raise ValueError(f"{self.model.__name__} has no constraint named '{self.unique_constraint}'")

    def key_filter(self, owner: str, identity: str) -> Dict[str, str]:
        """``filter_by`` arguments for the row identified by *owner*/*identity*."""
        values = {OWNER_COLUMN: owner, self.identity_field: identity}
        return {column: values[column] for column in self.key_columns}

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "identityField": self.identity_field,
            "uniqueConstraint": self.unique_constraint,
            "structuredFields": [f.name for f in self.structured_fields],
        }


# ---------------------------------------------------------------------------
# Registered collections
# ---------------------------------------------------------------------------

FOLDERS = CollectionConfig(
    name="folders",
    model=Folder,
    identity_field="id",
    unique_constraint="folders_user_id_id",
)

ITEMS = CollectionConfig(
    name="items",
    model=Item,
    identity_field="uuid",
    structured_fields=(
        StructuredField("raw", dict),
        StructuredField("dependson", list),
    ),
)

PLANNER_DATA = CollectionConfig(
    name="plannerdata",
    model=PlannerData,
    identity_field="id",
    unique_constraint="planner_data_user_id_id",
    structured_fields=(
        StructuredField("include_semesters", list),
        StructuredField("settings", dict),
    ),
)

SEMESTERS = CollectionConfig(
    name="semesters",
    model=Semester,
    identity_field="id",
    unique_constraint="semesters_user_id_id",
    structured_fields=(StructuredField("courses", list),),
)

COLLECTIONS: Tuple[CollectionConfig, ...] = (FOLDERS, ITEMS, PLANNER_DATA, SEMESTERS)

_BY_NAME: Dict[str, CollectionConfig] = {config.name: config for config in COLLECTIONS}


def get_collection(name: str) -> CollectionConfig:
    """Return the configuration registered under *name*."""

    try:
        return _BY_NAME[name]
    except KeyError:
        raise UnknownCollectionError(name) from None


__all__ = [
    "CollectionConfig",
    "COLLECTIONS",
    "FOLDERS",
    "ITEMS",
    "PLANNER_DATA",
    "SEMESTERS",
    "get_collection",
]
