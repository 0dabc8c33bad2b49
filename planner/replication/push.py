"""Optimistic, transactional push of client writes.

A push batch is handled in two phases inside one transaction:

1. **Conflict scan** – every intent's stored row is read (locked where the
   dialect supports ``FOR UPDATE``) and compared with the intent's assumed
   state.  Nothing is written.
2. **Apply** – runs only when the scan found no conflict anywhere in the
   batch.  Tombstones are soft-deletes; everything else is an upsert keyed by
   (owner, identity).  Each write gets a fresh change-time.

The return value is the list of conflicting rows in wire shape; an empty list
means the whole batch landed.  With ``partial=True`` non-conflicting intents
are committed and only the conflicting ones are skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta
from typing import Any
from typing import Dict
from typing import List
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from planner.replication.codec import STORE_DELETED
from planner.replication.codec import WIRE_DELETED
from planner.replication.conflicts import is_conflict
from planner.replication.exceptions import ReplicationError
from planner.replication.exceptions import StorageError
from planner.replication.exceptions import UnauthenticatedError
from planner.replication.exceptions import ValidationError
from planner.replication.registry import CollectionConfig
from planner.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

# Smallest step that keeps a row's change-time strictly advancing
_CLOCK_TICK = timedelta(microseconds=1)

_NEW_STATE_KEYS = ("newState", "newDocumentState")
_ASSUMED_STATE_KEYS = ("assumedState", "assumedMasterState")


@dataclass
class WriteIntent:
    """One client write: the full new document and, optionally, the state the
    client last observed for it."""

    new_state: Dict[str, Any]
    assumed_state: Optional[Dict[str, Any]] = None

    @classmethod
    def from_wire(cls, row: Mapping[str, Any]) -> "WriteIntent":
        if not isinstance(row, Mapping):
            raise ValidationError("Each push row must be an object")

        new_state = _first_present(row, _NEW_STATE_KEYS)
        if new_state is None:
            raise ValidationError("Push row is missing 'newState'")
        return cls(new_state=new_state, assumed_state=_first_present(row, _ASSUMED_STATE_KEYS))


@dataclass
class _Prepared:
    intent: WriteIntent
    identity: str
    values: Dict[str, Any]
    # Assumed state in decoded wire shape, comparable with a decoded row
    assumed: Optional[Dict[str, Any]] = None

    @property
    def deleting(self) -> bool:
        return bool(self.values[STORE_DELETED])


def _first_present(row: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None


def next_change_time(previous: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """Return a change-time strictly later than *previous*.

    Normally this is the current clock; if the clock has not moved past the
    stored value (skew, coarse resolution) the stored value is bumped by one
    microsecond instead so a pull never misses the write.
    """

    now = now or utc_now_naive()
    if previous is not None and now <= previous:
        return previous + _CLOCK_TICK
    return now


def push_changes(
    db: Session,
    collection: CollectionConfig,
    owner: Optional[str],
    rows: Sequence[Union[WriteIntent, Mapping[str, Any]]],
    partial: bool = False,
) -> List[Dict[str, Any]]:
    """Validate, conflict-check and apply *rows* for *owner*.

    Raises:
        UnauthenticatedError: no owner.
        ValidationError: malformed batch (raised before storage is touched).
        StorageError: the store failed; nothing from the batch is applied
            (in ``partial`` mode nothing from the failing commit is applied).
    """

    if not owner:
        raise UnauthenticatedError()

    prepared = _prepare(collection, owner, rows)
    if not prepared:
        return []

    try:
        conflicts, accepted = _scan(db, collection, owner, prepared)

        if conflicts and not partial:
            db.rollback()
            logger.info(
                "Rejected %s push of %d row(s) for %s: %d conflict(s)",
                collection.name,
                len(prepared),
                owner,
                len(conflicts),
            )
            return conflicts

        applied = 0
        for item, stored in accepted:
            race = _apply(db, collection, owner, item, stored)
            if race is None:
                applied += 1
                continue
            conflicts.append(race)
            if not partial:
                db.rollback()
                logger.info("Rejected %s push for %s: concurrent write to '%s'", collection.name, owner, item.identity)
                return conflicts

        db.commit()

    except ReplicationError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Failed to apply {collection.name} push for {owner}: {exc}", exc_info=True)
        raise StorageError(f"Failed to apply {collection.name} push", exc) from exc

    logger.info(
        "Applied %d of %d %s row(s) for %s",
        applied,
        len(prepared),
        collection.name,
        owner,
    )
    return conflicts


# ---------------------------------------------------------------------------
# Phase 0 – request validation (pure)
# ---------------------------------------------------------------------------


def _prepare(
    collection: CollectionConfig,
    owner: str,
    rows: Sequence[Union[WriteIntent, Mapping[str, Any]]],
) -> List[_Prepared]:
    if rows is None or isinstance(rows, (str, bytes, Mapping)):
        raise ValidationError("Push body must be a list of rows")

    prepared: List[_Prepared] = []
    seen = set()

    for index, row in enumerate(rows):
        intent = row if isinstance(row, WriteIntent) else WriteIntent.from_wire(row)

        try:
            values = collection.codec.encode(intent.new_state, owner)
        except ValidationError as exc:
            raise ValidationError(f"Row {index}: {exc}") from exc

        identity = collection.get_identity(intent.new_state)
        assumed = None

        if intent.assumed_state is not None:
            if not isinstance(intent.assumed_state, Mapping):
                raise ValidationError(f"Row {index}: assumed state must be an object")
            assumed_identity = collection.get_identity(intent.assumed_state)
            if assumed_identity is not None and assumed_identity != identity:
                raise ValidationError(
                    f"Row {index}: assumed state is for {collection.identity_field} '{assumed_identity}', "
                    f"not '{identity}'"
                )
            if not isinstance(intent.assumed_state.get(WIRE_DELETED, False), bool):
                raise ValidationError(f"Row {index}: assumed '{WIRE_DELETED}' must be a boolean")
            assumed = _normalise_assumed(collection, intent.assumed_state, identity, index)

        if identity in seen:
            raise ValidationError(f"{collection.identity_field} '{identity}' appears more than once in the batch")
        seen.add(identity)

        prepared.append(_Prepared(intent=intent, identity=identity, values=values, assumed=assumed))

    return prepared


def _normalise_assumed(
    collection: CollectionConfig, assumed_state: Mapping[str, Any], identity: str, index: int
) -> Dict[str, Any]:
    """Round-trip the assumed state through the codec.

    Absent or null structured fields then carry the same empty defaults a
    decoded stored row does.
    """

    codec = collection.codec
    try:
        return codec.decode(codec.encode(collection.with_identity(dict(assumed_state), identity)))
    except ValidationError as exc:
        raise ValidationError(f"Row {index}: assumed state: {exc}") from exc


# ---------------------------------------------------------------------------
# Phase 1 – conflict scan (read only)
# ---------------------------------------------------------------------------


def _load_stored(db: Session, collection: CollectionConfig, owner: str, identity: str, lock: bool = True):
    query = db.query(collection.model).filter_by(**collection.key_filter(owner, identity))
    if lock:
        query = query.with_for_update()
    return query.one_or_none()


def _scan(db: Session, collection: CollectionConfig, owner: str, prepared: List[_Prepared]):
    conflicts: List[Dict[str, Any]] = []
    accepted = []

    for item in prepared:
        stored = _load_stored(db, collection, owner, item.identity)
        if stored is not None and item.assumed is not None:
            stored_doc = collection.codec.decode(stored)
            if is_conflict(stored_doc, item.assumed):
                logger.debug("Conflict on %s '%s' for %s", collection.name, item.identity, owner)
                conflicts.append(stored_doc)
                continue
        accepted.append((item, stored))

    return conflicts, accepted


# ---------------------------------------------------------------------------
# Phase 2 – apply
# ---------------------------------------------------------------------------


def _apply(db: Session, collection: CollectionConfig, owner: str, item: _Prepared, stored) -> Optional[Dict[str, Any]]:
    """Write one intent inside a savepoint.

    Returns the stored row as a conflict when an insert loses a race against
    a concurrent create of the same identity, ``None`` otherwise.
    """

    if item.deleting:
        if stored is None:
            logger.debug("Ignoring delete of unknown %s '%s' for %s", collection.name, item.identity, owner)
            return None
        with db.begin_nested():
            stored.is_deleted = True
            stored.change_time = next_change_time(stored.change_time)
            db.flush()
        return None

    if stored is not None:
        with db.begin_nested():
            for key, value in item.values.items():
                setattr(stored, key, value)
            stored.is_deleted = False
            stored.change_time = next_change_time(stored.change_time)
            db.flush()
        return None

    try:
        with db.begin_nested():
            db.add(collection.model(**item.values, change_time=next_change_time(None)))
            db.flush()
    except IntegrityError as exc:
        return _race_conflict(db, collection, owner, item.identity, exc)
    return None


def _race_conflict(
    db: Session, collection: CollectionConfig, owner: str, identity: str, exc: IntegrityError
) -> Dict[str, Any]:
    current = _load_stored(db, collection, owner, identity, lock=False)
    if current is not None:
        logger.debug("Concurrent create of %s '%s' for %s reported as conflict", collection.name, identity, owner)
        return collection.codec.decode(current)

    taken = db.query(collection.model).filter(collection.identity_column == identity).first()
    if taken is not None:
        raise ValidationError(f"{collection.identity_field} '{identity}' is already in use")
    raise StorageError(f"Failed to insert {collection.name} '{identity}'", exc)


__all__ = ["WriteIntent", "push_changes", "next_change_time"]
