"""Checkpoint-based incremental pull.

Rows are streamed per owner in ``(change_time, identity)`` order.  A
checkpoint is the position of the last row a client consumed; the next pull
returns rows strictly after it, so repeated pulls never re-deliver and never
skip a committed row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy import and_
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from planner.replication.exceptions import StorageError
from planner.replication.exceptions import UnauthenticatedError
from planner.replication.exceptions import ValidationError
from planner.replication.registry import CollectionConfig
from planner.utils.time import format_change_time
from planner.utils.time import parse_change_time

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
CHANGE_TIME_KEY = "changeTime"


@dataclass(frozen=True)
class Checkpoint:
    """Position of the last consumed row in a collection's change stream."""

    identity: str
    change_time: datetime

    def to_wire(self, identity_field: str) -> Dict[str, str]:
        return {identity_field: self.identity, CHANGE_TIME_KEY: format_change_time(self.change_time)}

    @classmethod
    def from_wire(cls, identity: Optional[str], change_time: Optional[str]) -> Optional["Checkpoint"]:
        """Build a checkpoint from request values; ``None`` when no cursor was sent.

        A cursor without identity resumes before every row sharing that
        change-time.
        """
        if change_time is None or change_time == "":
            return None
        try:
            parsed = parse_change_time(change_time)
        except ValueError as exc:
            raise ValidationError(f"Invalid change-time cursor '{change_time}'") from exc
        return cls(identity=identity or "", change_time=parsed)


@dataclass
class PullResult:
    documents: List[Dict[str, Any]]
    checkpoint: Optional[Checkpoint]

    def to_wire(self, collection: CollectionConfig) -> Dict[str, Any]:
        return {
            "documents": self.documents,
            "checkpoint": self.checkpoint.to_wire(collection.identity_field) if self.checkpoint else None,
        }


def pull_changes(
    db: Session,
    collection: CollectionConfig,
    owner: Optional[str],
    checkpoint: Optional[Checkpoint] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> PullResult:
    """Return the next batch of *owner*'s rows after *checkpoint*.

    An empty batch hands back the checkpoint unchanged (``None`` on a first
    sync) which tells the client the current round is complete.
    """

    if not owner:
        raise UnauthenticatedError()
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
        raise ValidationError(f"batchSize must be a positive integer, got {batch_size!r}")

    model = collection.model
    change_time = collection.change_time_column
    identity = collection.identity_column

    query = db.query(model).filter(collection.owner_column == owner)
    if checkpoint is not None:
        query = query.filter(
            or_(
                change_time > checkpoint.change_time,
                and_(change_time == checkpoint.change_time, identity > checkpoint.identity),
            )
        )

    try:
        rows = query.order_by(change_time.asc(), identity.asc()).limit(batch_size).all()
    except SQLAlchemyError as exc:
        logger.error(f"Pull query failed for {collection.name}: {exc}", exc_info=True)
        raise StorageError(f"Failed to read {collection.name}", exc) from exc

    if not rows:
        return PullResult(documents=[], checkpoint=checkpoint)

    documents = [collection.codec.decode(row) for row in rows]
    last = rows[-1]
    next_checkpoint = Checkpoint(identity=getattr(last, collection.identity_field), change_time=last.change_time)

    logger.debug(
        "Pulled %d %s row(s) for %s up to %s", len(rows), collection.name, owner, next_checkpoint.change_time
    )
    return PullResult(documents=documents, checkpoint=next_checkpoint)


__all__ = ["Checkpoint", "PullResult", "pull_changes", "DEFAULT_BATCH_SIZE"]
