"""Planner replication API router.

Exposes one pull/push endpoint pair per registered collection:

* ``GET  /api/planner/{collection}/pull`` – checkpoint-based incremental pull
* ``POST /api/planner/{collection}/push`` – optimistic batch push; conflicts
  are returned in a normal 200 response

Routes are generated from :data:`planner.replication.registry.COLLECTIONS` so
the handlers stay identity-agnostic; only the pull query parameter name
follows the collection's identity field.
"""

import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import status
from sqlalchemy.orm import Session

from planner.config import get_settings
from planner.constants import PLANNER_PREFIX
from planner.database import get_db
from planner.dependencies.auth import get_current_owner
from planner.replication.codec import WIRE_DELETED
from planner.replication.exceptions import ReplicationError
from planner.replication.exceptions import StorageError
from planner.replication.exceptions import UnauthenticatedError
from planner.replication.exceptions import ValidationError
from planner.replication.pull import CHANGE_TIME_KEY
from planner.replication.pull import Checkpoint
from planner.replication.pull import pull_changes
from planner.replication.push import WriteIntent
from planner.replication.push import push_changes
from planner.replication.registry import COLLECTIONS
from planner.replication.registry import CollectionConfig
from planner.schemas.replication import CollectionInfo
from planner.schemas.replication import PullResponse
from planner.schemas.replication import PushRow

logger = logging.getLogger(__name__)

router = APIRouter(prefix=PLANNER_PREFIX, tags=["replication"])


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


def _to_http(exc: ReplicationError, where: str) -> HTTPException:
    if isinstance(exc, UnauthenticatedError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, StorageError):
        logger.error(f"Storage failure in {where}: {exc}")
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to persist replication batch",
        )
    logger.error(f"Unexpected replication error in {where}: {exc}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Replication failed")


def _check_state(collection: CollectionConfig, state: Dict[str, Any], label: str, index: int) -> None:
    if not isinstance(collection.get_identity(state), str):
        raise ValidationError(f"Row {index}: {label}.{collection.identity_field} must be a string")
    if not isinstance(state.get(WIRE_DELETED), bool):
        raise ValidationError(f"Row {index}: {label}.{WIRE_DELETED} must be a boolean")


# ---------------------------------------------------------------------------
# Route factory
# ---------------------------------------------------------------------------


def _register(collection: CollectionConfig) -> None:
    name = collection.name

    def pull(
        identity: Optional[str] = Query(
            None, alias=collection.identity_field, description="Identity part of the checkpoint"
        ),
        change_time: Optional[str] = Query(
            None, alias=CHANGE_TIME_KEY, description="Change-time part of the checkpoint (ISO-8601)"
        ),
        batch_size: Optional[int] = Query(None, alias="batchSize", ge=1, description="Maximum documents to return"),
        db: Session = Depends(get_db),
        owner: str = Depends(get_current_owner),
    ) -> Dict[str, Any]:
        settings = get_settings()
        size = batch_size or settings.replication_default_batch_size
        size = min(size, settings.replication_max_batch_size)

        try:
            checkpoint = Checkpoint.from_wire(identity, change_time)
            result = pull_changes(db, collection, owner, checkpoint, size)
        except ReplicationError as exc:
            raise _to_http(exc, f"{name}/pull")

        return result.to_wire(collection)

    def push(
        rows: List[PushRow],
        db: Session = Depends(get_db),
        owner: str = Depends(get_current_owner),
    ) -> List[Dict[str, Any]]:
        try:
            intents = []
            for index, row in enumerate(rows):
                _check_state(collection, row.newState, "newState", index)
                if row.assumedState is not None:
                    _check_state(collection, row.assumedState, "assumedState", index)
                intents.append(WriteIntent(new_state=row.newState, assumed_state=row.assumedState))

            return push_changes(db, collection, owner, intents, partial=get_settings().replication_partial_apply)
        except ReplicationError as exc:
            raise _to_http(exc, f"{name}/push")

    router.add_api_route(
        f"/{name}/pull",
        pull,
        methods=["GET"],
        response_model=PullResponse,
        name=f"pull_{name}",
        summary=f"Pull {name} changes after a checkpoint",
    )
    router.add_api_route(
        f"/{name}/push",
        push,
        methods=["POST"],
        response_model=List[Dict[str, Any]],
        name=f"push_{name}",
        summary=f"Push {name} writes; returns conflicting documents",
    )


for _collection in COLLECTIONS:
    _register(_collection)


@router.get("/collections", response_model=List[CollectionInfo])
def list_collections() -> List[Dict[str, Any]]:
    """Describe the replicated collections for client bootstrapping."""
    return [collection.describe() for collection in COLLECTIONS]
