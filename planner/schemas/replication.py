"""Request/response models for the replication endpoints.

Documents stay plain dicts here: their fields differ per collection and are
validated by the collection's codec, not by pydantic.
"""

from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from pydantic import AliasChoices
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class PushRow(BaseModel):
    """A single client write.

    ``newDocumentState``/``assumedMasterState`` are accepted as aliases so
    RxDB replication clients can post their native payload unchanged.
    """

    model_config = ConfigDict(populate_by_name=True)

    newState: Dict[str, Any] = Field(
        ...,
        validation_alias=AliasChoices("newState", "newDocumentState"),
        description="Full document as the client wants it stored, including 'deleted'",
    )
    assumedState: Optional[Dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("assumedState", "assumedMasterState"),
        description="Document as the client last saw it on the server",
    )


class PullResponse(BaseModel):
    """Next batch of changes plus the checkpoint to resume from."""

    documents: List[Dict[str, Any]] = Field(..., description="Changed documents in pull order")
    checkpoint: Optional[Dict[str, str]] = Field(
        None, description="Identity and changeTime of the last document; null before the first row"
    )


class CollectionInfo(BaseModel):
    name: str
    identityField: str
    uniqueConstraint: Optional[str] = None
    structuredFields: List[str]
