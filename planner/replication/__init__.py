"""Checkpoint-based bidirectional replication of planner collections."""

from planner.replication.exceptions import ReplicationError
from planner.replication.exceptions import StorageError
from planner.replication.exceptions import UnauthenticatedError
from planner.replication.exceptions import UnknownCollectionError
from planner.replication.exceptions import ValidationError
from planner.replication.pull import Checkpoint
from planner.replication.pull import PullResult
from planner.replication.pull import pull_changes
from planner.replication.push import WriteIntent
from planner.replication.push import push_changes
from planner.replication.registry import COLLECTIONS
from planner.replication.registry import CollectionConfig
from planner.replication.registry import get_collection

__all__ = [
    "COLLECTIONS",
    "Checkpoint",
    "CollectionConfig",
    "PullResult",
    "ReplicationError",
    "StorageError",
    "UnauthenticatedError",
    "UnknownCollectionError",
    "ValidationError",
    "WriteIntent",
    "get_collection",
    "pull_changes",
    "push_changes",
]
