"""Exceptions raised by the replication handlers.

Conflicts are *not* represented here: a conflicting write is a normal outcome
returned as data by :func:`planner.replication.push.push_changes`.
"""


class ReplicationError(Exception):
    """Base exception for all replication failures."""

    pass


class UnauthenticatedError(ReplicationError):
    """Raised when a handler is invoked without an owner identity."""

    def __init__(self, message: str = "User ID is required"):
        super().__init__(message)


class ValidationError(ReplicationError):
    """Raised when a pull or push request is malformed.

    Always raised before storage is touched.
    """

    pass


class UnknownCollectionError(ValidationError):
    """Raised when a collection name is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown collection '{name}'")


class StorageError(ReplicationError):
    """Raised when the store fails while reading or applying a batch.

    Covers constraint violations, connectivity failures and stored values the
    codec cannot decode.  The surrounding transaction is rolled back before
    this propagates.
    """

    def __init__(self, message: str, cause: Exception = None):
        self.cause = cause
        if cause:
            message += f": {cause}"
        super().__init__(message)
