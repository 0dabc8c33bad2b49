"""ORM rows for the replicated planner collections.

Each collection stores the owner, a server-assigned change-time and a storage
tombstone next to its payload columns.  Semi-structured payload fields (lists
and objects on the wire) are persisted as JSON text in ``Text`` columns and
translated by :mod:`planner.replication.codec`.
"""

from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Index
from sqlalchemy import Integer
from sqlalchemy import PrimaryKeyConstraint
from sqlalchemy import String
from sqlalchemy import Text

from planner.database import Base


class ReplicatedMixin:
    """Columns shared by every replicated collection."""

    # Opaque authenticated owner identifier
    user_id = Column(String, nullable=False, index=True)

    # Server-assigned logical clock, refreshed on every accepted write
    change_time = Column(DateTime, nullable=False)

    # Soft delete – the row is kept so other devices converge on the deletion
    is_deleted = Column(Boolean, nullable=False, default=False)


# ---------------------------------------------------------------------------
# Folders – identity ``id`` unique per owner
# ---------------------------------------------------------------------------


class Folder(ReplicatedMixin, Base):
    __tablename__ = "folders"
    __table_args__ = (
        PrimaryKeyConstraint("user_id", "id", name="folders_user_id_id"),
        Index("ix_folders_pull", "user_id", "change_time", "id"),
    )

    id = Column(String, nullable=False)
    planner_id = Column(String, nullable=True)
    title = Column(String, nullable=True)
    color = Column(String, nullable=True)
    expanded = Column(Boolean, nullable=True)
    order = Column(Integer, nullable=True)


# ---------------------------------------------------------------------------
# Items – identity ``uuid`` is globally unique; ``id`` names the course
# ---------------------------------------------------------------------------


class Item(ReplicatedMixin, Base):
    __tablename__ = "items"
    __table_args__ = (Index("ix_items_pull", "user_id", "change_time", "uuid"),)

    uuid = Column(String, primary_key=True)
    id = Column(String, nullable=True, index=True)
    planner_id = Column(String, nullable=True)
    folder_id = Column(String, nullable=True)
    title = Column(String, nullable=True)
    semester = Column(String, nullable=True)
    credits = Column(Integer, nullable=True)
    order = Column(Integer, nullable=True)
    note = Column(Text, nullable=True)
    raw = Column(Text, nullable=True)  # JSON object
    dependson = Column(Text, nullable=True)  # JSON list


# ---------------------------------------------------------------------------
# Planner metadata – one row per planner
# ---------------------------------------------------------------------------


class PlannerData(ReplicatedMixin, Base):
    __tablename__ = "planner_data"
    __table_args__ = (
        PrimaryKeyConstraint("user_id", "id", name="planner_data_user_id_id"),
        Index("ix_planner_data_pull", "user_id", "change_time", "id"),
    )

    id = Column(String, nullable=False)
    title = Column(String, nullable=True)
    department = Column(String, nullable=True)
    year = Column(Integer, nullable=True)
    include_semesters = Column(Text, nullable=True)  # JSON list
    settings = Column(Text, nullable=True)  # JSON object


# ---------------------------------------------------------------------------
# Semesters
# ---------------------------------------------------------------------------


class Semester(ReplicatedMixin, Base):
    __tablename__ = "semesters"
    __table_args__ = (
        PrimaryKeyConstraint("user_id", "id", name="semesters_user_id_id"),
        Index("ix_semesters_pull", "user_id", "change_time", "id"),
    )

    id = Column(String, nullable=False)
    planner_id = Column(String, nullable=True)
    title = Column(String, nullable=True)
    year = Column(Integer, nullable=True)
    term = Column(String, nullable=True)
    order = Column(Integer, nullable=True)
    courses = Column(Text, nullable=True)  # JSON list
