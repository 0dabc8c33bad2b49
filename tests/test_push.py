"""Tests for the optimistic push handler."""

from datetime import datetime
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

import planner.replication.push as push_mod
from planner.models.models import Folder
from planner.models.models import Item
from planner.replication.exceptions import StorageError
from planner.replication.exceptions import UnauthenticatedError
from planner.replication.exceptions import ValidationError
from planner.replication.pull import pull_changes
from planner.replication.push import WriteIntent
from planner.replication.push import next_change_time
from planner.replication.push import push_changes
from planner.replication.registry import FOLDERS
from planner.replication.registry import ITEMS
from planner.replication.registry import SEMESTERS

OWNER = "user-1"
OTHER_OWNER = "user-2"

SEEDED_AT = datetime(2024, 1, 1, 12, 0, 0)


def _stored(db, model, **key):
    db.expire_all()
    return db.query(model).filter_by(**key).one_or_none()


def _folder_docs(db, owner=OWNER):
    return pull_changes(db, FOLDERS, owner, batch_size=100).documents


def test_create_then_pull(db_session):
    conflicts = push_changes(
        db_session,
        FOLDERS,
        OWNER,
        [{"newState": {"id": "f1", "title": "Core", "deleted": False}}],
    )

    assert conflicts == []
    assert _folder_docs(db_session) == [{"id": "f1", "title": "Core", "deleted": False}]


def test_stale_assumed_state_is_rejected(db_session, seed):
    seed(FOLDERS, {"id": "f1", "title": "Server", "deleted": False})

    conflicts = push_changes(
        db_session,
        FOLDERS,
        OWNER,
        [
            {
                "newState": {"id": "f1", "title": "Client", "deleted": False},
                "assumedState": {"id": "f1", "title": "Old", "deleted": False},
            }
        ],
    )

    assert conflicts == [{"id": "f1", "title": "Server", "deleted": False}]
    row = _stored(db_session, Folder, user_id=OWNER, id="f1")
    assert row.title == "Server"
    assert row.change_time == SEEDED_AT


def test_matching_assumed_state_is_applied(db_session, seed):
    seed(FOLDERS, {"id": "f1", "title": "Server", "deleted": False})

    conflicts = push_changes(
        db_session,
        FOLDERS,
        OWNER,
        [
            WriteIntent(
                new_state={"id": "f1", "title": "Client", "deleted": False},
                assumed_state={"id": "f1", "title": "Server", "deleted": False},
            )
        ],
    )

    assert conflicts == []
    row = _stored(db_session, Folder, user_id=OWNER, id="f1")
    assert row.title == "Client"
    assert row.change_time > SEEDED_AT


def test_delete_is_a_soft_delete(db_session, seed):
    seed(FOLDERS, {"id": "f1", "title": "Core", "deleted": False})

    conflicts = push_changes(
        db_session,
        FOLDERS,
        OWNER,
        [
            {
                "newState": {"id": "f1", "title": "Core", "deleted": True},
                "assumedState": {"id": "f1", "title": "Core", "deleted": False},
            }
        ],
    )

    assert conflicts == []
    row = _stored(db_session, Folder, user_id=OWNER, id="f1")
    assert row is not None
    assert row.is_deleted is True
    assert row.change_time > SEEDED_AT
    assert _folder_docs(db_session) == [{"id": "f1", "title": "Core", "deleted": True}]


def test_conflict_anywhere_rejects_whole_batch(db_session, seed):
    seed(FOLDERS, {"id": "f1", "title": "Server", "deleted": False})

    conflicts = push_changes(
        db_session,
        FOLDERS,
        OWNER,
        [
            {"newState": {"id": "f0", "title": "New", "deleted": False}},
            {
                "newState": {"id": "f1", "title": "Client", "deleted": False},
                "assumedState": {"id": "f1", "title": "Stale", "deleted": False},
            },
        ],
    )

    assert conflicts == [{"id": "f1", "title": "Server", "deleted": False}]
    assert _stored(db_session, Folder, user_id=OWNER, id="f0") is None


def test_partial_mode_applies_non_conflicting_rows(db_session, seed):
    seed(FOLDERS, {"id": "f1", "title": "Server", "deleted": False})

    conflicts = push_changes(
        db_session,
        FOLDERS,
        OWNER,
        [
            {"newState": {"id": "f0", "title": "New", "deleted": False}},
            {
                "newState": {"id": "f1", "title": "Client", "deleted": False},
                "assumedState": {"id": "f1", "title": "Stale", "deleted": False},
            },
        ],
        partial=True,
    )

    assert conflicts == [{"id": "f1", "title": "Server", "deleted": False}]
    assert _stored(db_session, Folder, user_id=OWNER, id="f0").title == "New"
    assert _stored(db_session, Folder, user_id=OWNER, id="f1").title == "Server"


def test_write_without_assumed_state_overwrites(db_session, seed):
    seed(FOLDERS, {"id": "f1", "title": "Server", "color": "red", "deleted": False})

    conflicts = push_changes(db_session, FOLDERS, OWNER, [{"newState": {"id": "f1", "title": "Blind", "deleted": False}}])

    assert conflicts == []
    # absent fields are cleared, the new state replaces the stored document
    assert _folder_docs(db_session) == [{"id": "f1", "title": "Blind", "deleted": False}]


def test_assumed_state_for_unknown_row_creates_it(db_session):
    conflicts = push_changes(
        db_session,
        FOLDERS,
        OWNER,
        [
            {
                "newState": {"id": "f9", "title": "Fresh", "deleted": False},
                "assumedState": {"id": "f9", "title": "Ghost", "deleted": False},
            }
        ],
    )

    assert conflicts == []
    assert _stored(db_session, Folder, user_id=OWNER, id="f9").title == "Fresh"


def test_delete_of_unknown_row_is_ignored(db_session):
    conflicts = push_changes(db_session, FOLDERS, OWNER, [{"newState": {"id": "nope", "deleted": True}}])

    assert conflicts == []
    assert _stored(db_session, Folder, user_id=OWNER, id="nope") is None


def test_write_revives_tombstone(db_session, seed):
    seed(FOLDERS, {"id": "f1", "title": "Old", "deleted": True})

    push_changes(db_session, FOLDERS, OWNER, [{"newState": {"id": "f1", "title": "Back", "deleted": False}}])

    row = _stored(db_session, Folder, user_id=OWNER, id="f1")
    assert row.is_deleted is False
    assert row.title == "Back"


def test_structured_fields_are_stored_as_text(db_session):
    push_changes(
        db_session,
        ITEMS,
        OWNER,
        [{"newState": {"uuid": "u1", "id": "CS101", "raw": {"credits": 3}, "dependson": ["u0"], "deleted": False}}],
    )

    row = _stored(db_session, Item, uuid="u1")
    assert row.raw == '{"credits":3}'
    assert row.dependson == '["u0"]'
    assert row.user_id == OWNER


def test_structured_conflict_compares_decoded_values(db_session, seed):
    seed(SEMESTERS, {"id": "s1", "courses": ["CS101", "MA101"], "deleted": False})

    same = push_changes(
        db_session,
        SEMESTERS,
        OWNER,
        [
            {
                "newState": {"id": "s1", "courses": ["CS101"], "deleted": False},
                "assumedState": {"id": "s1", "courses": ["CS101", "MA101"], "deleted": False},
            }
        ],
    )
    assert same == []

    stale = push_changes(
        db_session,
        SEMESTERS,
        OWNER,
        [
            {
                "newState": {"id": "s1", "courses": [], "deleted": False},
                "assumedState": {"id": "s1", "courses": ["MA101"], "deleted": False},
            }
        ],
    )
    assert stale == [{"id": "s1", "courses": ["CS101"], "deleted": False}]


@pytest.mark.parametrize("courses", ["not json", "{}", '"CS101"'])
def test_bad_encoded_structured_field_is_rejected_before_storage(db_session, courses):
    with pytest.raises(ValidationError, match="Row 0: Field 'courses'"):
        push_changes(db_session, SEMESTERS, OWNER, [{"newState": {"id": "s1", "courses": courses, "deleted": False}}])

    result = pull_changes(db_session, SEMESTERS, OWNER)
    assert result.documents == []


def test_pre_encoded_structured_field_stays_pullable(db_session):
    push_changes(db_session, SEMESTERS, OWNER, [{"newState": {"id": "s1", "courses": '["CS101"]', "deleted": False}}])

    assert pull_changes(db_session, SEMESTERS, OWNER).documents == [
        {"id": "s1", "courses": ["CS101"], "deleted": False}
    ]


@pytest.mark.parametrize(
    "assumed",
    [
        {"id": "s1", "title": "Fall", "deleted": False},
        {"id": "s1", "title": "Fall", "courses": None, "deleted": False},
        {"id": "s1", "title": "Fall", "courses": [], "deleted": False},
    ],
)
def test_assumed_state_without_structured_field_matches_its_own_push(db_session, assumed):
    pushed = {"id": "s1", "title": "Fall", "deleted": False}
    assert push_changes(db_session, SEMESTERS, OWNER, [{"newState": pushed}]) == []

    conflicts = push_changes(
        db_session,
        SEMESTERS,
        OWNER,
        [{"newState": {"id": "s1", "title": "Fall 2", "deleted": False}, "assumedState": assumed}],
    )

    assert conflicts == []
    assert pull_changes(db_session, SEMESTERS, OWNER).documents == [
        {"id": "s1", "title": "Fall 2", "courses": [], "deleted": False}
    ]


def test_assumed_state_with_bad_structured_field(db_session, seed):
    seed(SEMESTERS, {"id": "s1", "deleted": False})

    with pytest.raises(ValidationError, match="Row 0: assumed state"):
        push_changes(
            db_session,
            SEMESTERS,
            OWNER,
            [
                {
                    "newState": {"id": "s1", "deleted": False},
                    "assumedState": {"id": "s1", "courses": "nope", "deleted": False},
                }
            ],
        )


def test_change_time_strictly_advances_under_frozen_clock(db_session, seed, monkeypatch):
    seed(FOLDERS, {"id": "f1", "deleted": False})
    # clock behind the stored value
    monkeypatch.setattr(push_mod, "utc_now_naive", lambda: SEEDED_AT - timedelta(hours=1))

    push_changes(db_session, FOLDERS, OWNER, [{"newState": {"id": "f1", "title": "A", "deleted": False}}])
    first = _stored(db_session, Folder, user_id=OWNER, id="f1").change_time
    push_changes(db_session, FOLDERS, OWNER, [{"newState": {"id": "f1", "title": "B", "deleted": False}}])
    second = _stored(db_session, Folder, user_id=OWNER, id="f1").change_time

    assert first == SEEDED_AT + timedelta(microseconds=1)
    assert second == SEEDED_AT + timedelta(microseconds=2)


def test_writes_after_checkpoint_are_pulled(db_session):
    push_changes(db_session, FOLDERS, OWNER, [{"newState": {"id": "f1", "title": "A", "deleted": False}}])
    checkpoint = pull_changes(db_session, FOLDERS, OWNER).checkpoint

    push_changes(db_session, FOLDERS, OWNER, [{"newState": {"id": "f1", "title": "B", "deleted": False}}])
    result = pull_changes(db_session, FOLDERS, OWNER, checkpoint)

    assert result.documents == [{"id": "f1", "title": "B", "deleted": False}]


def test_next_change_time():
    now = datetime(2024, 5, 1, 8, 0, 0)

    assert next_change_time(None, now) == now
    assert next_change_time(now - timedelta(seconds=1), now) == now
    assert next_change_time(now, now) == now + timedelta(microseconds=1)
    assert next_change_time(now + timedelta(seconds=5), now) == now + timedelta(seconds=5, microseconds=1)


def test_same_identity_coexists_across_owners(db_session):
    push_changes(db_session, FOLDERS, OWNER, [{"newState": {"id": "f1", "title": "Mine", "deleted": False}}])
    push_changes(db_session, FOLDERS, OTHER_OWNER, [{"newState": {"id": "f1", "title": "Theirs", "deleted": False}}])

    assert _folder_docs(db_session, OWNER) == [{"id": "f1", "title": "Mine", "deleted": False}]
    assert _folder_docs(db_session, OTHER_OWNER) == [{"id": "f1", "title": "Theirs", "deleted": False}]


def test_owner_cannot_see_or_touch_other_owners_rows(db_session, seed):
    seed(FOLDERS, {"id": "f1", "title": "Theirs", "deleted": False}, owner=OTHER_OWNER)

    # the assumed state describes a row this owner does not have, so it is a create
    conflicts = push_changes(
        db_session,
        FOLDERS,
        OWNER,
        [
            {
                "newState": {"id": "f1", "title": "Mine", "deleted": False},
                "assumedState": {"id": "f1", "title": "Whatever", "deleted": False},
            }
        ],
    )

    assert conflicts == []
    assert _stored(db_session, Folder, user_id=OTHER_OWNER, id="f1").title == "Theirs"


def test_item_uuid_owned_by_someone_else(db_session, seed):
    seed(ITEMS, {"uuid": "u1", "deleted": False}, owner=OTHER_OWNER)
    db_session.expunge_all()

    with pytest.raises(ValidationError, match="already in use"):
        push_changes(db_session, ITEMS, OWNER, [{"newState": {"uuid": "u1", "deleted": False}}])

    assert _stored(db_session, Item, uuid="u1").user_id == OTHER_OWNER


def test_concurrent_create_is_reported_as_conflict(db_session, seed, monkeypatch):
    seed(FOLDERS, {"id": "f1", "title": "Winner", "deleted": False})
    # the winning row was written by another session
    db_session.expunge_all()
    real_load = push_mod._load_stored

    def racing_load(db, collection, owner, identity, lock=True):
        # the scan misses the row, as if another request created it just after
        if lock:
            return None
        return real_load(db, collection, owner, identity, lock=lock)

    monkeypatch.setattr(push_mod, "_load_stored", racing_load)

    conflicts = push_changes(
        db_session,
        FOLDERS,
        OWNER,
        [
            {"newState": {"id": "f0", "title": "Other", "deleted": False}},
            {"newState": {"id": "f1", "title": "Loser", "deleted": False}},
        ],
    )

    assert conflicts == [{"id": "f1", "title": "Winner", "deleted": False}]
    assert _stored(db_session, Folder, user_id=OWNER, id="f0") is None
    assert _stored(db_session, Folder, user_id=OWNER, id="f1").title == "Winner"


def test_duplicate_identity_in_batch(db_session):
    with pytest.raises(ValidationError, match="more than once"):
        push_changes(
            db_session,
            FOLDERS,
            OWNER,
            [
                {"newState": {"id": "f1", "title": "A", "deleted": False}},
                {"newState": {"id": "f1", "title": "B", "deleted": False}},
            ],
        )

    assert _folder_docs(db_session) == []


@pytest.mark.parametrize(
    "row, message",
    [
        ({"newState": {"id": "f1", "colour": "red", "deleted": False}}, "Row 0: Unknown field"),
        ({"newState": {"title": "no id", "deleted": False}}, "Row 0: Field 'id'"),
        ({"newState": {"id": "f1", "deleted": "yes"}}, "Row 0: Field 'deleted'"),
        ({"assumedState": {"id": "f1", "deleted": False}}, "missing 'newState'"),
        (
            {"newState": {"id": "f1", "deleted": False}, "assumedState": {"id": "f2", "deleted": False}},
            "assumed state is for id 'f2'",
        ),
    ],
)
def test_malformed_rows_are_rejected(db_session, row, message):
    with pytest.raises(ValidationError, match=message):
        push_changes(db_session, FOLDERS, OWNER, [row])


def test_rxdb_key_names_are_accepted(db_session, seed):
    seed(FOLDERS, {"id": "f1", "title": "Server", "deleted": False})

    conflicts = push_changes(
        db_session,
        FOLDERS,
        OWNER,
        [
            {
                "newDocumentState": {"id": "f1", "title": "Client", "deleted": False},
                "assumedMasterState": {"id": "f1", "title": "Stale", "deleted": False},
            }
        ],
    )

    assert conflicts == [{"id": "f1", "title": "Server", "deleted": False}]


def test_empty_batch(db_session):
    assert push_changes(db_session, FOLDERS, OWNER, []) == []


def test_owner_is_required(db_session):
    with pytest.raises(UnauthenticatedError):
        push_changes(db_session, FOLDERS, None, [{"newState": {"id": "f1", "deleted": False}}])


def test_storage_failure_rolls_back(db_session, monkeypatch):
    def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db_session, "commit", failing_commit)

    with pytest.raises(StorageError, match="Failed to apply folders push"):
        push_changes(db_session, FOLDERS, OWNER, [{"newState": {"id": "f1", "deleted": False}}])

    monkeypatch.undo()
    assert _folder_docs(db_session) == []
