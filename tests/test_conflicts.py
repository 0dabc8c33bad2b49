import pytest

from planner.replication.conflicts import deep_equal
from planner.replication.conflicts import documents_equal
from planner.replication.conflicts import is_conflict


@pytest.mark.parametrize(
    "left, right",
    [
        ({"a": 1, "b": [1, 2]}, {"b": [1, 2], "a": 1}),
        ({"nested": {"x": {"y": "z"}}}, {"nested": {"x": {"y": "z"}}}),
        ([], []),
        ({}, {}),
        ("text", "text"),
        (None, None),
        (True, True),
    ],
)
def test_deep_equal_matches(left, right):
    assert deep_equal(left, right)


@pytest.mark.parametrize(
    "left, right",
    [
        ([1, 2], [2, 1]),
        ({"a": 1}, {"a": 1, "b": 2}),
        ({"a": [1]}, {"a": [1, 1]}),
        (True, 1),
        (0, False),
        ({"a": 1}, [("a", 1)]),
        ("1", 1),
        (None, {}),
    ],
)
def test_deep_equal_differs(left, right):
    assert not deep_equal(left, right)


def test_null_and_absent_fields_are_equal():
    assert documents_equal({"id": "f1", "title": None, "deleted": False}, {"id": "f1", "deleted": False})


def test_no_conflict_without_assumed_state():
    assert not is_conflict({"id": "f1", "title": "A", "deleted": False}, None)


def test_no_conflict_for_unknown_row():
    assert not is_conflict(None, {"id": "f1", "title": "A", "deleted": False})


def test_conflict_when_any_field_differs():
    stored = {"id": "f1", "title": "Server", "deleted": False}

    assert is_conflict(stored, {"id": "f1", "title": "Client", "deleted": False})
    assert is_conflict(stored, {"id": "f1", "title": "Server", "deleted": True})
    assert not is_conflict(stored, {"deleted": False, "title": "Server", "id": "f1"})
