"""Unit tests for change message parsing and field diffs."""

from __future__ import annotations

import json

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tablewatch.exceptions import PayloadParseError
from tablewatch.observer.events import (
    ChangeEvent,
    Operation,
    build_change_event,
    diff_rows,
    parse_change_message,
)
from tests.fakes import change_message


def test_update_diff_lists_only_changed_fields() -> None:
    message = parse_change_message(change_message("Test", "UPDATE", {"a": 1, "b": 3}, {"a": 1, "b": 2}))
    event = build_change_event(message)
    assert event.table == "test"
    assert event.operation is Operation.UPDATE
    assert event.row == {"a": 1, "b": 3}
    assert event.previous_row == {"a": 1, "b": 2}
    assert event.changed_fields == {"b": {"from": 2, "to": 3}}
    assert event.update and not event.insert and not event.delete


@pytest.mark.parametrize("op", ["INSERT", "DELETE"])
def test_insert_and_delete_have_no_diff(op: str) -> None:
    event = build_change_event(parse_change_message(change_message("t", op, {"id": 7})))
    assert event.row == {"id": 7}
    assert event.previous_row is None
    assert event.changed_fields is None
    assert event.insert is (op == "INSERT")
    assert event.delete is (op == "DELETE")


def test_diff_treats_missing_keys_as_changed() -> None:
    assert diff_rows({"a": 1, "gone": 2}, {"a": 1, "new": 3}) == {
        "new": {"from": None, "to": 3},
        "gone": {"from": 2, "to": None},
    }


def test_diff_distinguishes_booleans_from_integers() -> None:
    assert diff_rows({"flag": 1}, {"flag": True}) == {"flag": {"from": 1, "to": True}}


def test_diff_compares_nested_values_by_content() -> None:
    assert diff_rows({"tags": ["a"]}, {"tags": ["a"]}) == {}


@pytest.mark.parametrize(
    "message",
    [
        "not json",
        "[]",
        json.dumps({"op": "INSERT", "data": [{}]}),
        json.dumps({"table": "t", "op": "TRUNCATE", "data": [{}]}),
        json.dumps({"table": "t", "op": "INSERT", "data": []}),
        json.dumps({"table": "t", "op": "INSERT", "data": [1]}),
        json.dumps({"table": "t", "op": "UPDATE", "data": [{"a": 1}]}),
    ],
)
def test_parse_change_message_rejects_invalid_payloads(message: str) -> None:
    with pytest.raises(PayloadParseError):
        parse_change_message(message)


def test_to_dict_matches_printed_shape() -> None:
    event = ChangeEvent(
        table="t",
        operation=Operation.UPDATE,
        row={"a": 2},
        previous_row={"a": 1},
        changed_fields={"a": {"from": 1, "to": 2}},
    )
    assert event.to_dict() == {
        "table": "t",
        "op": "UPDATE",
        "row": {"a": 2},
        "old": {"a": 1},
        "update": {"a": {"from": 1, "to": 2}},
    }


_values = st.one_of(st.none(), st.booleans(), st.integers(), st.text(max_size=5))


@given(st.dictionaries(st.text(max_size=5), _values, max_size=6), st.dictionaries(st.text(max_size=5), _values, max_size=6))
def test_property_diff_applied_to_old_row_gives_new_row(old: dict, new: dict) -> None:
    """Property: fields outside the diff are equal on both sides."""
    changed = diff_rows(old, new)
    assert set(changed) <= set(old) | set(new)
    for key in set(old) | set(new):
        if key not in changed:
            assert key in old and key in new
            assert old[key] == new[key]
        else:
            assert changed[key] == {"from": old.get(key), "to": new.get(key)}
