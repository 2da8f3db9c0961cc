"""Change event model and assembled-message parsing."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tablewatch.exceptions import PayloadParseError


class Operation(str, Enum):
    """Row-level operation that fired the trigger."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(slots=True, frozen=True)
class ChangeMessage:
    """Assembled message as broadcast by the trigger program."""

    table: str
    op: Operation
    data: dict[str, Any]
    old_data: dict[str, Any] | None = None


@dataclass(slots=True)
class ChangeEvent:
    """One row change delivered to subscribers.

    ``previous_row`` and ``changed_fields`` are only set for UPDATE.
    ``changed_fields`` maps field name to ``{"from": old, "to": new}``.
    """

    table: str
    operation: Operation
    row: dict[str, Any]
    previous_row: dict[str, Any] | None = None
    changed_fields: dict[str, dict[str, Any]] | None = None

    @property
    def insert(self) -> bool:
        return self.operation is Operation.INSERT

    @property
    def update(self) -> bool:
        return self.operation is Operation.UPDATE

    @property
    def delete(self) -> bool:
        return self.operation is Operation.DELETE

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"table": self.table, "op": self.operation.value, "row": self.row}
        if self.previous_row is not None:
            result["old"] = self.previous_row
        if self.changed_fields is not None:
            result["update"] = self.changed_fields
        return result


def diff_rows(old: dict[str, Any], new: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Return fields whose values differ between two rows.

    Keys present on only one side count as changed; the missing side is None.
    """
    changed: dict[str, dict[str, Any]] = {}
    for key in list(new) + [k for k in old if k not in new]:
        before = old.get(key)
        after = new.get(key)
        if key not in old or key not in new or not _same_value(before, after):
            changed[key] = {"from": before, "to": after}
    return changed


def _same_value(a: Any, b: Any) -> bool:
    # True == 1 in Python but not in JSON.
    if isinstance(a, bool) or isinstance(b, bool):
        return a is b
    return a == b


def _single_row(payload: dict[str, Any], key: str, message: str) -> dict[str, Any]:
    rows = payload.get(key)
    if not isinstance(rows, list) or not rows:
        raise PayloadParseError(message, f"'{key}' must be a non-empty list")
    row = rows[0]
    if not isinstance(row, dict):
        raise PayloadParseError(message, f"'{key}[0]' must be an object")
    return row


def parse_change_message(message: str) -> ChangeMessage:
    """Parse an assembled message into a ChangeMessage.

    Raises:
        PayloadParseError: invalid JSON or unexpected shape.
    """
    try:
        payload = json.loads(message)
    except (TypeError, ValueError) as exc:
        raise PayloadParseError(message, f"invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise PayloadParseError(message, "payload root must be an object")

    table = payload.get("table")
    if not isinstance(table, str) or not table:
        raise PayloadParseError(message, "'table' must be a non-empty string")
    try:
        op = Operation(str(payload.get("op", "")).upper())
    except ValueError as exc:
        raise PayloadParseError(message, f"unknown op {payload.get('op')!r}") from exc

    data = _single_row(payload, "data", message)
    old_data = _single_row(payload, "old_data", message) if op is Operation.UPDATE else None
    return ChangeMessage(table=table, op=op, data=data, old_data=old_data)


def build_change_event(message: ChangeMessage) -> ChangeEvent:
    """Build the subscriber-facing event, with a field diff for UPDATE."""
    table = message.table.lower()
    if message.op is Operation.UPDATE:
        previous = message.old_data or {}
        return ChangeEvent(
            table=table,
            operation=message.op,
            row=message.data,
            previous_row=previous,
            changed_fields=diff_rows(previous, message.data),
        )
    return ChangeEvent(table=table, operation=message.op, row=message.data)
