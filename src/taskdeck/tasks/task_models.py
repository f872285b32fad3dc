# src/taskdeck/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

TODOS_TABLE = "todos"
OWNER_COLUMN = "user_id"

# Columns a client may patch; id, owner and timestamps belong to the service.
PATCHABLE_FIELDS = frozenset({"title", "description", "is_complete"})


class ChangeOperation(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def from_wire(cls, raw: str | None) -> ChangeOperation:
        if not raw:
            raise ValueError("change event has no type")
        return cls(raw.strip().lower())


def parse_timestamp(raw: Any) -> datetime:
    """Service timestamps are ISO-8601 strings; fall back to epoch on garbage."""
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=UTC)
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(float(raw), tz=UTC)
    if isinstance(raw, str) and raw.strip():
        try:
            dt = datetime.fromisoformat(raw.strip())
        except ValueError:
            return datetime.fromtimestamp(0, tz=UTC)
        return dt if dt.tzinfo else dt.replace(tzinfo=UTC)
    return datetime.fromtimestamp(0, tz=UTC)


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    owner_id: str
    title: str
    is_complete: bool
    created_at: datetime
    updated_at: datetime
    description: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Task:
        description = row.get("description")
        return cls(
            id=str(row["id"]),
            owner_id=str(row[OWNER_COLUMN]),
            title=str(row.get("title") or ""),
            is_complete=bool(row.get("is_complete")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at") or row.get("created_at")),
            description=str(description) if description else None,
        )


@dataclass(frozen=True, slots=True)
class TaskDraft:
    title: str
    owner_id: str
    description: str | None = None

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {"title": self.title.strip(), OWNER_COLUMN: self.owner_id}
        if self.description and self.description.strip():
            row["description"] = self.description.strip()
        return row


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One server-pushed change on an owner-filtered channel. Consumed once, never stored."""

    operation: ChangeOperation
    record: dict[str, Any] = field(default_factory=dict)
    old_record: dict[str, Any] = field(default_factory=dict)

    @property
    def task_id(self) -> str | None:
        raw = self.record.get("id") or self.old_record.get("id")
        return str(raw) if raw is not None else None


def sort_newest_first(tasks: list[Task]) -> list[Task]:
    return sorted(tasks, key=lambda t: t.created_at, reverse=True)
