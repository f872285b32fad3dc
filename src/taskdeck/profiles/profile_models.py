# src/taskdeck/profiles/profile_models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..tasks.task_models import parse_timestamp

PROFILES_TABLE = "profiles"

PROFILE_FIELDS = ("username", "full_name", "avatar_url")

# Unique-violation code reported by the data service when the row already exists.
UNIQUE_VIOLATION = "23505"


@dataclass(frozen=True, slots=True)
class Profile:
    id: str
    username: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Profile:
        def _opt(key: str) -> str | None:
            v = row.get(key)
            return str(v) if v else None

        updated = row.get("updated_at")
        return cls(
            id=str(row["id"]),
            username=_opt("username"),
            full_name=_opt("full_name"),
            avatar_url=_opt("avatar_url"),
            updated_at=parse_timestamp(updated) if updated else None,
        )


def clean_profile_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """
    Keep only known profile fields that were actually given.

    Absent (or None) fields are dropped so the service leaves them untouched.
    Raises ValueError on unknown keys.
    """
    unknown = set(patch) - set(PROFILE_FIELDS)
    if unknown:
        raise ValueError(f"unknown profile field(s): {', '.join(sorted(unknown))}")
    return {k: v for k, v in patch.items() if v is not None}
