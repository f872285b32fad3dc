# src/taskdeck/profiles/profile_store.py

from __future__ import annotations

import logging
from typing import Any

from ..auth.models import User
from ..auth.session_store import SessionStore
from ..core.errors import ErrorKind, Result, as_remote_error, fail, ok
from ..core.ports import TableGateway
from .profile_models import PROFILES_TABLE, UNIQUE_VIOLATION, Profile, clean_profile_patch

logger = logging.getLogger(__name__)


class ProfileStore:
    """`profiles` rows keyed by user id (one per account)."""

    def __init__(self, tables: TableGateway, sessions: SessionStore) -> None:
        self._tables = tables
        self._sessions = sessions

    async def ensure_profile(self, user: User, username: str | None = None) -> Result[Profile]:
        """
        Create the profile row right after registration / first sign-in.

        "Already exists" is a normal outcome here, not an error: the value is
        then None and so is the error.
        """
        session, err = await self._sessions.get_fresh_session()
        if session is None:
            return None, err

        row = {"id": user.id, "username": username or user.username or user.id[:8]}
        try:
            rows = await self._tables.insert(PROFILES_TABLE, row, access_token=session.access_token)
        except Exception as exc:
            e = as_remote_error(exc)
            if e.code == UNIQUE_VIOLATION:
                logger.debug("Profile for user=%s already exists", user.id)
                return None, None
            logger.warning("Profile init failed user=%s: %s", user.id, e.message)
            return None, e.to_error()
        logger.info("Profile created user=%s", user.id)
        return ok(Profile.from_row(rows[0]) if rows else Profile(id=user.id, username=row["username"]))

    async def fetch_profile(self, user_id: str) -> Result[Profile]:
        """A missing row yields (None, None)."""
        session, err = await self._sessions.get_fresh_session()
        if session is None:
            return None, err

        try:
            rows = await self._tables.select(
                PROFILES_TABLE, match={"id": user_id}, access_token=session.access_token
            )
        except Exception as exc:
            return None, as_remote_error(exc).to_error()
        return ok(Profile.from_row(rows[0]) if rows else None)

    async def update_profile(self, user_id: str, patch: dict[str, Any]) -> Result[Profile]:
        try:
            changes = clean_profile_patch(patch)
        except ValueError as e:
            return fail(ErrorKind.VALIDATION, str(e))
        if not changes:
            return fail(ErrorKind.VALIDATION, "Nothing to update.")

        session, err = await self._sessions.get_fresh_session()
        if session is None:
            return None, err

        try:
            rows = await self._tables.update(
                PROFILES_TABLE, changes, match={"id": user_id}, access_token=session.access_token
            )
        except Exception as exc:
            return None, as_remote_error(exc).to_error()
        if not rows:
            return fail(ErrorKind.NOT_FOUND, "Profile not found.")
        return ok(Profile.from_row(rows[0]))
