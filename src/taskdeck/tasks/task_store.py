# src/taskdeck/tasks/task_store.py

from __future__ import annotations

import logging
from typing import Any

from ..auth.models import Session
from ..auth.session_store import SessionStore
from ..core.errors import ErrorKind, Result, as_remote_error, fail, ok
from ..core.ports import Match, TableGateway
from .task_models import (
    OWNER_COLUMN,
    PATCHABLE_FIELDS,
    TODOS_TABLE,
    Task,
    TaskDraft,
    sort_newest_first,
)

logger = logging.getLogger(__name__)


class TaskStore:
    """
    Owner-scoped CRUD over the remote `todos` table.

    Every request carries a user_id equality filter built from the owner_id
    argument, so a locally held task id is never trusted on its own. An
    owner_id other than the signed-in user is answered without a request:
    nothing of theirs is visible (empty list, NOT_FOUND, no-op delete).

    Per-id requests are not serialized. A write that matches no row (e.g. a
    toggle racing a delete from another client) is reported as NOT_FOUND.
    """

    def __init__(self, tables: TableGateway, sessions: SessionStore) -> None:
        self._tables = tables
        self._sessions = sessions

    # ---- helpers ----

    async def _fresh_session(self) -> Result[Session]:
        return await self._sessions.get_fresh_session()

    @staticmethod
    def _owns(session: Session, owner_id: str) -> bool:
        if session.user.id == owner_id:
            return True
        logger.warning("Task request for owner=%s from user=%s not sent", owner_id, session.user.id)
        return False

    @staticmethod
    def _match(owner_id: str, task_id: str | None = None) -> Match:
        match = {OWNER_COLUMN: owner_id}
        if task_id is not None:
            match["id"] = task_id
        return match

    # ---- public API ----

    async def list_tasks(self, owner_id: str) -> Result[list[Task]]:
        """All tasks of owner_id, newest first. Nobody else's tasks are visible, so another owner lists empty."""
        session, err = await self._fresh_session()
        if session is None:
            return None, err
        if not self._owns(session, owner_id):
            return ok([])

        try:
            rows = await self._tables.select(
                TODOS_TABLE,
                match=self._match(owner_id),
                order="created_at.desc",
                access_token=session.access_token,
            )
        except Exception as exc:
            e = as_remote_error(exc)
            logger.warning("list_tasks failed owner=%s: %s", owner_id, e.message)
            return None, e.to_error()
        return ok(sort_newest_first([Task.from_row(r) for r in rows]))

    async def get_task(self, task_id: str, owner_id: str) -> Result[Task]:
        session, err = await self._fresh_session()
        if session is None:
            return None, err
        if not self._owns(session, owner_id):
            return fail(ErrorKind.NOT_FOUND, f"Task {task_id} not found.")

        try:
            rows = await self._tables.select(
                TODOS_TABLE, match=self._match(owner_id, task_id), access_token=session.access_token
            )
        except Exception as exc:
            return None, as_remote_error(exc).to_error()
        if not rows:
            return fail(ErrorKind.NOT_FOUND, f"Task {task_id} not found.")
        return ok(Task.from_row(rows[0]))

    async def create_task(self, draft: TaskDraft) -> Result[Task]:
        if not draft.title or not draft.title.strip():
            return fail(ErrorKind.VALIDATION, "Title is required.")
        session, err = await self._fresh_session()
        if session is None:
            return None, err
        if not self._owns(session, draft.owner_id):
            return fail(ErrorKind.VALIDATION, "Tasks can only be created for the signed-in user.")

        try:
            rows = await self._tables.insert(TODOS_TABLE, draft.to_row(), access_token=session.access_token)
        except Exception as exc:
            e = as_remote_error(exc)
            logger.warning("create_task failed owner=%s: %s", draft.owner_id, e.message)
            return None, e.to_error()
        if not rows:
            return fail(ErrorKind.REMOTE_VALIDATION, "The service did not return the created task.")
        task = Task.from_row(rows[0])
        logger.info("Task created id=%s owner=%s", task.id, task.owner_id)
        return ok(task)

    async def update_task(self, task_id: str, owner_id: str, patch: dict[str, Any]) -> Result[Task]:
        """Partial update scoped by (task_id, owner_id); no matching row is NOT_FOUND."""
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            return fail(ErrorKind.VALIDATION, f"Cannot update field(s): {', '.join(sorted(unknown))}.")
        if not patch:
            return fail(ErrorKind.VALIDATION, "Nothing to update.")
        changes = dict(patch)
        if "title" in changes:
            title = str(changes["title"] or "").strip()
            if not title:
                return fail(ErrorKind.VALIDATION, "Title is required.")
            changes["title"] = title
        if "is_complete" in changes:
            changes["is_complete"] = bool(changes["is_complete"])

        session, err = await self._fresh_session()
        if session is None:
            return None, err
        if not self._owns(session, owner_id):
            return fail(ErrorKind.NOT_FOUND, f"Task {task_id} not found.")

        try:
            rows = await self._tables.update(
                TODOS_TABLE,
                changes,
                match=self._match(owner_id, task_id),
                access_token=session.access_token,
            )
        except Exception as exc:
            return None, as_remote_error(exc).to_error()
        if not rows:
            return fail(ErrorKind.NOT_FOUND, f"Task {task_id} not found.")
        return ok(Task.from_row(rows[0]))

    async def toggle_completion(self, task_id: str, owner_id: str) -> Result[Task]:
        """
        Read-then-write negation of is_complete.

        Not atomic: a concurrent toggle from another client is last-write-wins.
        """
        current, err = await self.get_task(task_id, owner_id)
        if current is None:
            return None, err
        return await self.update_task(task_id, owner_id, {"is_complete": not current.is_complete})

    async def delete_task(self, task_id: str, owner_id: str) -> Result[None]:
        """Idempotent: deleting an id that is already gone (or was never ours) is a success."""
        session, err = await self._fresh_session()
        if session is None:
            return None, err
        if not self._owns(session, owner_id):
            return None, None

        try:
            rows = await self._tables.delete(
                TODOS_TABLE, match=self._match(owner_id, task_id), access_token=session.access_token
            )
        except Exception as exc:
            return None, as_remote_error(exc).to_error()
        logger.info("Task delete id=%s owner=%s removed=%d", task_id, owner_id, len(rows))
        return None, None
