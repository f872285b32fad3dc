# src/taskdeck/tasks/task_api.py

from __future__ import annotations

import logging
from collections.abc import Sequence

from ..core.errors import ErrorKind, Result, fail, ok
from ..core.state import AppContext
from .task_models import Task, TaskDraft

logger = logging.getLogger(__name__)


def current_owner(ctx: AppContext) -> str | None:
    """Id of the signed-in user, or None when there is no usable session."""
    session = ctx.sessions.get_session()
    return session.user.id if session is not None else None


def _require_owner(ctx: AppContext) -> Result[str]:
    owner = current_owner(ctx)
    if owner is None:
        return fail(ErrorKind.UNAUTHENTICATED, "Sign in first (/login).")
    return ok(owner)


async def add_task_for_current_user(
    ctx: AppContext,
    *,
    title: str,
    description: str | None = None,
) -> Result[Task]:
    """
    Convenience helper: create a task owned by whoever is signed in.
    Uses ctx.tasks (already constructed in bootstrap).
    """
    owner, err = _require_owner(ctx)
    if owner is None:
        return None, err
    return await ctx.tasks.create_task(TaskDraft(title=title, owner_id=owner, description=description))


def pick_task(tasks: Sequence[Task], ref: str) -> Task | None:
    """
    Resolve a user-typed reference: a 1-based position in the listing,
    a full id, or an unambiguous id prefix.
    """
    ref = ref.strip()
    if not ref:
        return None
    if ref.isdigit():
        idx = int(ref)
        if 1 <= idx <= len(tasks):
            return tasks[idx - 1]
    for t in tasks:
        if t.id == ref:
            return t
    prefixed = [t for t in tasks if t.id.startswith(ref)]
    return prefixed[0] if len(prefixed) == 1 else None


async def resolve_task(
    ctx: AppContext,
    ref: str,
    *,
    cached: Sequence[Task] | None = None,
) -> Result[Task]:
    """pick_task() against the cached listing, falling back to a fresh list_tasks()."""
    owner, err = _require_owner(ctx)
    if owner is None:
        return None, err

    if cached:
        task = pick_task(cached, ref)
        if task is not None:
            return ok(task)

    tasks, err = await ctx.tasks.list_tasks(owner)
    if err is not None:
        return None, err
    task = pick_task(tasks or [], ref)
    if task is None:
        logger.debug("No task matches ref=%r owner=%s", ref, owner)
        return fail(ErrorKind.NOT_FOUND, f"No task matches {ref!r}.")
    return ok(task)
