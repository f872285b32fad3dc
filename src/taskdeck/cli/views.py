# src/taskdeck/cli/views.py

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from ..auth.guard import Allow, Decision, RedirectTo, Suspend
from ..core.errors import AppError, ErrorKind
from ..core.observers import Subscription
from ..core.state import AppContext
from ..tasks.task_models import ChangeEvent, Task
from ..tasks.task_sync import TaskSubscription

logger = logging.getLogger(__name__)

ViewEmitter = Callable[[str], None]


def render_tasks(tasks: list[Task]) -> str:
    if not tasks:
        return "No tasks yet. Add one with /add <title>."
    lines = [f"Tasks ({len(tasks)}):"]
    for i, t in enumerate(tasks, start=1):
        mark = "x" if t.is_complete else " "
        created = t.created_at.astimezone().strftime("%Y-%m-%d %H:%M")
        lines.append(f"  {i:>2}. [{mark}] {t.title}  ({created}, id={t.id[:8]})")
        if t.description:
            lines.append(f"        {t.description}")
    return "\n".join(lines)


class TodosView:
    """
    The protected task list.

    While active it owns exactly one live subscription and one guard watch;
    deactivate() releases both, and is called on /leave, on sign-out, and on
    console exit.
    """

    PATH = "/todos"

    def __init__(self, ctx: AppContext, *, emit: ViewEmitter) -> None:
        self._ctx = ctx
        self._emit = emit
        self.tasks: list[Task] = []
        self.owner_id: str | None = None
        self._sub: TaskSubscription | None = None
        self._guard_watch: Subscription | None = None
        self._closing: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._sub is not None

    async def activate(self) -> Decision:
        """Ask the guard (waiting out a restore) and, if allowed, go live."""
        decision = self._ctx.guard.authorize(self.PATH)
        if isinstance(decision, Suspend):
            self._emit("Restoring session...")
            decision = await self._ctx.guard.resolve(self.PATH)

        if not isinstance(decision, Allow):
            return decision

        owner = decision.session.user.id
        if self.active and self.owner_id == owner:
            self._emit(render_tasks(self.tasks))
            return decision

        await self.deactivate()
        self.owner_id = owner
        self._guard_watch = self._ctx.guard.watch(self._on_redirect, next_path=self.PATH)
        self._sub = self._ctx.sync.subscribe(owner, self._on_change, self._on_error)
        logger.info("Todos view active owner=%s", owner)
        return decision

    async def deactivate(self) -> None:
        watch, self._guard_watch = self._guard_watch, None
        if watch is not None:
            watch.unsubscribe()
        sub, self._sub = self._sub, None
        if sub is not None:
            await sub.aclose()
            logger.info("Todos view released owner=%s", self.owner_id)
        self.owner_id = None
        self.tasks = []

    async def __aenter__(self) -> TodosView:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        closing = self._closing
        if closing is not None and not closing.done():
            with contextlib.suppress(asyncio.CancelledError):
                await closing
        await self.deactivate()

    # ---- callbacks ----

    def _on_change(self, tasks: list[Task], event: ChangeEvent | None) -> None:
        self.tasks = list(tasks)
        if event is not None:
            self._emit(f"[live] task {event.operation.value}d")
        self._emit(render_tasks(self.tasks))

    def _on_error(self, err: AppError) -> None:
        if err.kind is ErrorKind.DISCONNECTED:
            self._emit(f"[live] {err.message} Reopen with /todos.")
        else:
            self._emit(f"[live] {err.message}")

    def _on_redirect(self, decision: RedirectTo) -> None:
        self._emit(f"Signed out. Redirecting to {decision.location}")
        # Called from inside a session transition; release the channel on the loop.
        self._closing = asyncio.get_running_loop().create_task(self.deactivate())
