# src/taskdeck/core/state.py

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..auth.guard import RouteGuard
from ..auth.orchestrator import AuthOrchestrator
from ..auth.session_store import SessionStore
from ..profiles.profile_store import ProfileStore
from ..tasks.task_store import TaskStore
from ..tasks.task_sync import TaskSync
from .ports import AuthGateway, RealtimeGateway, SessionStorage, TableGateway

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """
    Everything a view needs, constructed once per process and passed explicitly.

    The session store lives here instead of in a module-level global; close the
    context with aclose() at shutdown.
    """

    # Store Settings on the context for easy access in other modules later.
    settings: Any

    sessions: SessionStore
    auth: AuthOrchestrator
    guard: RouteGuard
    tasks: TaskStore
    sync: TaskSync
    profiles: ProfileStore

    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        """Best-effort shutdown (no exceptions should escape)."""
        try:
            await self.sessions.aclose()
        except Exception:
            logger.exception("Session store close failed.")
        for closer in reversed(self.closers):
            try:
                await closer()
            except Exception:
                logger.debug("Closer %r failed.", closer, exc_info=True)
        self.closers.clear()


def build_app_context(
        settings: Any,
        *,
        auth_gateway: AuthGateway,
        tables: TableGateway,
        realtime: RealtimeGateway,
        storage: SessionStorage,
        open_url: Callable[[str], Any] | None = None,
        clock: Callable[[], float] = time.time,
) -> AppContext:
    """Wire the core from its ports. Settings may be any object with the Settings attributes."""
    sessions = SessionStore(
        auth_gateway,
        storage,
        refresh_margin_seconds=getattr(settings, "refresh_margin_seconds", 90.0),
        auto_refresh_interval_seconds=getattr(settings, "auto_refresh_interval_seconds", 30.0),
        clock=clock,
    )
    profiles = ProfileStore(tables, sessions)
    auth = AuthOrchestrator(
        auth_gateway,
        sessions,
        profiles=profiles,
        site_url=getattr(settings, "site_url", "http://localhost:3000"),
        open_url=open_url,
    )
    tasks = TaskStore(tables, sessions)
    sync = TaskSync(
        tasks,
        realtime,
        sessions,
        max_retries=getattr(settings, "realtime_max_retries", 5),
        retry_base_seconds=getattr(settings, "realtime_retry_base_seconds", 1.0),
        retry_max_seconds=getattr(settings, "realtime_retry_max_seconds", 30.0),
    )
    return AppContext(
        settings=settings,
        sessions=sessions,
        auth=auth,
        guard=RouteGuard(sessions, login_path=getattr(settings, "login_path", "/login")),
        tasks=tasks,
        sync=sync,
        profiles=profiles,
    )


@contextlib.asynccontextmanager
async def running(ctx: AppContext):
    """Restore the session, start auto-refresh, and always tear down on exit."""
    try:
        await ctx.sessions.restore()
        ctx.sessions.start()
        yield ctx
    finally:
        await ctx.aclose()
