# src/taskdeck/auth/guard.py

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import quote

from ..core.observers import Subscription
from .models import AuthEvent, Session, SessionState
from .session_store import SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Allow:
    session: Session


@dataclass(frozen=True, slots=True)
class Suspend:
    """Session restore still running: show a neutral loading state, do not redirect."""

    reason: str = "restoring"


@dataclass(frozen=True, slots=True)
class RedirectTo:
    path: str
    next_path: str | None = None

    @property
    def location(self) -> str:
        if not self.next_path:
            return self.path
        return f"{self.path}?next={quote(self.next_path, safe='/')}"


Decision = Allow | Suspend | RedirectTo


class RouteGuard:
    """
    Gate for protected views.

    Allow iff the session store is AUTHENTICATED. Before restore() has
    finished the answer is Suspend: redirecting at that point would bounce a
    user whose persisted session is about to be restored.
    """

    def __init__(self, sessions: SessionStore, *, login_path: str = "/login") -> None:
        self._sessions = sessions
        self._login_path = login_path

    @property
    def login_path(self) -> str:
        return self._login_path

    def authorize(self, next_path: str | None = None) -> Decision:
        state = self._sessions.state
        if state in (SessionState.UNINITIALIZED, SessionState.RESTORING):
            return Suspend()
        session = self._sessions.get_session()
        if state is SessionState.AUTHENTICATED and session is not None:
            return Allow(session)
        return RedirectTo(self._login_path, next_path)

    async def resolve(self, next_path: str | None = None) -> Decision:
        """
        Wait out the restore, then decide.

        Cancelling the awaiting task (view left before restore finished) just
        raises CancelledError in the caller; nothing else is touched.
        """
        await self._sessions.wait_restored()
        return self.authorize(next_path)

    def watch(
            self,
            on_redirect: Callable[[RedirectTo], None],
            *,
            next_path: str | None = None,
    ) -> Subscription:
        """Re-evaluate on every session transition; call on_redirect when access is lost."""

        def _on_change(event: AuthEvent, _session: Session | None) -> None:
            decision = self.authorize(next_path)
            if isinstance(decision, RedirectTo):
                logger.info("Access lost (%s); redirecting to %s", event.value, decision.location)
                on_redirect(decision)

        return self._sessions.on_change(_on_change)
