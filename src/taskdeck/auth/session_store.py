# src/taskdeck/auth/session_store.py

from __future__ import annotations

"""
Session store.

Single source of truth for "who is signed in, with what credentials, right now".

State machine:
- UNINITIALIZED -> RESTORING            (restore() starts)
- RESTORING     -> AUTHENTICATED / ANONYMOUS
- AUTHENTICATED -> ANONYMOUS            (sign-out, rejected refresh, external sign-out)
- ANONYMOUS     -> AUTHENTICATED        (sign-in, sign-up, redirect callback)
- AUTHENTICATED -> AUTHENTICATED        (snapshot replaced: token refresh, user update)

Only the auth orchestrator (commit_session/drop_session) and the store's own
refresh logic write; everything else reads get_session()/get_fresh_session().
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable

from ..core.errors import ErrorKind, Result, SessionStateError, as_remote_error, fail, ok
from ..core.observers import ListenerRegistry, Subscription
from ..core.ports import AuthGateway, SessionStorage
from .models import AuthEvent, Session, SessionState

logger = logging.getLogger(__name__)

SessionListener = Callable[[AuthEvent, Session | None], None]

_ALLOWED: dict[SessionState, frozenset[SessionState]] = {
    SessionState.UNINITIALIZED: frozenset({SessionState.RESTORING}),
    SessionState.RESTORING: frozenset({SessionState.AUTHENTICATED, SessionState.ANONYMOUS}),
    SessionState.AUTHENTICATED: frozenset({SessionState.AUTHENTICATED, SessionState.ANONYMOUS}),
    SessionState.ANONYMOUS: frozenset({SessionState.AUTHENTICATED}),
}


class SessionStore:
    def __init__(
            self,
            auth: AuthGateway,
            storage: SessionStorage,
            *,
            refresh_margin_seconds: float = 90.0,
            auto_refresh_interval_seconds: float = 30.0,
            clock: Callable[[], float] = time.time,
    ) -> None:
        self._auth = auth
        self._storage = storage
        self._margin = max(0.0, float(refresh_margin_seconds))
        self._interval = max(0.5, float(auto_refresh_interval_seconds))
        self._clock = clock

        self._state = SessionState.UNINITIALIZED
        self._session: Session | None = None
        # Access token last seen in storage; anything else there was written by another process.
        self._stored_token: str | None = None

        self._listeners: ListenerRegistry[SessionListener] = ListenerRegistry("session")
        self._restored = asyncio.Event()
        self._refresh_lock = asyncio.Lock()
        self._ticker: asyncio.Task[None] | None = None

    # ---- reads ----

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_restored(self) -> bool:
        return self._restored.is_set()

    def get_session(self) -> Session | None:
        session = self._session
        if session is None:
            return None
        if session.is_expired(self._clock()) and not session.refreshable:
            return None
        return session

    def on_change(self, listener: SessionListener) -> Subscription:
        return self._listeners.add(listener)

    async def wait_restored(self) -> None:
        await self._restored.wait()

    async def get_fresh_session(self) -> Result[Session]:
        """Current session, refreshed first if its remaining lifetime is under the margin."""
        session = self.get_session()
        if session is None:
            return fail(ErrorKind.UNAUTHENTICATED, "Not signed in.")
        if not session.refreshable or not self._needs_refresh(session):
            return ok(session)

        async with self._refresh_lock:
            current = self._session
            if current is None:
                return fail(ErrorKind.UNAUTHENTICATED, "Not signed in.")
            if current is not session and not self._needs_refresh(current):
                # Another caller refreshed while we waited for the lock.
                return ok(current)
            return await self._refresh_locked(current)

    async def refresh(self) -> Result[Session]:
        """Exchange the refresh token now, regardless of remaining lifetime."""
        async with self._refresh_lock:
            current = self._session
            if current is None or not current.refreshable:
                return fail(ErrorKind.UNAUTHENTICATED, "No refreshable session.")
            return await self._refresh_locked(current)

    # ---- lifecycle ----

    async def restore(self) -> Session | None:
        """
        Load the persisted session once at startup.

        Ends in AUTHENTICATED or ANONYMOUS and notifies listeners with
        INITIAL_SESSION. Later calls wait for the first one and return the
        current session.
        """
        if self._state is not SessionState.UNINITIALIZED:
            await self._restored.wait()
            return self.get_session()

        self._set_state(SessionState.RESTORING)
        session = self._load_persisted()
        self._stored_token = session.access_token if session is not None else None
        clear_storage = False

        if session is not None and self._needs_refresh(session):
            if session.refresh_token:
                try:
                    session = await self._auth.refresh_session(session.refresh_token)
                except Exception as exc:
                    err = as_remote_error(exc)
                    if err.kind is ErrorKind.NETWORK:
                        # Keep the snapshot on disk so the next start can retry the exchange.
                        logger.warning("Session refresh during restore failed: %s", err.message)
                        if session.is_expired(self._clock()):
                            session = None
                    else:
                        logger.info("Persisted session was rejected (%s); starting anonymous", err.kind)
                        session = None
                        clear_storage = True
            elif session.is_expired(self._clock()):
                session = None
                clear_storage = True

        if self._state is not SessionState.RESTORING:
            # A sign-in landed while the refresh exchange was in flight; it wins.
            return self.get_session()

        if session is not None:
            self._transition(SessionState.AUTHENTICATED, session, AuthEvent.INITIAL_SESSION)
        else:
            self._transition(
                SessionState.ANONYMOUS, None, AuthEvent.INITIAL_SESSION, persist=clear_storage
            )
        return session

    def start(self) -> None:
        """Start the auto-refresh ticker (needs a running loop)."""
        if self._ticker is None or self._ticker.done():
            self._ticker = asyncio.create_task(self._auto_refresh_loop(), name="session-auto-refresh")

    async def aclose(self) -> None:
        ticker, self._ticker = self._ticker, None
        if ticker is not None:
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker
        self._listeners.clear()

    async def tick(self) -> None:
        """One auto-refresh step: pick up external changes, then refresh if close to expiry."""
        self.sync_from_storage()
        session = self._session
        if session is not None and session.refreshable and self._needs_refresh(session):
            _, err = await self.get_fresh_session()
            if err is not None:
                logger.info("Auto-refresh did not renew the session: %s", err.kind)

    def sync_from_storage(self) -> bool:
        """
        Adopt a session written (or removed) by another process sharing the storage.

        Returns True if a transition happened.
        """
        if self._state not in (SessionState.AUTHENTICATED, SessionState.ANONYMOUS):
            return False

        stored = self._load_persisted()
        stored_token = stored.access_token if stored is not None else None
        if stored_token == self._stored_token:
            return False
        self._stored_token = stored_token

        if stored is None:
            if self._session is None:
                return False
            logger.info("Session removed externally; signing out locally")
            self._transition(SessionState.ANONYMOUS, None, AuthEvent.SIGNED_OUT, persist=False)
            return True

        if stored.is_expired(self._clock()) and not stored.refreshable:
            return False

        current = self._session
        event = (
            AuthEvent.TOKEN_REFRESHED
            if current is not None and current.user.id == stored.user.id
            else AuthEvent.SIGNED_IN
        )
        logger.info("Session changed externally (%s)", event)
        self._transition(SessionState.AUTHENTICATED, stored, event, persist=False)
        return True

    # ---- writers (auth orchestrator only) ----

    def commit_session(self, session: Session, event: AuthEvent = AuthEvent.SIGNED_IN) -> None:
        if self._state is SessionState.UNINITIALIZED:
            raise SessionStateError("restore() must run before a session can be committed")
        self._transition(SessionState.AUTHENTICATED, session, event)

    def drop_session(self, event: AuthEvent = AuthEvent.SIGNED_OUT) -> bool:
        """Move to ANONYMOUS and clear persistence. Returns False if nothing changed."""
        if self._state is SessionState.UNINITIALIZED:
            self._persist(None)
            return False
        if self._state is SessionState.ANONYMOUS:
            self._persist(None)
            return False
        self._transition(SessionState.ANONYMOUS, None, event)
        return True

    # ---- internals ----

    def _needs_refresh(self, session: Session) -> bool:
        return session.expires_in(self._clock()) < self._margin

    async def _refresh_locked(self, session: Session) -> Result[Session]:
        if not session.refresh_token:
            return fail(ErrorKind.UNAUTHENTICATED, "No refreshable session.")
        try:
            fresh = await self._auth.refresh_session(session.refresh_token)
        except Exception as exc:
            err = as_remote_error(exc)
            if err.kind is ErrorKind.NETWORK:
                logger.warning("Session refresh failed (network): %s", err.message)
                return None, err.to_error()
            logger.info("Refresh token rejected (%s); signing out", err.kind)
            if self._session is session:
                self.drop_session(AuthEvent.SIGNED_OUT)
            return fail(ErrorKind.UNAUTHENTICATED, "Session expired. Please sign in again.")

        if self._session is not session:
            # Signed out (or switched user) while the exchange was in flight.
            current = self.get_session()
            if current is None:
                return fail(ErrorKind.UNAUTHENTICATED, "Not signed in.")
            return ok(current)

        self._transition(SessionState.AUTHENTICATED, fresh, AuthEvent.TOKEN_REFRESHED)
        return ok(fresh)

    def _load_persisted(self) -> Session | None:
        try:
            raw = self._storage.load()
        except Exception:
            logger.exception("Failed to read persisted session")
            return None
        if not raw:
            return None
        try:
            return Session.from_dict(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Discarding malformed persisted session: %r", e)
            return None

    def _persist(self, session: Session | None) -> None:
        try:
            if session is None:
                self._storage.clear()
            else:
                self._storage.save(session.to_dict())
        except Exception:
            logger.exception("Failed to persist session")
            return
        self._stored_token = session.access_token if session is not None else None

    def _set_state(self, new_state: SessionState) -> None:
        if new_state not in _ALLOWED[self._state]:
            raise SessionStateError(f"invalid session transition {self._state} -> {new_state}")
        self._state = new_state

    def _transition(
            self,
            new_state: SessionState,
            session: Session | None,
            event: AuthEvent,
            *,
            persist: bool = True,
    ) -> None:
        old_state = self._state
        self._set_state(new_state)
        self._session = session
        if persist:
            self._persist(session)
        if old_state is SessionState.RESTORING:
            self._restored.set()

        logger.info(
            "Session %s -> %s (%s) user=%s",
            old_state.value,
            new_state.value,
            event.value,
            session.user.id if session is not None else None,
        )
        self._listeners.emit(event, session)

    async def _auto_refresh_loop(self) -> None:
        """To stop the ticker, cancel the task (aclose())."""
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Session auto-refresh tick failed")
