# src/taskdeck/tasks/task_sync.py

from __future__ import annotations

"""
Live task list.

A subscription keeps one realtime channel open, filtered to the owner:
- it reads the whole list once on start, independently of the channel, and
  again after every (re)connect and on every change event (lists are small;
  a full reload is simpler than patching by event type),
- a refresh triggered by a newer event cancels an older one still in flight,
- when the channel drops it resubscribes with exponential backoff; callers see
  DISCONNECTED only once max_retries consecutive attempts have failed.

To stop a subscription, call unsubscribe() / aclose(), or use it as an async
context manager so every exit path releases the channel.
"""

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Callable
from typing import Any

from ..auth.session_store import SessionStore
from ..core.errors import AppError, ChannelClosed, ErrorKind, RemoteError, as_remote_error
from ..core.ports import ChangeChannel, RealtimeGateway
from .task_models import OWNER_COLUMN, TODOS_TABLE, ChangeEvent, Task
from .task_store import TaskStore

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[list[Task], ChangeEvent | None], Any]
ErrorHandler = Callable[[AppError], Any]


async def _call(fn: Callable[..., Any], *args: Any) -> None:
    """Invoke a sync or async callback; a failing callback must not kill the channel loop."""
    try:
        result = fn(*args)
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Task subscription callback %r failed", fn)


class TaskSubscription:
    def __init__(
            self,
            *,
            owner_id: str,
            store: TaskStore,
            realtime: RealtimeGateway,
            sessions: SessionStore,
            on_change: ChangeHandler,
            on_error: ErrorHandler | None,
            max_retries: int,
            retry_base_seconds: float,
            retry_max_seconds: float,
    ) -> None:
        self.owner_id = owner_id
        self._store = store
        self._realtime = realtime
        self._sessions = sessions
        self._on_change = on_change
        self._on_error = on_error
        self._max_retries = max(0, int(max_retries))
        self._retry_base = max(0.0, float(retry_base_seconds))
        self._retry_max = max(self._retry_base, float(retry_max_seconds))

        self._channel: ChangeChannel | None = None
        self._pending: asyncio.Task[None] | None = None
        self._runner: asyncio.Task[None] | None = None
        self.reconnects = 0

    def start(self) -> TaskSubscription:
        if self._runner is None:
            self._runner = asyncio.create_task(self._run(), name=f"task-sync:{self.owner_id}")
        return self

    @property
    def active(self) -> bool:
        return self._runner is not None and not self._runner.done()

    @property
    def connected(self) -> bool:
        return self._channel is not None

    def unsubscribe(self) -> None:
        """Cancel the channel loop and any pending refresh (the loop closes the channel)."""
        for t in (self._pending, self._runner):
            if t is not None and not t.done():
                t.cancel()

    async def aclose(self) -> None:
        pending = [t for t in (self._pending, self._runner) if t is not None]
        self.unsubscribe()
        for t in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await t
        channel, self._channel = self._channel, None
        if channel is not None:
            with contextlib.suppress(Exception):
                await channel.close()
        logger.info("Task subscription released owner=%s", self.owner_id)

    async def __aenter__(self) -> TaskSubscription:
        return self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ---- internals ----

    def _backoff(self, attempt: int) -> float:
        return min(self._retry_max, self._retry_base * (2 ** max(0, attempt - 1)))

    async def _report(self, err: AppError) -> None:
        if self._on_error is None:
            logger.warning("Task subscription error owner=%s: %s (%s)", self.owner_id, err.message, err.kind)
            return
        await _call(self._on_error, err)

    def _schedule_refresh(self, event: ChangeEvent | None) -> None:
        pending = self._pending
        if pending is not None and not pending.done():
            pending.cancel()
        self._pending = asyncio.create_task(self._refresh(event), name=f"task-refresh:{self.owner_id}")

    async def _refresh(self, event: ChangeEvent | None) -> None:
        tasks, err = await self._store.list_tasks(self.owner_id)
        if tasks is None:
            if err is not None:
                await self._report(err)
            return
        await _call(self._on_change, tasks, event)

    async def _open(self) -> ChangeChannel | None:
        session, err = await self._sessions.get_fresh_session()
        if session is None:
            if err is not None and err.kind is not ErrorKind.NETWORK:
                raise RemoteError(err.kind, err.message)
            return None
        if session.user.id != self.owner_id:
            raise RemoteError(ErrorKind.NOT_FOUND, "No live task list for another user.")
        try:
            return await self._realtime.open_channel(
                table=TODOS_TABLE,
                match={OWNER_COLUMN: self.owner_id},
                access_token=session.access_token,
            )
        except Exception as exc:
            e = as_remote_error(exc)
            if e.kind is not ErrorKind.NETWORK:
                raise e
            logger.info("Realtime subscribe failed owner=%s: %s", self.owner_id, e.message)
            return None

    async def _run(self) -> None:
        # The list is readable over plain requests even while realtime is unreachable.
        self._schedule_refresh(None)
        failures = 0
        while True:
            try:
                channel = await self._open()
            except RemoteError as e:
                # Auth-level failure: reconnecting cannot help.
                await self._report(e.to_error())
                return

            if channel is None:
                failures += 1
                if failures > self._max_retries:
                    logger.error("Realtime channel unrecoverable owner=%s after %d attempts", self.owner_id, failures)
                    await self._report(
                        AppError(
                            ErrorKind.DISCONNECTED,
                            f"Live updates stopped after {self._max_retries} reconnect attempts.",
                        )
                    )
                    return
                await asyncio.sleep(self._backoff(failures))
                continue

            if self.reconnects:
                logger.info("Realtime channel re-established owner=%s", self.owner_id)
            failures = 0
            self._channel = channel
            # Catch up on anything that changed while (re)connecting.
            self._schedule_refresh(None)

            try:
                while True:
                    event = await channel.recv()
                    logger.debug("Change %s task=%s owner=%s", event.operation.value, event.task_id, self.owner_id)
                    self._schedule_refresh(event)
            except (ChannelClosed, RemoteError) as e:
                logger.warning("Realtime channel dropped owner=%s: %s; resubscribing", self.owner_id, e)
            finally:
                self._channel = None
                with contextlib.suppress(Exception):
                    await channel.close()

            self.reconnects += 1
            await asyncio.sleep(self._retry_base)


class TaskSync:
    """Factory for owner-filtered live subscriptions."""

    def __init__(
            self,
            store: TaskStore,
            realtime: RealtimeGateway,
            sessions: SessionStore,
            *,
            max_retries: int = 5,
            retry_base_seconds: float = 1.0,
            retry_max_seconds: float = 30.0,
    ) -> None:
        self._store = store
        self._realtime = realtime
        self._sessions = sessions
        self._max_retries = max_retries
        self._retry_base = retry_base_seconds
        self._retry_max = retry_max_seconds

    def subscribe(
            self,
            owner_id: str,
            on_change: ChangeHandler,
            on_error: ErrorHandler | None = None,
    ) -> TaskSubscription:
        """Open the live channel now (needs a running loop) and return its handle."""
        sub = TaskSubscription(
            owner_id=owner_id,
            store=self._store,
            realtime=self._realtime,
            sessions=self._sessions,
            on_change=on_change,
            on_error=on_error,
            max_retries=self._max_retries,
            retry_base_seconds=self._retry_base,
            retry_max_seconds=self._retry_max,
        )
        logger.info("Task subscription opened owner=%s", owner_id)
        return sub.start()
