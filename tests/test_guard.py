# tests/test_guard.py

from __future__ import annotations

import asyncio

import pytest

from taskdeck.auth.guard import Allow, RedirectTo, Suspend
from taskdeck.core.errors import ErrorKind, RemoteError

from .fakes import signed_in


@pytest.mark.asyncio
async def test_guard_suspends_until_restore_finishes(app) -> None:
    assert isinstance(app.guard.authorize("/todos"), Suspend)

    pending = asyncio.create_task(app.guard.resolve("/todos"))
    await asyncio.sleep(0)
    assert not pending.done()

    await app.sessions.restore()
    decision = await pending

    assert isinstance(decision, RedirectTo)
    assert decision.location == "/login?next=/todos"


@pytest.mark.asyncio
async def test_guard_allows_restored_session(app, auth, storage) -> None:
    user = auth.add_user("alice@example.com", "pw")
    storage.save(auth.issue_session(user).to_dict())

    await app.sessions.restore()
    decision = await app.guard.resolve("/todos")
    assert isinstance(decision, Allow)
    assert decision.session.user.id == user.id


@pytest.mark.asyncio
async def test_guard_suspend_while_restore_refresh_is_in_flight(app, auth, storage) -> None:
    user = auth.add_user("alice@example.com", "pw")
    storage.save(auth.issue_session(user, ttl=10).to_dict())
    gate = asyncio.Event()
    real_refresh = auth.refresh_session

    async def slow_refresh(token: str):
        await gate.wait()
        return await real_refresh(token)

    auth.refresh_session = slow_refresh
    restoring = asyncio.create_task(app.sessions.restore())
    await asyncio.sleep(0)

    assert isinstance(app.guard.authorize("/todos"), Suspend)

    gate.set()
    await restoring
    assert isinstance(app.guard.authorize("/todos"), Allow)


@pytest.mark.asyncio
async def test_watch_reports_lost_access_only(app, auth, clock) -> None:
    await signed_in(app, auth)
    redirects: list[RedirectTo] = []
    watch = app.guard.watch(redirects.append, next_path="/todos")

    clock.advance(3600 - 30)
    await app.sessions.get_fresh_session()
    assert redirects == []

    await app.auth.sign_out()
    assert [r.location for r in redirects] == ["/login?next=/todos"]

    watch.unsubscribe()
    await signed_in(app, auth)
    auth.fail("sign_out", RemoteError(ErrorKind.NETWORK, "offline"))
    await app.auth.sign_out()
    assert len(redirects) == 1
