# tests/fakes.py

from __future__ import annotations

import asyncio
import base64
import hashlib
import itertools
from collections import defaultdict
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from taskdeck.auth.models import Session, SignUpReply, User
from taskdeck.core.errors import ChannelClosed, ErrorKind, RemoteError
from taskdeck.tasks.task_models import ChangeEvent, ChangeOperation


class FakeClock:
    """Manually advanced wall clock (seconds)."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class FakeAuthGateway:
    """
    In-memory auth service.

    - Tokens are opaque strings; refresh tokens rotate on use
    - Failures can be queued per method with fail(name, error)
    - Captures calls for assertions
    """

    def __init__(self, clock: FakeClock, *, confirm_required: bool = False, token_ttl: float = 3600.0) -> None:
        self.clock = clock
        self.confirm_required = confirm_required
        self.token_ttl = token_ttl

        self.accounts: dict[str, dict[str, Any]] = {}
        self.access_tokens: dict[str, str] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.challenges: list[str] = []
        self.codes: dict[str, tuple[str, str]] = {}
        self.reset_requests: list[tuple[str, str | None]] = []
        self.calls: list[str] = []

        self._failures: dict[str, RemoteError] = {}
        self._seq = itertools.count(1)

    # ---- test controls ----

    def add_user(self, email: str, password: str, *, username: str | None = None) -> User:
        user = User(
            id=f"user-{next(self._seq)}",
            email=email,
            metadata={"username": username} if username else {},
            identity_count=1,
        )
        self.accounts[email] = {"user": user, "password": password}
        return user

    def fail(self, method: str, error: RemoteError) -> None:
        """Make the next call of `method` raise `error`."""
        self._failures[method] = error

    def revoke_refresh_tokens(self) -> None:
        self.refresh_tokens.clear()

    def issue_session(self, user: User, *, ttl: float | None = None) -> Session:
        n = next(self._seq)
        access, refresh = f"at-{n}", f"rt-{n}"
        self.access_tokens[access] = user.id
        self.refresh_tokens[refresh] = user.id
        return Session(
            access_token=access,
            refresh_token=refresh,
            expires_at=self.clock() + (self.token_ttl if ttl is None else ttl),
            user=user,
        )

    def grant_code(self, email: str) -> str:
        """Simulate the provider redirect: bind a code to the latest PKCE challenge."""
        code = f"code-{next(self._seq)}"
        self.codes[code] = (self.accounts[email]["user"].id, self.challenges[-1])
        return code

    def user_by_id(self, user_id: str) -> User:
        for acc in self.accounts.values():
            if acc["user"].id == user_id:
                return acc["user"]
        raise KeyError(user_id)

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        err = self._failures.pop(method, None)
        if err is not None:
            raise err

    def _user_for_token(self, access_token: str) -> User:
        user_id = self.access_tokens.get(access_token)
        if user_id is None:
            raise RemoteError(ErrorKind.UNAUTHENTICATED, "invalid JWT", status=401, code="bad_jwt")
        return self.user_by_id(user_id)

    # ---- AuthGateway ----

    async def sign_up(
        self,
        *,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> SignUpReply:
        self._enter("sign_up")
        if email in self.accounts:
            raise RemoteError(ErrorKind.ACCOUNT_EXISTS, "User already registered", status=422, code="user_already_exists")
        user = self.add_user(email, password, username=(metadata or {}).get("username"))
        if self.confirm_required:
            return SignUpReply(user=user, session=None)
        session = self.issue_session(user)
        return SignUpReply(user=user, session=session)

    async def sign_in_with_password(self, *, email: str, password: str) -> Session:
        self._enter("sign_in_with_password")
        acc = self.accounts.get(email)
        if acc is None or acc["password"] != password:
            raise RemoteError(
                ErrorKind.INVALID_CREDENTIALS, "Invalid login credentials", status=400, code="invalid_credentials"
            )
        return self.issue_session(acc["user"])

    def authorize_url(self, *, provider: str, redirect_to: str | None, code_challenge: str) -> str:
        self.calls.append("authorize_url")
        self.challenges.append(code_challenge)
        return f"https://auth.test/authorize?provider={provider}&redirect_to={redirect_to}"

    async def exchange_code(self, *, auth_code: str, code_verifier: str) -> Session:
        self._enter("exchange_code")
        bound = self.codes.pop(auth_code, None)
        if bound is None or bound[1] != _challenge(code_verifier):
            raise RemoteError(ErrorKind.REMOTE_VALIDATION, "invalid flow state", status=400, code="bad_code_verifier")
        return self.issue_session(self.user_by_id(bound[0]))

    async def refresh_session(self, refresh_token: str) -> Session:
        self._enter("refresh_session")
        user_id = self.refresh_tokens.pop(refresh_token, None)
        if user_id is None:
            raise RemoteError(
                ErrorKind.UNAUTHENTICATED, "Invalid Refresh Token", status=400, code="refresh_token_not_found"
            )
        return self.issue_session(self.user_by_id(user_id))

    async def get_user(self, access_token: str) -> User:
        self._enter("get_user")
        return self._user_for_token(access_token)

    async def update_user(
        self,
        access_token: str,
        *,
        password: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> User:
        self._enter("update_user")
        user = self._user_for_token(access_token)
        acc = next(a for a in self.accounts.values() if a["user"].id == user.id)
        if password is not None:
            acc["password"] = password
        if metadata:
            user = User(id=user.id, email=user.email, metadata={**user.metadata, **metadata},
                        identity_count=user.identity_count)
            acc["user"] = user
        return user

    async def sign_out(self, access_token: str) -> None:
        self._enter("sign_out")
        user_id = self.access_tokens.pop(access_token, None)
        for rt in [rt for rt, uid in self.refresh_tokens.items() if uid == user_id]:
            del self.refresh_tokens[rt]

    async def reset_password_for_email(self, email: str, *, redirect_to: str | None = None) -> None:
        self._enter("reset_password_for_email")
        self.reset_requests.append((email, redirect_to))


TableListener = Callable[[str, ChangeEvent], None]


class FakeTableGateway:
    """
    In-memory data service with equality filters.

    Inserts get increasing created_at values; the `profiles` table enforces a
    unique id like the real one (code 23505).
    """

    _EPOCH = datetime(2024, 1, 1, tzinfo=UTC)

    def __init__(self) -> None:
        self.rows: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.calls: list[tuple[str, str, dict[str, str]]] = []
        self.listeners: list[TableListener] = []
        self._failures: dict[str, RemoteError] = {}
        self._ids = itertools.count(1)
        self._ticks = itertools.count(1)

    def fail(self, method: str, error: RemoteError) -> None:
        self._failures[method] = error

    def _enter(self, method: str, table: str, match: dict[str, str]) -> None:
        self.calls.append((method, table, dict(match)))
        err = self._failures.pop(method, None)
        if err is not None:
            raise err

    def _stamp(self) -> str:
        return (self._EPOCH + timedelta(seconds=next(self._ticks))).isoformat()

    @staticmethod
    def _matches(row: dict[str, Any], match: dict[str, str]) -> bool:
        return all(str(row.get(col)) == val for col, val in match.items())

    def _notify(self, table: str, event: ChangeEvent) -> None:
        for listener in list(self.listeners):
            listener(table, event)

    async def select(
        self,
        table: str,
        *,
        match: dict[str, str],
        access_token: str,
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        self._enter("select", table, match)
        rows = [dict(r) for r in self.rows[table] if self._matches(r, match)]
        if order:
            col, _, direction = order.partition(".")
            rows.sort(key=lambda r: r.get(col) or "", reverse=direction == "desc")
        return rows

    async def insert(self, table: str, row: dict[str, Any], *, access_token: str) -> list[dict[str, Any]]:
        self._enter("insert", table, {})
        record = dict(row)
        if table == "profiles":
            if any(r["id"] == record["id"] for r in self.rows[table]):
                raise RemoteError(
                    ErrorKind.REMOTE_VALIDATION,
                    'duplicate key value violates unique constraint "profiles_pkey"',
                    status=409,
                    code="23505",
                )
        else:
            record.setdefault("id", f"task-{next(self._ids):04d}")
            record.setdefault("is_complete", False)
            stamp = self._stamp()
            record.setdefault("created_at", stamp)
            record.setdefault("updated_at", stamp)
        self.rows[table].append(record)
        self._notify(table, ChangeEvent(ChangeOperation.INSERT, dict(record), {}))
        return [dict(record)]

    async def update(
        self,
        table: str,
        patch: dict[str, Any],
        *,
        match: dict[str, str],
        access_token: str,
    ) -> list[dict[str, Any]]:
        self._enter("update", table, match)
        out = []
        for r in self.rows[table]:
            if self._matches(r, match):
                old = dict(r)
                r.update(patch)
                r["updated_at"] = self._stamp()
                out.append(dict(r))
                self._notify(table, ChangeEvent(ChangeOperation.UPDATE, dict(r), old))
        return out

    async def delete(self, table: str, *, match: dict[str, str], access_token: str) -> list[dict[str, Any]]:
        self._enter("delete", table, match)
        gone = [r for r in self.rows[table] if self._matches(r, match)]
        self.rows[table] = [r for r in self.rows[table] if not self._matches(r, match)]
        for r in gone:
            self._notify(table, ChangeEvent(ChangeOperation.DELETE, {}, dict(r)))
        return [dict(r) for r in gone]


_DROP = object()


class FakeChannel:
    def __init__(self, table: str, match: dict[str, str]) -> None:
        self.table = table
        self.match = dict(match)
        self.closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def wants(self, table: str, event: ChangeEvent) -> bool:
        if self.closed or table != self.table:
            return False
        row = event.record or event.old_record
        return all(str(row.get(col)) == val for col, val in self.match.items())

    def push(self, event: ChangeEvent) -> None:
        self._queue.put_nowait(event)

    def drop(self) -> None:
        self._queue.put_nowait(_DROP)

    async def recv(self) -> ChangeEvent:
        if self.closed:
            raise ChannelClosed("channel closed")
        item = await self._queue.get()
        if item is _DROP or self.closed:
            raise ChannelClosed("connection lost")
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_DROP)


class FakeRealtime:
    """Owner-filtered change channels fed by a FakeTableGateway."""

    def __init__(self, tables: FakeTableGateway | None = None) -> None:
        self.channels: list[FakeChannel] = []
        self.open_attempts = 0
        self.fail_opens = 0
        self.reject: RemoteError | None = None
        if tables is not None:
            tables.listeners.append(self._on_change)

    @property
    def open_channels(self) -> list[FakeChannel]:
        return [c for c in self.channels if not c.closed]

    def drop_all(self) -> None:
        for ch in self.open_channels:
            ch.drop()

    def _on_change(self, table: str, event: ChangeEvent) -> None:
        for ch in self.open_channels:
            if ch.wants(table, event):
                ch.push(event)

    async def open_channel(self, *, table: str, match: dict[str, str], access_token: str) -> FakeChannel:
        self.open_attempts += 1
        if self.reject is not None:
            raise self.reject
        if self.fail_opens > 0:
            self.fail_opens -= 1
            raise RemoteError(ErrorKind.NETWORK, "connection refused")
        ch = FakeChannel(table, match)
        self.channels.append(ch)
        return ch


async def eventually(predicate: Callable[[], bool], *, timeout: float = 2.0) -> None:
    """Poll until predicate() holds (background tasks need a few loop turns)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


async def signed_in(app, auth: FakeAuthGateway, email: str = "alice@example.com", password: str = "pw-alice-1"):
    """Create the account if needed and sign in through the orchestrator."""
    if email not in auth.accounts:
        auth.add_user(email, password)
    session, err = await app.auth.sign_in(email, password)
    assert err is None, err
    assert session is not None
    return session
