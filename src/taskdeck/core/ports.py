# src/taskdeck/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the hosted service swappable and makes testing easier: the test
suite drives the session store and task engine through in-memory fakes.

Every gateway method raises RemoteError (core/errors.py) on failure.
"""

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..auth.models import Session, SignUpReply, User
    from ..tasks.task_models import ChangeEvent

Row = dict[str, Any]
# Equality filters: {"id": "...", "user_id": "..."} -> id=eq.... & user_id=eq....
Match = dict[str, str]


class AuthGateway(Protocol):
    """Password, OAuth (PKCE), refresh and account endpoints of the auth service."""

    async def sign_up(
            self,
            *,
            email: str,
            password: str,
            metadata: dict[str, Any] | None = None,
            redirect_to: str | None = None,
    ) -> SignUpReply: ...

    async def sign_in_with_password(self, *, email: str, password: str) -> Session: ...

    def authorize_url(self, *, provider: str, redirect_to: str | None, code_challenge: str) -> str: ...

    async def exchange_code(self, *, auth_code: str, code_verifier: str) -> Session: ...

    async def refresh_session(self, refresh_token: str) -> Session: ...

    async def get_user(self, access_token: str) -> User: ...

    async def update_user(
            self,
            access_token: str,
            *,
            password: str | None = None,
            metadata: dict[str, Any] | None = None,
    ) -> User: ...

    async def sign_out(self, access_token: str) -> None: ...

    async def reset_password_for_email(self, email: str, *, redirect_to: str | None = None) -> None: ...


class TableGateway(Protocol):
    """Row-level access to a table, always narrowed by equality filters."""

    async def select(
            self,
            table: str,
            *,
            match: Match,
            access_token: str,
            order: str | None = None,
    ) -> list[Row]: ...

    async def insert(self, table: str, row: Row, *, access_token: str) -> list[Row]: ...

    async def update(self, table: str, patch: Row, *, match: Match, access_token: str) -> list[Row]: ...

    async def delete(self, table: str, *, match: Match, access_token: str) -> list[Row]: ...


class ChangeChannel(Protocol):
    """
    One open realtime subscription.

    recv() blocks until the next change and raises ChannelClosed when the
    channel goes away for any reason other than close().
    """

    async def recv(self) -> ChangeEvent: ...
    async def close(self) -> None: ...


class RealtimeGateway(Protocol):
    async def open_channel(self, *, table: str, match: Match, access_token: str) -> ChangeChannel: ...


class SessionStorage(Protocol):
    """Durable slot for the serialized session (one per app data dir)."""

    def load(self) -> dict[str, Any] | None: ...
    def save(self, data: dict[str, Any]) -> None: ...
    def clear(self) -> None: ...
