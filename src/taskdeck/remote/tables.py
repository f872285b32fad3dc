# src/taskdeck/remote/tables.py

from __future__ import annotations

"""
Data adapter: the `todos` and `profiles` tables through the supabase SDK's
PostgREST client.

Queries are always equality-filtered; the caller's access token is set on
the client before each request, so row-level security sees the signed-in user.
"""

import logging
from typing import Any

import httpx
from supabase import PostgrestAPIError

from ..core.errors import ErrorKind, RemoteError
from ..core.ports import Match, Row

logger = logging.getLogger(__name__)

_UNAUTHENTICATED_CODES = {"PGRST301", "PGRST302", "PGRST303", "42501", "401", "403"}


def classify_api_error(err: PostgrestAPIError) -> RemoteError:
    """Map a PostgREST error body onto the error taxonomy."""
    code = str(err.code) if err.code is not None else None
    message = err.message or str(err)

    if code in _UNAUTHENTICATED_CODES:
        kind = ErrorKind.UNAUTHENTICATED
    elif code in ("PGRST116", "404"):
        kind = ErrorKind.NOT_FOUND
    elif code is not None and len(code) == 3 and code.isdigit() and (code.startswith("5") or code == "429"):
        # Non-JSON error pages come back with the HTTP status as the code.
        kind = ErrorKind.NETWORK
    else:
        kind = ErrorKind.REMOTE_VALIDATION
    return RemoteError(kind, message, code=code)


class PostgrestTableGateway:
    """TableGateway over the SDK's PostgREST client (one signed-in user per process)."""

    def __init__(self, postgrest: Any) -> None:
        self._pg = postgrest

    def _table(self, table: str, access_token: str) -> Any:
        self._pg.auth(access_token)
        return self._pg.from_(table)

    @staticmethod
    def _filtered(query: Any, match: Match) -> Any:
        for col, val in match.items():
            query = query.eq(col, val)
        return query

    @staticmethod
    async def _execute(query: Any, what: str) -> list[Row]:
        try:
            resp = await query.execute()
        except PostgrestAPIError as e:
            err = classify_api_error(e)
            logger.debug("%s -> %s %s", what, err.kind, err.code)
            raise err from e
        except httpx.TransportError as e:
            logger.info("%s transport failure: %r", what, e)
            raise RemoteError(ErrorKind.NETWORK, f"Could not reach the service ({e.__class__.__name__}).") from e

        data = resp.data
        if data is None:
            return []
        if isinstance(data, dict):
            return [data]
        if isinstance(data, list):
            return [r for r in data if isinstance(r, dict)]
        raise RemoteError(ErrorKind.NETWORK, "Malformed rows response.")

    async def select(
            self,
            table: str,
            *,
            match: Match,
            access_token: str,
            order: str | None = None,
    ) -> list[Row]:
        query = self._filtered(self._table(table, access_token).select("*"), match)
        if order:
            col, _, direction = order.partition(".")
            query = query.order(col, desc=direction == "desc")
        return await self._execute(query, f"select {table}")

    async def insert(self, table: str, row: Row, *, access_token: str) -> list[Row]:
        return await self._execute(self._table(table, access_token).insert(row), f"insert {table}")

    async def update(self, table: str, patch: Row, *, match: Match, access_token: str) -> list[Row]:
        query = self._filtered(self._table(table, access_token).update(patch), match)
        return await self._execute(query, f"update {table}")

    async def delete(self, table: str, *, match: Match, access_token: str) -> list[Row]:
        query = self._filtered(self._table(table, access_token).delete(), match)
        return await self._execute(query, f"delete {table}")
