# src/taskdeck/remote/http_api.py

from __future__ import annotations

"""
Auth adapter: the hosted GoTrue endpoints (/auth/v1) over httpx.

The session itself is owned by SessionStore, so every call here is stateless:
tokens come in as arguments and sessions go out as values. Failures are
translated into RemoteError with a taxonomy kind; nothing here retries.
"""

import logging
import time
from typing import Any
from urllib.parse import urlencode

import httpx

from ..auth.models import Session, SignUpReply, User
from ..core.errors import ErrorKind, RemoteError

logger = logging.getLogger(__name__)

_INVALID_CREDENTIAL_CODES = {"invalid_credentials", "invalid_grant"}
_ACCOUNT_EXISTS_CODES = {"user_already_exists", "email_exists"}
_UNAUTHENTICATED_CODES = {
    "bad_jwt",
    "no_authorization",
    "session_not_found",
    "session_expired",
    "refresh_token_not_found",
    "refresh_token_already_used",
}


def _error_fields(resp: httpx.Response) -> tuple[str, str | None]:
    """Pull (message, code) out of an auth error body."""
    try:
        body = resp.json()
    except ValueError:
        return (resp.text.strip() or resp.reason_phrase or f"HTTP {resp.status_code}"), None
    if not isinstance(body, dict):
        return str(body), None
    msg = (
        body.get("msg")
        or body.get("message")
        or body.get("error_description")
        or body.get("error")
        or f"HTTP {resp.status_code}"
    )
    code = body.get("error_code") or body.get("code") or body.get("error")
    return str(msg), str(code) if code is not None else None


def classify_response(resp: httpx.Response) -> RemoteError:
    """Map an HTTP error response onto the error taxonomy."""
    message, code = _error_fields(resp)
    status = resp.status_code
    lowered = message.lower()

    if code in _INVALID_CREDENTIAL_CODES or "invalid login credentials" in lowered:
        kind = ErrorKind.INVALID_CREDENTIALS
    elif code in _ACCOUNT_EXISTS_CODES or "already registered" in lowered:
        kind = ErrorKind.ACCOUNT_EXISTS
    elif status in (401, 403) or code in _UNAUTHENTICATED_CODES:
        kind = ErrorKind.UNAUTHENTICATED
    elif status == 404:
        kind = ErrorKind.NOT_FOUND
    elif status >= 500 or status == 429:
        kind = ErrorKind.NETWORK
    else:
        kind = ErrorKind.REMOTE_VALIDATION
    return RemoteError(kind, message, status=status, code=code)


class ServiceClient:
    """Thin wrapper around httpx.AsyncClient carrying the project URL and public API key."""

    def __init__(
            self,
            base_url: str,
            api_key: str,
            *,
            timeout_seconds: float = 15.0,
            transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url.strip():
            raise RuntimeError("Service URL is not set. Set TASKDECK_SERVICE_URL in your .env.")
        if not api_key or not api_key.strip():
            raise RuntimeError("Service API key is not set. Set TASKDECK_API_KEY in your .env.")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"apikey": api_key},
            timeout=httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds)),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def request(
            self,
            method: str,
            path: str,
            *,
            access_token: str | None = None,
            params: dict[str, str] | None = None,
            json: Any = None,
    ) -> Any:
        hdrs = {"Authorization": f"Bearer {access_token or self.api_key}"}
        try:
            resp = await self._http.request(method, path, params=params, json=json, headers=hdrs)
        except httpx.TransportError as e:
            logger.info("%s %s transport failure: %r", method, path, e)
            raise RemoteError(ErrorKind.NETWORK, f"Could not reach the service ({e.__class__.__name__}).") from e

        if resp.is_error:
            err = classify_response(resp)
            logger.debug("%s %s -> %s %s", method, path, resp.status_code, err.code)
            raise err
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteError(ErrorKind.NETWORK, "Malformed response from the service.", status=resp.status_code) from e


def _session_from_payload(data: Any) -> Session:
    if not isinstance(data, dict):
        raise RemoteError(ErrorKind.NETWORK, "Malformed token response.")
    try:
        return Session.from_dict(data, now=time.time())
    except (TypeError, ValueError) as e:
        raise RemoteError(ErrorKind.NETWORK, f"Malformed token response: {e}") from e


class HttpAuthGateway:
    """AuthGateway over /auth/v1."""

    def __init__(self, client: ServiceClient) -> None:
        self._client = client

    async def sign_up(
            self,
            *,
            email: str,
            password: str,
            metadata: dict[str, Any] | None = None,
            redirect_to: str | None = None,
    ) -> SignUpReply:
        params = {"redirect_to": redirect_to} if redirect_to else None
        data = await self._client.request(
            "POST",
            "/auth/v1/signup",
            params=params,
            json={"email": email, "password": password, "data": metadata or {}},
        )
        if isinstance(data, dict) and data.get("access_token"):
            session = _session_from_payload(data)
            return SignUpReply(user=session.user, session=session)
        # Confirmation pending: the body is the bare user object.
        user_raw = data.get("user", data) if isinstance(data, dict) else None
        if not isinstance(user_raw, dict):
            raise RemoteError(ErrorKind.NETWORK, "Malformed sign-up response.")
        return SignUpReply(user=User.from_dict(user_raw), session=None)

    async def sign_in_with_password(self, *, email: str, password: str) -> Session:
        data = await self._client.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return _session_from_payload(data)

    def authorize_url(self, *, provider: str, redirect_to: str | None, code_challenge: str) -> str:
        query = {
            "provider": provider,
            "code_challenge": code_challenge,
            "code_challenge_method": "s256",
        }
        if redirect_to:
            query["redirect_to"] = redirect_to
        return f"{self._client.base_url}/auth/v1/authorize?{urlencode(query)}"

    async def exchange_code(self, *, auth_code: str, code_verifier: str) -> Session:
        data = await self._client.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": code_verifier},
        )
        return _session_from_payload(data)

    async def refresh_session(self, refresh_token: str) -> Session:
        try:
            data = await self._client.request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": refresh_token},
            )
        except RemoteError as e:
            # A rejected refresh token reads as invalid_grant; it means "signed out", not "wrong password".
            if e.kind in (ErrorKind.INVALID_CREDENTIALS, ErrorKind.REMOTE_VALIDATION):
                raise RemoteError(ErrorKind.UNAUTHENTICATED, e.message, status=e.status, code=e.code) from e
            raise
        return _session_from_payload(data)

    async def get_user(self, access_token: str) -> User:
        data = await self._client.request("GET", "/auth/v1/user", access_token=access_token)
        if not isinstance(data, dict):
            raise RemoteError(ErrorKind.NETWORK, "Malformed user response.")
        return User.from_dict(data)

    async def update_user(
            self,
            access_token: str,
            *,
            password: str | None = None,
            metadata: dict[str, Any] | None = None,
    ) -> User:
        body: dict[str, Any] = {}
        if password is not None:
            body["password"] = password
        if metadata:
            body["data"] = metadata
        data = await self._client.request("PUT", "/auth/v1/user", access_token=access_token, json=body)
        if not isinstance(data, dict):
            raise RemoteError(ErrorKind.NETWORK, "Malformed user response.")
        return User.from_dict(data)

    async def sign_out(self, access_token: str) -> None:
        await self._client.request("POST", "/auth/v1/logout", access_token=access_token)

    async def reset_password_for_email(self, email: str, *, redirect_to: str | None = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._client.request("POST", "/auth/v1/recover", params=params, json={"email": email})

