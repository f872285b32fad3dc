# src/taskdeck/auth/models.py

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any


class SessionState(StrEnum):
    UNINITIALIZED = "uninitialized"
    RESTORING = "restoring"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class AuthEvent(StrEnum):
    INITIAL_SESSION = "initial_session"
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    TOKEN_REFRESHED = "token_refreshed"
    USER_UPDATED = "user_updated"
    PASSWORD_RECOVERY = "password_recovery"


class Provider(StrEnum):
    GOOGLE = "google"
    GITHUB = "github"


@dataclass(frozen=True, slots=True)
class User:
    id: str
    email: str | None
    metadata: dict[str, Any] = field(default_factory=dict)
    identity_count: int = 0

    @property
    def username(self) -> str | None:
        v = self.metadata.get("username")
        return str(v) if v else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "user_metadata": dict(self.metadata),
            "identity_count": self.identity_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        """Build from a service payload or a persisted snapshot."""
        user_id = data.get("id")
        if not user_id:
            raise ValueError("user payload has no id")
        meta = data.get("user_metadata")
        if not isinstance(meta, dict):
            meta = {}
        identities = data.get("identities")
        if isinstance(identities, list):
            identity_count = len(identities)
        else:
            try:
                identity_count = int(data.get("identity_count") or 0)
            except (TypeError, ValueError):
                identity_count = 0
        email = data.get("email")
        return cls(
            id=str(user_id),
            email=str(email) if email else None,
            metadata=dict(meta),
            identity_count=identity_count,
        )


@dataclass(frozen=True, slots=True)
class Session:
    """
    Immutable credentials snapshot.

    The session store replaces the whole object on every change (refresh,
    user update); nothing mutates a Session in place.
    """

    access_token: str
    refresh_token: str | None
    expires_at: float
    user: User
    token_type: str = "bearer"

    def expires_in(self, now: float | None = None) -> float:
        now = time.time() if now is None else now
        return self.expires_at - now

    def is_expired(self, now: float | None = None) -> bool:
        return self.expires_in(now) <= 0

    @property
    def refreshable(self) -> bool:
        return bool(self.refresh_token)

    def with_user(self, user: User) -> Session:
        return replace(self, user=user)

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "token_type": self.token_type,
            "user": self.user.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, now: float | None = None) -> Session:
        """
        Build from a token response or a persisted snapshot.

        Token responses carry expires_in (relative); snapshots carry expires_at.
        """
        access_token = data.get("access_token")
        if not access_token:
            raise ValueError("session payload has no access_token")
        user_raw = data.get("user")
        if not isinstance(user_raw, dict):
            raise ValueError("session payload has no user")

        expires_at = data.get("expires_at")
        if expires_at is None:
            now = time.time() if now is None else now
            expires_at = now + float(data.get("expires_in") or 3600)

        refresh_token = data.get("refresh_token")
        return cls(
            access_token=str(access_token),
            refresh_token=str(refresh_token) if refresh_token else None,
            expires_at=float(expires_at),
            user=User.from_dict(user_raw),
            token_type=str(data.get("token_type") or "bearer"),
        )


@dataclass(frozen=True, slots=True)
class SignUpReply:
    """What the auth service answered to a sign-up request."""

    user: User
    session: Session | None


@dataclass(frozen=True, slots=True)
class SignUpResult:
    user: User
    requires_confirmation: bool
