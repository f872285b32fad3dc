# src/taskdeck/core/errors.py

from __future__ import annotations

"""
Error taxonomy shared by every public operation.

Remote adapters raise RemoteError; the session store, orchestrator and task
engine catch it at their boundary and hand callers a (value, AppError) pair,
so views can render inline messages without exception handling.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import TypeAlias, TypeVar

T = TypeVar("T")


class ErrorKind(StrEnum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_EXISTS = "account_exists"
    UNAUTHENTICATED = "unauthenticated"
    NETWORK = "network"
    VALIDATION = "validation"
    REMOTE_VALIDATION = "remote_validation"
    NOT_FOUND = "not_found"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True, slots=True)
class AppError:
    kind: ErrorKind
    message: str
    code: str | None = None

    def __str__(self) -> str:
        return self.message or self.kind.value


# Auth operations surface the same shape; the alias keeps call sites readable.
AuthError = AppError

Result: TypeAlias = tuple[T | None, AppError | None]


def ok(value: T) -> Result[T]:
    return value, None


def fail(kind: ErrorKind, message: str, *, code: str | None = None) -> tuple[None, AppError]:
    return None, AppError(kind=kind, message=message, code=code)


class RemoteError(Exception):
    """Raised by gateway adapters; carries the taxonomy kind and wire details."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status
        self.code = code

    def to_error(self) -> AppError:
        return AppError(kind=self.kind, message=self.message, code=self.code)

    def __repr__(self) -> str:
        return f"RemoteError(kind={self.kind.value!r}, status={self.status!r}, code={self.code!r})"


def as_remote_error(exc: BaseException) -> RemoteError:
    """Normalize anything a gateway raised; unknown failures count as transport errors."""
    if isinstance(exc, RemoteError):
        return exc
    return RemoteError(ErrorKind.NETWORK, f"{exc.__class__.__name__}: {exc}" if str(exc) else exc.__class__.__name__)


class ChannelClosed(Exception):
    """A realtime channel went away (server close, socket drop, channel error)."""


class SessionStateError(RuntimeError):
    """Illegal session state transition (a programming error, not a remote failure)."""
