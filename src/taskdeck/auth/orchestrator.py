# src/taskdeck/auth/orchestrator.py

from __future__ import annotations

"""
Auth orchestrator.

Wraps the session store with the mutating account operations. Every public
coroutine returns a (result, error) pair and never raises for remote
failures, so views can render the error inline.
"""

import base64
import hashlib
import logging
import re
import secrets
import webbrowser
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs, urlsplit

from ..core.errors import AppError, ErrorKind, Result, as_remote_error, fail, ok
from ..core.ports import AuthGateway
from ..profiles.profile_models import clean_profile_patch
from ..profiles.profile_store import ProfileStore
from .models import AuthEvent, Provider, Session, SessionState, SignUpResult, User
from .session_store import SessionStore

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _pkce_pair() -> tuple[str, str]:
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def _flat_params(raw: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(raw, keep_blank_values=False).items() if v}


class AuthOrchestrator:
    def __init__(
            self,
            auth: AuthGateway,
            sessions: SessionStore,
            *,
            profiles: ProfileStore | None = None,
            site_url: str = "http://localhost:3000",
            open_url: Callable[[str], Any] | None = None,
    ) -> None:
        self._auth = auth
        self._sessions = sessions
        self._profiles = profiles
        self._site_url = site_url.rstrip("/")
        self._open_url = open_url or webbrowser.open
        # PKCE verifier of the OAuth handshake in progress (one at a time).
        self._pending_verifier: str | None = None

    # ---- password flows ----

    async def sign_up(self, email: str, password: str, *, username: str | None = None) -> Result[SignUpResult]:
        err = self._check_credentials(email, password)
        if err is not None:
            return None, err
        await self._ready()

        metadata = {"username": username} if username else None
        try:
            reply = await self._auth.sign_up(
                email=email.strip(),
                password=password,
                metadata=metadata,
                redirect_to=f"{self._site_url}/login",
            )
        except Exception as exc:
            e = as_remote_error(exc)
            logger.info("Sign-up failed: %s", e.kind)
            return None, e.to_error()

        if reply.session is None or reply.user.identity_count == 0:
            # No identity linked yet: the address still has to be confirmed.
            logger.info("Sign-up accepted; email confirmation required user=%s", reply.user.id)
            return ok(SignUpResult(user=reply.user, requires_confirmation=True))

        self._sessions.commit_session(reply.session, AuthEvent.SIGNED_IN)
        await self._init_profile(reply.session.user, username)
        return ok(SignUpResult(user=reply.session.user, requires_confirmation=False))

    async def sign_in(self, email: str, password: str) -> Result[Session]:
        err = self._check_credentials(email, password)
        if err is not None:
            return None, err
        await self._ready()

        try:
            session = await self._auth.sign_in_with_password(email=email.strip(), password=password)
        except Exception as exc:
            e = as_remote_error(exc)
            logger.info("Sign-in failed: %s", e.kind)
            return None, e.to_error()

        self._sessions.commit_session(session, AuthEvent.SIGNED_IN)
        await self._init_profile(session.user, None)
        return ok(session)

    async def sign_out(self) -> Result[None]:
        """
        Invalidate the remote session, then go ANONYMOUS no matter what.

        Never returns an error: a failed remote call must not leave the client
        signed in locally.
        """
        self._pending_verifier = None
        # A persisted session has to be loaded before it can be invalidated.
        await self._sessions.restore()
        session = self._sessions.get_session()
        if session is not None:
            try:
                await self._auth.sign_out(session.access_token)
            except Exception as exc:
                logger.warning("Remote sign-out failed, signing out locally anyway: %s", as_remote_error(exc).message)
        self._sessions.drop_session(AuthEvent.SIGNED_OUT)
        return None, None

    # ---- social sign-in ----

    async def sign_in_with_provider(self, provider: str) -> Result[None]:
        """
        Start a redirect-based OAuth handshake.

        Returning (None, None) means the browser was sent off; the session
        shows up later through complete_redirect() as a SIGNED_IN transition.
        """
        try:
            prov = Provider(provider.strip().lower())
        except ValueError:
            names = ", ".join(p.value for p in Provider)
            return fail(ErrorKind.VALIDATION, f"Unsupported provider {provider!r} (expected one of: {names}).")
        await self._ready()

        verifier, challenge = _pkce_pair()
        url = self._auth.authorize_url(
            provider=prov.value,
            redirect_to=f"{self._site_url}/dashboard",
            code_challenge=challenge,
        )
        self._pending_verifier = verifier
        try:
            self._open_url(url)
        except Exception as exc:
            self._pending_verifier = None
            logger.exception("Failed to open OAuth URL for provider=%s", prov.value)
            return fail(ErrorKind.NETWORK, f"Could not open the {prov.value} sign-in page: {exc}")
        logger.info("OAuth handshake started provider=%s", prov.value)
        return None, None

    async def complete_redirect(self, url: str) -> Result[Session]:
        """
        Finish a redirect back from the auth service.

        Handles the PKCE code flow (?code=...) and email links carrying tokens in
        the fragment (#access_token=...&type=recovery for password reset).
        """
        parts = urlsplit(url.strip())
        query = _flat_params(parts.query)
        fragment = _flat_params(parts.fragment)
        params = {**fragment, **query}

        if "error" in params:
            msg = params.get("error_description") or params["error"]
            return fail(ErrorKind.REMOTE_VALIDATION, msg, code=params["error"])
        await self._ready()

        if "code" in query:
            verifier = self._pending_verifier
            if verifier is None:
                return fail(ErrorKind.VALIDATION, "No social sign-in is in progress.")
            try:
                session = await self._auth.exchange_code(auth_code=query["code"], code_verifier=verifier)
            except Exception as exc:
                return None, as_remote_error(exc).to_error()
            self._pending_verifier = None
            self._sessions.commit_session(session, AuthEvent.SIGNED_IN)
            await self._init_profile(session.user, None)
            return ok(session)

        access_token = fragment.get("access_token")
        if not access_token:
            return fail(ErrorKind.VALIDATION, "The link carries no sign-in credentials.")

        payload: dict[str, Any] = {
            "access_token": access_token,
            "refresh_token": fragment.get("refresh_token"),
            "token_type": fragment.get("token_type") or "bearer",
        }
        try:
            if fragment.get("expires_at"):
                payload["expires_at"] = float(fragment["expires_at"])
            elif fragment.get("expires_in"):
                payload["expires_in"] = float(fragment["expires_in"])
        except ValueError:
            return fail(ErrorKind.VALIDATION, "The link is malformed.")

        try:
            user = await self._auth.get_user(access_token)
        except Exception as exc:
            return None, as_remote_error(exc).to_error()

        try:
            session = Session.from_dict({**payload, "user": user.to_dict()})
        except (TypeError, ValueError) as e:
            logger.info("Rejecting redirect link: %r", e)
            return fail(ErrorKind.VALIDATION, "The link is malformed.")

        event = AuthEvent.PASSWORD_RECOVERY if fragment.get("type") == "recovery" else AuthEvent.SIGNED_IN
        self._sessions.commit_session(session, event)
        return ok(session)

    # ---- password reset / account updates ----

    async def request_password_reset(self, email: str) -> Result[None]:
        """
        Ask for a reset link.

        Success-shaped for unknown addresses as well, so the answer never tells
        whether an account exists; only transport failures surface.
        """
        if not email or not _EMAIL_RE.match(email.strip()):
            return fail(ErrorKind.VALIDATION, "Enter a valid email address.")
        try:
            await self._auth.reset_password_for_email(
                email.strip(), redirect_to=f"{self._site_url}/reset-password"
            )
        except Exception as exc:
            e = as_remote_error(exc)
            if e.kind is ErrorKind.NETWORK:
                return None, e.to_error()
            logger.info("Password reset request not accepted (%s); reporting success", e.kind)
        return None, None

    async def update_password(self, new_password: str) -> Result[None]:
        if not new_password:
            return fail(ErrorKind.VALIDATION, "Password must not be empty.")
        session, err = await self._sessions.get_fresh_session()
        if session is None:
            return None, err

        try:
            user = await self._auth.update_user(session.access_token, password=new_password)
        except Exception as exc:
            return None, as_remote_error(exc).to_error()
        self._commit_user(session, user)
        logger.info("Password updated user=%s", user.id)
        return None, None

    async def update_profile(self, patch: dict[str, Any]) -> Result[User]:
        """Partial update: fields missing from patch stay as they are server-side."""
        try:
            changes = clean_profile_patch(patch)
        except ValueError as e:
            return fail(ErrorKind.VALIDATION, str(e))
        if not changes:
            return fail(ErrorKind.VALIDATION, "Nothing to update.")

        session, err = await self._sessions.get_fresh_session()
        if session is None:
            return None, err

        try:
            user = await self._auth.update_user(session.access_token, metadata=changes)
        except Exception as exc:
            return None, as_remote_error(exc).to_error()
        self._commit_user(session, user)

        if self._profiles is not None:
            _, perr = await self._profiles.update_profile(user.id, changes)
            if perr is not None and perr.kind is ErrorKind.NOT_FOUND:
                await self._init_profile(user, user.username)
            elif perr is not None:
                logger.warning("Profile row not updated user=%s: %s", user.id, perr.message)
        return ok(user)

    # ---- helpers ----

    async def _ready(self) -> None:
        if self._sessions.state is SessionState.UNINITIALIZED:
            await self._sessions.restore()

    def _commit_user(self, session: Session, user: User) -> None:
        current = self._sessions.get_session()
        base = current if current is not None and current.user.id == user.id else session
        self._sessions.commit_session(base.with_user(user), AuthEvent.USER_UPDATED)

    async def _init_profile(self, user: User, username: str | None) -> None:
        if self._profiles is None:
            return
        _, err = await self._profiles.ensure_profile(user, username)
        if err is not None:
            logger.warning("Profile initialization failed user=%s: %s", user.id, err.message)

    @staticmethod
    def _check_credentials(email: str, password: str) -> AppError | None:
        if not email or not _EMAIL_RE.match(email.strip()):
            return AppError(ErrorKind.VALIDATION, "Enter a valid email address.")
        if not password:
            return AppError(ErrorKind.VALIDATION, "Password must not be empty.")
        return None
