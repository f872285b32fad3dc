# tests/test_orchestrator.py

from __future__ import annotations

import pytest

from taskdeck.auth.models import AuthEvent, SessionState, SignUpReply, User
from taskdeck.core.errors import ErrorKind, RemoteError

from .fakes import signed_in


@pytest.mark.asyncio
async def test_sign_up_without_confirmation_signs_in_and_creates_profile(app, auth, tables, storage) -> None:
    result, err = await app.auth.sign_up("neo@example.com", "s3cret!", username="neo")

    assert err is None and result is not None
    assert result.requires_confirmation is False
    assert app.sessions.state is SessionState.AUTHENTICATED
    assert storage.load()["user"]["email"] == "neo@example.com"
    assert tables.rows["profiles"] == [{"id": result.user.id, "username": "neo"}]


@pytest.mark.asyncio
async def test_sign_up_requiring_confirmation_stays_anonymous(app, auth, storage) -> None:
    auth.confirm_required = True

    result, err = await app.auth.sign_up("neo@example.com", "s3cret!")

    assert err is None and result is not None
    assert result.requires_confirmation is True
    assert app.sessions.state is SessionState.ANONYMOUS
    assert storage.load() is None


@pytest.mark.asyncio
async def test_sign_up_without_linked_identity_needs_confirmation(app, auth, storage) -> None:
    user = User(id="user-new", email="neo@example.com", identity_count=0)

    async def sign_up(**_kwargs) -> SignUpReply:
        return SignUpReply(user=user, session=auth.issue_session(user))

    auth.sign_up = sign_up
    result, err = await app.auth.sign_up("neo@example.com", "s3cret!")

    assert err is None and result.requires_confirmation is True
    assert app.sessions.state is SessionState.ANONYMOUS
    assert storage.load() is None


@pytest.mark.asyncio
async def test_sign_up_existing_account(app, auth) -> None:
    auth.add_user("neo@example.com", "pw")
    _, err = await app.auth.sign_up("neo@example.com", "other")
    assert err is not None and err.kind is ErrorKind.ACCOUNT_EXISTS


@pytest.mark.asyncio
async def test_sign_in_rejects_bad_input_before_calling_the_service(app, auth) -> None:
    _, err = await app.auth.sign_in("not-an-email", "pw")
    assert err is not None and err.kind is ErrorKind.VALIDATION

    _, err = await app.auth.sign_in("neo@example.com", "")
    assert err is not None and err.kind is ErrorKind.VALIDATION
    assert "sign_in_with_password" not in auth.calls


@pytest.mark.asyncio
async def test_sign_in_wrong_password(app, auth) -> None:
    auth.add_user("neo@example.com", "right")
    _, err = await app.auth.sign_in("neo@example.com", "wrong")

    assert err is not None and err.kind is ErrorKind.INVALID_CREDENTIALS
    assert app.sessions.state is SessionState.ANONYMOUS


@pytest.mark.asyncio
async def test_repeated_sign_in_keeps_a_single_profile_row(app, auth, tables) -> None:
    await signed_in(app, auth)
    await app.auth.sign_out()
    await signed_in(app, auth)

    assert len(tables.rows["profiles"]) == 1


@pytest.mark.asyncio
async def test_sign_out_is_local_even_when_the_service_fails(app, auth, storage) -> None:
    await signed_in(app, auth)
    auth.fail("sign_out", RemoteError(ErrorKind.NETWORK, "offline"))

    assert await app.auth.sign_out() == (None, None)
    assert app.sessions.state is SessionState.ANONYMOUS
    assert app.sessions.get_session() is None
    assert storage.load() is None


@pytest.mark.asyncio
async def test_sign_out_before_restore_invalidates_the_persisted_session(app, auth, storage) -> None:
    user = auth.add_user("alice@example.com", "pw-alice-1")
    persisted = auth.issue_session(user)
    storage.save(persisted.to_dict())

    assert await app.auth.sign_out() == (None, None)

    assert app.sessions.state is SessionState.ANONYMOUS
    assert "sign_out" in auth.calls
    assert persisted.access_token not in auth.access_tokens
    assert storage.load() is None


@pytest.mark.asyncio
async def test_sign_out_on_a_fresh_start_ends_anonymous(app, auth) -> None:
    assert await app.auth.sign_out() == (None, None)
    assert app.sessions.state is SessionState.ANONYMOUS
    assert "sign_out" not in auth.calls


@pytest.mark.asyncio
async def test_password_reset_does_not_reveal_accounts(app, auth) -> None:
    assert await app.auth.request_password_reset("ghost@example.com") == (None, None)
    assert auth.reset_requests == [("ghost@example.com", "http://localhost:3000/reset-password")]

    _, err = await app.auth.request_password_reset("nope")
    assert err is not None and err.kind is ErrorKind.VALIDATION

    auth.fail("reset_password_for_email", RemoteError(ErrorKind.NETWORK, "offline"))
    _, err = await app.auth.request_password_reset("ghost@example.com")
    assert err is not None and err.kind is ErrorKind.NETWORK


@pytest.mark.asyncio
async def test_update_password_requires_a_session(app) -> None:
    await app.sessions.restore()
    _, err = await app.auth.update_password("new-pw")
    assert err is not None and err.kind is ErrorKind.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_update_password_then_sign_in_with_it(app, auth) -> None:
    await signed_in(app, auth)
    events: list[AuthEvent] = []
    app.sessions.on_change(lambda ev, _s: events.append(ev))

    assert await app.auth.update_password("brand-new") == (None, None)
    assert events == [AuthEvent.USER_UPDATED]

    await app.auth.sign_out()
    session, err = await app.auth.sign_in("alice@example.com", "brand-new")
    assert err is None and session is not None


@pytest.mark.asyncio
async def test_update_profile_updates_user_and_profile_row(app, auth, tables) -> None:
    session = await signed_in(app, auth)

    user, err = await app.auth.update_profile({"username": "alice2", "full_name": None})

    assert err is None and user is not None
    assert user.username == "alice2"
    assert app.sessions.get_session().user.username == "alice2"
    assert tables.rows["profiles"][0]["id"] == session.user.id
    assert tables.rows["profiles"][0]["username"] == "alice2"

    _, err = await app.auth.update_profile({"role": "admin"})
    assert err is not None and err.kind is ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_oauth_pkce_round_trip(app, auth, opened_urls) -> None:
    auth.add_user("gh@example.com", "unused")

    assert await app.auth.sign_in_with_provider("github") == (None, None)
    assert len(opened_urls) == 1 and "provider=github" in opened_urls[0]

    code = auth.grant_code("gh@example.com")
    session, err = await app.auth.complete_redirect(f"http://localhost:3000/dashboard?code={code}")

    assert err is None and session is not None
    assert session.user.email == "gh@example.com"
    assert app.sessions.state is SessionState.AUTHENTICATED


@pytest.mark.asyncio
async def test_oauth_rejects_unknown_provider_and_stray_codes(app, opened_urls) -> None:
    _, err = await app.auth.sign_in_with_provider("myspace")
    assert err is not None and err.kind is ErrorKind.VALIDATION
    assert opened_urls == []

    _, err = await app.auth.complete_redirect("http://localhost:3000/dashboard?code=abc")
    assert err is not None and err.kind is ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_redirect_with_provider_error(app) -> None:
    _, err = await app.auth.complete_redirect(
        "http://localhost:3000/dashboard?error=access_denied&error_description=User+cancelled"
    )
    assert err is not None and err.kind is ErrorKind.REMOTE_VALIDATION
    assert err.message == "User cancelled"


@pytest.mark.asyncio
async def test_recovery_link_emits_password_recovery(app, auth) -> None:
    user = auth.add_user("alice@example.com", "forgotten")
    link = auth.issue_session(user)
    await app.sessions.restore()
    events: list[AuthEvent] = []
    app.sessions.on_change(lambda ev, _s: events.append(ev))

    session, err = await app.auth.complete_redirect(
        "http://localhost:3000/reset-password"
        f"#access_token={link.access_token}&refresh_token={link.refresh_token}"
        "&expires_in=3600&token_type=bearer&type=recovery"
    )

    assert err is None and session is not None
    assert events == [AuthEvent.PASSWORD_RECOVERY]
    assert await app.auth.update_password("remembered") == (None, None)
    assert auth.accounts["alice@example.com"]["password"] == "remembered"


@pytest.mark.asyncio
@pytest.mark.parametrize("expiry", ["expires_at=soon", "expires_in=an+hour"])
async def test_malformed_link_is_a_validation_error(app, auth, expiry) -> None:
    user = auth.add_user("alice@example.com", "forgotten")
    link = auth.issue_session(user)
    await app.sessions.restore()

    session, err = await app.auth.complete_redirect(
        f"http://localhost:3000/reset-password#access_token={link.access_token}&{expiry}&type=recovery"
    )

    assert session is None
    assert err is not None and err.kind is ErrorKind.VALIDATION
    assert "get_user" not in auth.calls
    assert app.sessions.state is SessionState.ANONYMOUS
