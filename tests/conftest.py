# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskdeck.auth.session_store import SessionStore
from taskdeck.auth.storage import MemorySessionStorage
from taskdeck.core.state import AppContext, build_app_context

from .fakes import FakeAuthGateway, FakeClock, FakeRealtime, FakeTableGateway


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppContext and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic (no .env reads).
    """
    return SimpleNamespace(
        app_name="taskdeck-test",
        service_url="https://project.test",
        site_url="http://localhost:3000",
        login_path="/login",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        session_path=tmp_path / "session.json",
        # Session tuning
        refresh_margin_seconds=90.0,
        auto_refresh_interval_seconds=30.0,
        # Realtime: tiny delays so reconnect tests stay fast
        realtime_max_retries=3,
        realtime_retry_base_seconds=0.01,
        realtime_retry_max_seconds=0.04,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def auth(clock: FakeClock) -> FakeAuthGateway:
    return FakeAuthGateway(clock)


@pytest.fixture()
def tables() -> FakeTableGateway:
    return FakeTableGateway()


@pytest.fixture()
def realtime(tables: FakeTableGateway) -> FakeRealtime:
    return FakeRealtime(tables)


@pytest.fixture()
def storage() -> MemorySessionStorage:
    return MemorySessionStorage()


@pytest.fixture()
def opened_urls() -> list[str]:
    return []


@pytest.fixture()
def app(
    settings: SimpleNamespace,
    auth: FakeAuthGateway,
    tables: FakeTableGateway,
    realtime: FakeRealtime,
    storage: MemorySessionStorage,
    clock: FakeClock,
    opened_urls: list[str],
) -> AppContext:
    """
    AppContext wired with deterministic fakes.

    restore() is NOT called here; tests decide when the session is restored.
    """
    return build_app_context(
        settings,
        auth_gateway=auth,
        tables=tables,
        realtime=realtime,
        storage=storage,
        open_url=opened_urls.append,
        clock=clock,
    )


@pytest.fixture()
def sessions(app: AppContext) -> SessionStore:
    return app.sessions
