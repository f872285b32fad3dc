# src/taskdeck/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the concrete service adapters (GoTrue over httpx, the supabase
  client's PostgREST tables, Phoenix channels over websockets) into AppContext.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from supabase import AsyncClientOptions, acreate_client

from ..auth.storage import FileSessionStorage
from ..config import get_settings
from ..core.state import AppContext, build_app_context
from ..remote.http_api import HttpAuthGateway, ServiceClient
from ..remote.realtime import WebSocketRealtimeGateway
from ..remote.tables import PostgrestTableGateway

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.session_path.parent.mkdir(parents=True, exist_ok=True)


async def create_app_context(*, settings=None, open_url: Callable[[str], Any] | None = None) -> AppContext:
    """
    Create AppContext from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    Raises RuntimeError when the service URL or API key is missing or rejected.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    client = ServiceClient(
        settings.service_url,
        settings.api_key or "",
        timeout_seconds=settings.http_timeout_seconds,
    )
    try:
        # Sessions live in SessionStore; the SDK client only carries table requests.
        supabase = await acreate_client(
            settings.service_url,
            settings.api_key or "",
            options=AsyncClientOptions(
                auto_refresh_token=False,
                persist_session=False,
                postgrest_client_timeout=settings.http_timeout_seconds,
            ),
        )
    except Exception as e:
        await client.aclose()
        raise RuntimeError(f"Service client setup failed: {e}") from e
    postgrest = supabase.postgrest

    ctx = build_app_context(
        settings,
        auth_gateway=HttpAuthGateway(client),
        tables=PostgrestTableGateway(postgrest),
        realtime=WebSocketRealtimeGateway(
            settings.service_url,
            settings.api_key or "",
            heartbeat_seconds=settings.realtime_heartbeat_seconds,
        ),
        storage=FileSessionStorage(settings.session_path),
        open_url=open_url,
    )
    ctx.closers.append(client.aclose)
    ctx.closers.append(postgrest.aclose)
    logger.info("App context ready service=%s session_file=%s", settings.service_url, settings.session_path)
    return ctx
