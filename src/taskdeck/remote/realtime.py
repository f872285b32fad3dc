# src/taskdeck/remote/realtime.py

from __future__ import annotations

"""
Realtime adapter: Phoenix channels over a websocket.

One websocket per channel keeps the lifecycle trivial: closing the channel
closes the socket, and any socket failure surfaces as ChannelClosed from
recv(), which the task subscription turns into a resubscribe.
"""

import asyncio
import contextlib
import itertools
import json
import logging
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..core.errors import ChannelClosed, ErrorKind, RemoteError
from ..core.ports import Match
from ..tasks.task_models import ChangeEvent, ChangeOperation

logger = logging.getLogger(__name__)

_PHOENIX_TOPIC = "phoenix"


def _change_from_payload(payload: dict[str, Any]) -> ChangeEvent | None:
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    try:
        op = ChangeOperation.from_wire(data.get("type") or data.get("eventType"))
    except ValueError:
        logger.debug("Ignoring change with unknown type: %r", data.get("type"))
        return None
    record = data.get("record") if isinstance(data.get("record"), dict) else {}
    old_record = data.get("old_record") if isinstance(data.get("old_record"), dict) else {}
    return ChangeEvent(operation=op, record=record, old_record=old_record)


class PhoenixChannel:
    """ChangeChannel bound to one joined topic."""

    def __init__(self, ws: Any, topic: str, *, heartbeat_seconds: float) -> None:
        self._ws = ws
        self.topic = topic
        self._heartbeat_seconds = max(1.0, float(heartbeat_seconds))
        self._refs = itertools.count(1)
        self._heartbeat: asyncio.Task[None] | None = None
        self._closed = False

    def _next_ref(self) -> str:
        return str(next(self._refs))

    async def _send(self, topic: str, event: str, payload: dict[str, Any], ref: str | None = None) -> str:
        ref = ref or self._next_ref()
        await self._ws.send(json.dumps({"topic": topic, "event": event, "payload": payload, "ref": ref}))
        return ref

    async def _recv_message(self) -> dict[str, Any]:
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as e:
            raise ChannelClosed(f"socket closed ({e.__class__.__name__})") from e
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Ignoring non-JSON realtime frame")
            return {}
        return msg if isinstance(msg, dict) else {}

    async def join(self, *, table: str, match: Match, access_token: str, timeout: float) -> None:
        if len(match) != 1:
            raise ValueError("realtime filters support exactly one equality column")
        (col, val), = match.items()
        config = {
            "postgres_changes": [
                {"event": "*", "schema": "public", "table": table, "filter": f"{col}=eq.{val}"}
            ]
        }
        ref = await self._send(self.topic, "phx_join", {"config": config, "access_token": access_token})

        async def _await_reply() -> dict[str, Any]:
            while True:
                msg = await self._recv_message()
                if msg.get("event") == "phx_reply" and msg.get("ref") == ref:
                    return msg.get("payload") or {}

        try:
            reply = await asyncio.wait_for(_await_reply(), timeout=timeout)
        except (asyncio.TimeoutError, ChannelClosed) as e:
            raise RemoteError(ErrorKind.NETWORK, f"Realtime join failed: {e!r}") from e

        if reply.get("status") != "ok":
            reason = str((reply.get("response") or {}).get("reason") or reply)
            kind = ErrorKind.UNAUTHENTICATED if "token" in reason.lower() or "auth" in reason.lower() else ErrorKind.REMOTE_VALIDATION
            raise RemoteError(kind, f"Realtime join rejected: {reason}")

        self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name=f"heartbeat:{self.topic}")
        logger.info("Realtime joined %s (%s=eq.%s)", self.topic, col, val)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_seconds)
            try:
                await self._send(_PHOENIX_TOPIC, "heartbeat", {})
            except (ConnectionClosed, OSError):
                # recv() reports the drop.
                return

    async def recv(self) -> ChangeEvent:
        while True:
            if self._closed:
                raise ChannelClosed("channel closed")
            msg = await self._recv_message()
            if msg.get("topic") != self.topic:
                continue
            event = msg.get("event")
            payload = msg.get("payload") if isinstance(msg.get("payload"), dict) else {}
            if event == "postgres_changes":
                change = _change_from_payload(payload)
                if change is not None:
                    return change
            elif event in ("phx_error", "phx_close"):
                raise ChannelClosed(f"server sent {event}")
            elif event == "system" and payload.get("status") == "error":
                raise ChannelClosed(f"server error: {payload.get('message')}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        hb, self._heartbeat = self._heartbeat, None
        if hb is not None:
            hb.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await hb
        with contextlib.suppress(Exception):
            await self._send(self.topic, "phx_leave", {})
        with contextlib.suppress(Exception):
            await self._ws.close()
        logger.debug("Realtime channel %s closed", self.topic)


class WebSocketRealtimeGateway:
    """RealtimeGateway over /realtime/v1/websocket."""

    def __init__(
            self,
            service_url: str,
            api_key: str,
            *,
            heartbeat_seconds: float = 25.0,
            join_timeout_seconds: float = 10.0,
    ) -> None:
        base = service_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        self._url = f"{base}/realtime/v1/websocket?{urlencode({'apikey': api_key, 'vsn': '1.0.0'})}"
        self._heartbeat_seconds = heartbeat_seconds
        self._join_timeout = join_timeout_seconds
        self._ids = itertools.count(1)

    async def open_channel(self, *, table: str, match: Match, access_token: str) -> PhoenixChannel:
        try:
            ws = await websockets.connect(self._url, open_timeout=self._join_timeout)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise RemoteError(ErrorKind.NETWORK, f"Realtime connect failed: {e!r}") from e

        channel = PhoenixChannel(
            ws,
            f"realtime:{table}_changes:{next(self._ids)}",
            heartbeat_seconds=self._heartbeat_seconds,
        )
        try:
            await channel.join(table=table, match=match, access_token=access_token, timeout=self._join_timeout)
        except BaseException:
            await channel.close()
            raise
        return channel
