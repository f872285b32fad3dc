# src/taskdeck/cli/console.py

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime

from ..core.state import AppContext
from .commands import CommandContext, registry as command_registry
from .views import TodosView

logger = logging.getLogger(__name__)

_EOF = object()


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> threading.Thread:
    """
    Read stdin lines on a daemon thread and hand them to the loop.

    A daemon thread (instead of asyncio.to_thread) so a blocked input() never
    holds up interpreter shutdown.
    """

    def _reader() -> None:
        while True:
            try:
                line = input()
            except (EOFError, KeyboardInterrupt):
                loop.call_soon_threadsafe(queue.put_nowait, _EOF)
                return
            except RuntimeError:
                # Loop already closed.
                return
            try:
                loop.call_soon_threadsafe(queue.put_nowait, line)
            except RuntimeError:
                return

    t = threading.Thread(target=_reader, name="stdin-reader", daemon=True)
    t.start()
    return t


async def run_console_loop(app: AppContext) -> None:
    logger.info("Console started (session=%s).", app.sessions.state.value)
    _print_ts("[CONSOLE] Type /help for commands, /exit to quit.")

    session = app.sessions.get_session()
    if session is not None:
        _print_ts(f"Welcome back, {session.user.email or session.user.id}. Open your list with /todos.")
    else:
        _print_ts("Not signed in. Use /login or /signup.")

    queue: asyncio.Queue = asyncio.Queue()
    _start_stdin_reader(asyncio.get_running_loop(), queue)

    async with TodosView(app, emit=_print_ts) as view:
        ctx = CommandContext(app=app, emit=_print_ts, view=view)
        while True:
            item = await queue.get()
            if item is _EOF:
                logger.info("Console EOF received, exiting.")
                break

            user_input = str(item).strip()
            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                reply = await command_registry.handle(ctx, user_input)
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."

            if reply is None:
                reply = "Commands start with '/'. Use /help to list them."
            _print_ts(reply)

    logger.info("Console finished.")
