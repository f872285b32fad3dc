# src/taskdeck/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppContext, restores the persisted session,
then runs the console REPL until /exit, EOF or Ctrl+C.
"""

from __future__ import annotations

import asyncio
import logging
import sys

from ..cli.bootstrap import create_app_context
from ..cli.console import run_console_loop
from ..config import get_settings
from ..core.state import running
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _amain(settings) -> int:
    try:
        ctx = await create_app_context(settings=settings)
    except RuntimeError as e:
        logger.error("%s", e)
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    async with running(ctx):
        await run_console_loop(ctx)
    return 0


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/taskdeck")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "taskdeck"))

    try:
        code = asyncio.run(_amain(settings))
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt, shutting down...")
        code = 0
    logger.info("Bye.")
    raise SystemExit(code)


if __name__ == "__main__":
    main()
