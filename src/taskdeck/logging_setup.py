# src/taskdeck/logging_setup.py

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path

# Loggers that run behind the prompt (reconnects, ticker); the console only hears their warnings.
_BACKGROUND_LOGGERS = (
    "taskdeck.remote.realtime",
    "taskdeck.tasks.task_sync",
    "taskdeck.auth.session_store",
)

_SECRET_PARAM_RE = re.compile(r"(?i)\b(access_token|refresh_token|apikey|code_verifier|password)=([^&\s'\"]+)")
_BEARER_RE = re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._~+/=-]+")


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the prompt readable while the live task list redraws:
    - taskdeck logs pass, background components only at WARNING+
    - third-party libraries (httpx, websockets, supabase) only at ERROR+
    - captured Python warnings only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("taskdeck."):
            if name.startswith(_BACKGROUND_LOGGERS):
                return record.levelno >= logging.WARNING
            return True

        return record.levelno >= logging.ERROR


class _RedactSecretsFilter(logging.Filter):
    """Mask tokens that end up in messages (redirect URLs, realtime URLs, exception reprs)."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _BEARER_RE.sub("Bearer ***", _SECRET_PARAM_RE.sub(r"\1=***", message))
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskdeck",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Console handler (filtered for the REPL) plus a full debug log file.

    Both handlers redact tokens. Call once, before the first log line.
    Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "taskdeck.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    redact = _RedactSecretsFilter()

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(redact)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    fh.addFilter(redact)
    root.addHandler(fh)

    logging.captureWarnings(True)

    # httpx logs every request line at INFO; hpack/h2 log every frame at DEBUG.
    for name in ("httpx", "httpcore", "hpack", "h2"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.INFO)
    return log_file
