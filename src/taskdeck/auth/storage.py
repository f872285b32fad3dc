# src/taskdeck/auth/storage.py

from __future__ import annotations

import contextlib
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def _safe_mkdir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except Exception as e:
        logger.warning("Failed to create directory %s: %r", path, e)


def _load_json(path: Path) -> dict[str, Any]:
    raw = path.read_text("utf-8")
    val = json.loads(raw)
    if isinstance(val, dict):
        return val
    raise ValueError("Expected JSON object")


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), "utf-8")
    os.replace(tmp, path)
    with contextlib.suppress(Exception):
        # Best-effort: not critical on Windows or restricted FS.
        os.chmod(path, 0o600)


class FileSessionStorage:
    """
    Session snapshot kept as JSON in a single predictable file.

    The file holds refresh tokens: keep it under a gitignored local dir.
    Several processes pointed at the same file see each other's sign-in and
    sign-out through SessionStore.sync_from_storage().
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        _safe_mkdir(self._path.parent)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any] | None:
        if not self._path.exists():
            return None
        try:
            return _load_json(self._path)
        except Exception as e:
            logger.warning("Ignoring unreadable session file %s: %r", self._path, e)
            return None

    def save(self, data: dict[str, Any]) -> None:
        _atomic_write_json(self._path, data)
        logger.debug("Session saved to %s", self._path)

    def clear(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()
        logger.debug("Session file cleared %s", self._path)


class MemorySessionStorage:
    """Process-local storage for tests and throwaway runs."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data = dict(data) if data else None

    def load(self) -> dict[str, Any] | None:
        return dict(self.data) if self.data else None

    def save(self, data: dict[str, Any]) -> None:
        self.data = dict(data)

    def clear(self) -> None:
        self.data = None
