"""Chat history store.

Storage layout (when a directory is configured):
    {history_dir}/{safe_session_key}-{key_hash}.json

``key_hash`` is a short digest of the raw key, so keys that sanitise to
the same name (``a/b`` and ``a_b``) still get separate files.

Each file holds a JSON list of message dicts. Without a directory the
store keeps history in memory for the lifetime of the process.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write via a temp file and ``os.replace`` so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass


class HistoryStore:
    """Append-only per-session message log."""

    def __init__(self, history_dir: str | Path | None = None) -> None:
        self._dir = Path(history_dir).expanduser() if history_dir else None
        self._cache: dict[str, list[dict[str, Any]]] = {}
        if self._dir is not None:
            self._dir.mkdir(parents=True, exist_ok=True)
            logger.info("History store at %s", self._dir)

    @property
    def persistent(self) -> bool:
        return self._dir is not None

    def _path(self, directory: Path, session_key: str) -> Path:
        digest = hashlib.sha1(session_key.encode("utf-8")).hexdigest()[:8]
        return directory / f"{_UNSAFE_CHARS.sub('_', session_key)}-{digest}.json"

    def _read(self, session_key: str) -> list[dict[str, Any]]:
        cached = self._cache.get(session_key)
        if cached is not None:
            return cached
        messages: list[dict[str, Any]] = []
        if self._dir is not None:
            path = self._path(self._dir, session_key)
            if path.exists():
                try:
                    data = json.loads(path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError):
                    logger.warning("Unreadable history file %s; starting empty", path, exc_info=True)
                    data = []
                if isinstance(data, list):
                    messages = [m for m in data if isinstance(m, dict)]
        self._cache[session_key] = messages
        return messages

    def append(self, session_key: str, message: dict[str, Any]) -> None:
        messages = self._read(session_key)
        messages.append(message)
        if self._dir is not None:
            _atomic_write_text(self._path(self._dir, session_key), json.dumps(messages, ensure_ascii=False))
        logger.debug(
            "History append session=%s role=%s total=%d",
            session_key, message.get("role"), len(messages),
        )

    def load(self, session_key: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Most recent *limit* messages, oldest first."""
        messages = self._read(session_key)
        if limit is not None and limit >= 0:
            messages = messages[-limit:] if limit else []
        return list(messages)

    def clear(self, session_key: str | None = None) -> None:
        """Drop one session's history, or every session's when no key is given."""
        if session_key is None:
            self._cache.clear()
            if self._dir is not None:
                for path in self._dir.glob("*.json"):
                    path.unlink(missing_ok=True)
            return
        self._cache.pop(session_key, None)
        if self._dir is not None:
            self._path(self._dir, session_key).unlink(missing_ok=True)
