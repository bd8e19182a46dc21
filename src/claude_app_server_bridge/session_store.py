"""Best-effort JSON persistence of thread metadata."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .models import Thread

logger = logging.getLogger(__name__)

DEFAULT_SESSION_STORE_PATH = Path.home() / ".claude" / "claude-code-monitor" / "sessions.json"


class SessionStore:
    """Thread-id keyed JSON file, loaded and saved wholesale.

    The file layout is ``{"threads": {"<thread id>": {...thread record...}}}``.
    Read and write failures are logged and otherwise ignored.
    """

    def __init__(self, path: str | Path = DEFAULT_SESSION_STORE_PATH) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Thread]:
        """Load every persisted thread, skipping records that fail validation."""
        raw = self._read()
        threads: dict[str, Thread] = {}
        for thread_id, record in raw.items():
            try:
                thread = Thread.model_validate(record)
            except ValidationError as exc:
                logger.warning("skipping invalid session record %r: %s", thread_id, exc)
                continue
            threads[thread.id] = thread
        return threads

    def save(self, threads: dict[str, Thread]) -> None:
        """Replace the store content with the given threads."""
        payload = {"threads": {tid: thread.to_record() for tid, thread in threads.items()}}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("cannot write session store %s: %s", self._path, exc)

    def _read(self) -> dict[str, Any]:
        try:
            parsed = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("ignoring unreadable session store %s: %s", self._path, exc)
            return {}
        if not isinstance(parsed, dict):
            return {}
        threads = parsed.get("threads")
        if not isinstance(threads, dict):
            return {}
        return threads
