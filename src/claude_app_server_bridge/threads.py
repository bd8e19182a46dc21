from __future__ import annotations

import itertools
import logging
import time
from collections.abc import Callable

from .errors import BridgeInvalidParamsError
from .models import Thread
from .session_store import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ThreadRegistry:
    """In-memory store of conversation threads.

    Threads are never removed; `archive` only flags them. When a
    `SessionStore` is given, existing records are loaded on construction and
    every mutation is written back.
    """

    def __init__(
        self,
        *,
        store: SessionStore | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._clock = clock
        self._threads: dict[str, Thread] = store.load() if store is not None else {}
        self._ids = itertools.count(_next_sequence(self._threads))
        if self._threads:
            logger.info("loaded %d threads from session store", len(self._threads))

    def __len__(self) -> int:
        return len(self._threads)

    def __contains__(self, thread_id: object) -> bool:
        return thread_id in self._threads

    def get(self, thread_id: str | None) -> Thread | None:
        if thread_id is None:
            return None
        return self._threads.get(thread_id)

    def require(self, thread_id: str | None) -> Thread:
        """Return the thread or raise an invalid-params error."""
        thread = self.get(thread_id)
        if thread is None:
            raise BridgeInvalidParamsError(f"Thread not found: {thread_id}")
        return thread

    def create(self, cwd: str) -> Thread:
        """Create and register a new thread rooted at `cwd`."""
        sequence = next(self._ids)
        now = self._clock()
        thread = Thread(
            id=f"thread-{sequence}",
            name=f"Session {sequence}",
            cwd=cwd,
            created_at=now,
            updated_at=now,
        )
        self._threads[thread.id] = thread
        self._persist()
        return thread

    def resume(self, thread_id: str | None) -> Thread:
        """Look up a thread to resume; item history is not retained."""
        return self.require(thread_id)

    def fork(self, source_id: str | None) -> Thread:
        """Create a new thread sharing the source's cwd and agent session."""
        source = self.require(source_id)
        forked = self.create(source.cwd)
        forked.session_id = source.session_id
        forked.name = f"Fork of {source.name}"
        self._persist()
        return forked

    def list_threads(self, limit: int | None = None) -> list[Thread]:
        """Non-archived threads, most recently updated first."""
        if not limit or limit <= 0:
            limit = DEFAULT_LIST_LIMIT
        visible = [thread for thread in self._threads.values() if not thread.archived]
        visible.sort(key=lambda thread: thread.updated_at, reverse=True)
        return visible[:limit]

    def archive(self, thread_id: str | None) -> bool:
        """Flag a thread archived. Unknown ids are ignored."""
        thread = self.get(thread_id)
        if thread is None:
            return False
        thread.archived = True
        self._bump(thread)
        self._persist()
        return True

    def rename(self, thread_id: str | None, name: str) -> bool:
        """Rename a thread. Unknown ids are ignored."""
        thread = self.get(thread_id)
        if thread is None:
            return False
        thread.name = name
        self._bump(thread)
        self._persist()
        return True

    def touch(self, thread_id: str) -> None:
        """Record activity on a thread (turn completion)."""
        thread = self.get(thread_id)
        if thread is None:
            return
        self._bump(thread)
        self._persist()

    def capture_session(self, thread_id: str, session_id: str | None) -> None:
        """Store the agent session handle used to resume this thread later."""
        thread = self.get(thread_id)
        if thread is None:
            return
        thread.session_id = session_id
        self._persist()

    def _bump(self, thread: Thread) -> None:
        thread.updated_at = max(self._clock(), thread.created_at)

    def _persist(self) -> None:
        if self._store is not None:
            self._store.save(self._threads)


def _next_sequence(threads: dict[str, Thread]) -> int:
    highest = 0
    for thread_id in threads:
        prefix, _, suffix = thread_id.rpartition("-")
        if prefix == "thread" and suffix.isdigit():
            highest = max(highest, int(suffix))
    return highest + 1
