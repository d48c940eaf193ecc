"""Session storage for the dispatcher.

Design decisions
────────────────
• ``SessionStore`` is the seam: ``get`` / ``set`` / ``delete`` by session key.
  The dispatcher depends only on this interface, so TTL policy or a
  persistent backend can change without touching handler logic.
• ``InMemorySessionStore`` keeps sessions in an **OrderedDict** for O(1)
  LRU promotion and eviction, bounded by ``max_entries``.
• **Idle TTL**: an entry untouched for ``ttl_seconds`` is dropped lazily on
  ``get`` and swept on every ``set``.
• **threading.Lock** guards the map only for the duration of a dict
  operation, so different session keys never wait on each other's turns.
• ``KeyedLocks`` serialises whole turns per key.  Lock entries are
  reference-counted and removed once nobody holds or waits on them.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from callcenter.session import Session

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_MAX_ENTRIES = 10_000


class SessionStore(ABC):
    """Key-value storage for conversation sessions."""

    @abstractmethod
    def get(self, session_id: str) -> Session | None:
        """Return the stored session or ``None``."""

    @abstractmethod
    def set(self, session: Session) -> None:
        """Insert or overwrite the session under ``session.id``."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Remove a session.  Returns ``True`` if it existed."""


class InMemorySessionStore(SessionStore):
    """Process-local store with idle-TTL expiry and an LRU size cap."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        # session_id → (session, last_touched)
        self._store: OrderedDict[str, tuple[Session, float]] = OrderedDict()
        self._lock = threading.Lock()

    # ── Core operations ──────────────────────────────────────────────

    def get(self, session_id: str) -> Session | None:
        now = self._clock()
        with self._lock:
            entry = self._store.get(session_id)
            if entry is None:
                return None
            session, touched = entry
            if self._expired(touched, now):
                del self._store[session_id]
                logger.debug("Session %s expired (idle %.0fs)", session_id, now - touched)
                return None
            self._store[session_id] = (session, now)
            self._store.move_to_end(session_id)
            return session

    def set(self, session: Session) -> None:
        now = self._clock()
        with self._lock:
            self._store[session.id] = (session, now)
            self._store.move_to_end(session.id)
            self._sweep(now)
            while len(self._store) > self._max_entries:
                evicted_id, _ = self._store.popitem(last=False)
                logger.debug("Session %s evicted (store full)", evicted_id)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._store.pop(session_id, None) is not None

    # ── Introspection ────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._store

    # ── Internal ─────────────────────────────────────────────────────

    def _expired(self, touched: float, now: float) -> bool:
        return self._ttl > 0 and now - touched > self._ttl

    def _sweep(self, now: float) -> None:
        # Oldest entries sit at the front; stop at the first live one.
        while self._store:
            session_id, (_, touched) = next(iter(self._store.items()))
            if not self._expired(touched, now):
                break
            del self._store[session_id]
            logger.debug("Session %s swept (idle)", session_id)


class KeyedLocks:
    """One mutex per key, created on demand and discarded when idle."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key → [lock, holders_and_waiters]
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        lock: threading.Lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
