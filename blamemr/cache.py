"""TTL cache of commit SHA -> MR lookups.

Reads are three-valued:

- ``ABSENT``: never looked up, expired or invalidated; the caller should fetch
- ``None``: looked up, the commit has no MR (or the lookup failed); do not refetch
- a ``MergeRequest``: looked up and found

Expiry is lazy: stale entries are evicted by the read that notices them.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from .types import MergeRequest, MergeRequestStats

logger = logging.getLogger(__name__)


class _Absent:
    """Sentinel type for "not in cache"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Final = _Absent()


class RepositoryStateSignal:
    """Payload-free "repository changed" signal.

    Fired by whatever watches the repository (pull, fetch, checkout,
    commit). Callbacks run synchronously in the emitting thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    def connect(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Subscribe ``callback``; returns a function that unsubscribes it."""
        with self._lock:
            self._callbacks.append(callback)

        def disconnect() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return disconnect

    def emit(self) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Repository state listener failed")

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._callbacks)


@dataclass(frozen=True)
class CacheEntry:
    value: MergeRequest | None
    expires_at: float


class ResultCache:
    """Time-boxed mapping of (provider id, SHA) to lookup results.

    Args:
        ttl: Seconds an entry stays valid; ``0`` disables caching
        clock: Monotonic time source, replaceable in tests
    """

    def __init__(self, ttl: float = 3600, clock: Callable[[], float] = time.monotonic) -> None:
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], CacheEntry] = {}
        self._ttl = max(0.0, float(ttl))
        self._clock = clock
        self._disconnects: list[Callable[[], None]] = []
        self._generation = 0

    @property
    def ttl(self) -> float:
        return self._ttl

    @ttl.setter
    def ttl(self, seconds: float) -> None:
        # Applies to later writes; existing entries keep their expiry
        self._ttl = max(0.0, float(seconds))

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    @property
    def generation(self) -> int:
        """Counter bumped by every invalidation."""
        with self._lock:
            return self._generation

    def get(self, provider_id: str, sha: str) -> MergeRequest | None | _Absent:
        """Return the cached MR, None for a cached "no MR", or ABSENT."""
        key = (provider_id, sha)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return ABSENT
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return ABSENT
            return entry.value

    def has(self, provider_id: str, sha: str) -> bool:
        return self.get(provider_id, sha) is not ABSENT

    def set(
        self,
        provider_id: str,
        sha: str,
        value: MergeRequest | None,
        generation: int | None = None,
    ) -> bool:
        """Cache an MR, or None for "no MR found".

        When ``generation`` is given and an invalidation happened since it
        was read, the write is dropped: the value was computed against
        repository state that no longer holds.

        Returns:
            True if the value was stored
        """
        if not self.enabled:
            return False
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries[(provider_id, sha)] = CacheEntry(
                value=value, expires_at=self._clock() + self._ttl
            )
            return True

    def update_stats(self, provider_id: str, sha: str, stats: MergeRequestStats) -> bool:
        """Attach stats to a live cached MR.

        The entry keeps its original expiry. Returns False, changing
        nothing, when the entry expired, was invalidated, or holds None.
        """
        key = (provider_id, sha)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.value is None:
                return False
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return False
            self._entries[key] = CacheEntry(
                value=entry.value.with_stats(stats), expires_at=entry.expires_at
            )
            return True

    def invalidate_all(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._generation += 1
        if count:
            logger.debug("Invalidated %d cached lookups", count)

    clear = invalidate_all

    def watch(self, signal: RepositoryStateSignal) -> None:
        """Invalidate everything whenever ``signal`` fires."""
        self._disconnects.append(signal.connect(self.invalidate_all))

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size

    def dispose(self) -> None:
        """Drop listener subscriptions and all entries."""
        disconnects, self._disconnects = self._disconnects, []
        for disconnect in disconnects:
            disconnect()
        self.invalidate_all()
