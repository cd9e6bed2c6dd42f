"""Lookup orchestrator: cache, in-flight deduplication and cancellation.

Every lookup for a ``(provider id, sha)`` key moves through three states:

- Uncached: no cache entry. The first caller starts a fetch task and
  registers it as the key's in-flight request; later callers attach to it.
- InFlight: one task per key runs ``provider.resolve``. Any number of
  callers wait on it, each through its own shield, so a caller that gives up
  never cancels the fetch for the others.
- Settled: the in-flight entry is removed and the cache written in one
  critical section, then every waiter receives the same value. Later
  lookups hit the cache until expiry or invalidation.

The check-then-act on the cache and the in-flight map happens under one
lock that is never held across an ``await``.
"""

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from .cache import ABSENT, ResultCache
from .providers.base import MergeRequestProvider
from .providers.registry import ProviderRegistry
from .types import (
    BlameLine,
    LookupResult,
    MergeRequest,
    MergeRequestStats,
    RemoteInfo,
    VcsError,
    VcsErrorType,
    VcsResult,
)

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[VcsError, MergeRequestProvider], None]

Key = tuple[str, str]


@dataclass
class InFlightRequest:
    """A fetch in progress for one key, shared by all of its waiters."""
    key: Key
    task: asyncio.Task
    waiters: int = 0


@dataclass
class _Route:
    provider: MergeRequestProvider
    remote: RemoteInfo


class _Abandoned(Exception):
    """The caller's cancel event fired before the fetch settled."""


class LookupOrchestrator:
    """Resolve commits to MRs with at most one network call per key.

    Args:
        registry: Providers used to detect the platform of a remote
        cache: Shared result cache
    """

    def __init__(self, registry: ProviderRegistry, cache: ResultCache) -> None:
        self._registry = registry
        self._cache = cache
        self._lock = threading.Lock()
        self._in_flight: dict[Key, InFlightRequest] = {}
        self._stats_in_flight: dict[Key, asyncio.Task] = {}
        self._error_handlers: list[ErrorHandler] = []
        self._closed = False

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def waiter_count(self, provider_id: str, sha: str) -> int:
        """Number of callers currently waiting on the fetch for a key."""
        with self._lock:
            request = self._in_flight.get((provider_id, sha))
            return request.waiters if request else 0

    # -- error surfacing -------------------------------------------------------

    def on_error(self, handler: ErrorHandler) -> Callable[[], None]:
        """Register a handler for typed provider errors.

        Returns:
            A function that unregisters the handler
        """
        self._error_handlers.append(handler)

        def remove() -> None:
            if handler in self._error_handlers:
                self._error_handlers.remove(handler)

        return remove

    def _emit_error(self, error: VcsError, provider: MergeRequestProvider) -> None:
        for handler in list(self._error_handlers):
            try:
                handler(error, provider)
            except Exception:
                logger.exception("Error handler failed for %s", error.type.value)

    # -- routing ---------------------------------------------------------------

    def _route(self, remote_url: str) -> _Route | None:
        provider = self._registry.detect(remote_url)
        if provider is None:
            logger.debug("No provider claims remote %s", remote_url)
            return None
        remote = provider.parse_remote_url(remote_url)
        if remote is None:
            logger.debug("[%s] Could not parse remote %s", provider.name, remote_url)
            return None
        return _Route(provider=provider, remote=remote)

    # -- lookups ---------------------------------------------------------------

    async def resolve(
        self, remote_url: str, sha: str, cancel: asyncio.Event | None = None
    ) -> LookupResult:
        """Resolve a commit to its MR.

        Args:
            remote_url: Git remote of the repository the commit belongs to
            sha: Commit SHA
            cancel: Set by the caller to stop waiting. Only this caller
                stops; the fetch keeps running for other waiters and still
                populates the cache.

        Returns:
            LookupResult; ``checked`` is False when nothing authoritative
            is known (unknown remote, or the caller cancelled)
        """
        route = self._route(remote_url)
        if route is None:
            return LookupResult.unavailable()
        provider = route.provider
        key = (provider.id, sha)

        with self._lock:
            cached = self._cache.get(*key)
            if cached is not ABSENT:
                return LookupResult(mr=cached, from_cache=True, checked=True)
            if cancel is not None and cancel.is_set():
                return LookupResult.unavailable(pending=key in self._in_flight)
            request = self._in_flight.get(key)
            if request is None:
                if self._closed:
                    raise RuntimeError("LookupOrchestrator is closed")
                task = asyncio.ensure_future(
                    self._fetch(route, sha, self._cache.generation)
                )
                request = InFlightRequest(key=key, task=task)
                self._in_flight[key] = request
                logger.debug("[%s] Starting lookup for %s", provider.name, sha)
            else:
                logger.debug("[%s] Attaching to in-flight lookup for %s", provider.name, sha)
            request.waiters += 1

        try:
            mr = await self._wait(request.task, cancel)
        except _Abandoned:
            return LookupResult.unavailable(pending=not request.task.done())
        finally:
            with self._lock:
                request.waiters -= 1
        return LookupResult(mr=mr, from_cache=False, checked=True)

    async def resolve_blame(
        self, remote_url: str, blame: BlameLine, cancel: asyncio.Event | None = None
    ) -> LookupResult:
        """Resolve the commit behind a blame line; uncommitted lines have no MR."""
        if blame.is_uncommitted:
            return LookupResult.unavailable()
        return await self.resolve(remote_url, blame.sha, cancel)

    async def _fetch(self, route: _Route, sha: str, generation: int) -> MergeRequest | None:
        provider = route.provider
        key = (provider.id, sha)
        try:
            result = await provider.resolve(route.remote.project_path, sha, route.remote.host)
        except Exception as e:
            logger.exception("[%s] Provider raised during lookup for %s", provider.name, sha)
            result = VcsResult.fail(
                VcsError(type=VcsErrorType.UNKNOWN, message=f"Lookup failed: {e}")
            )
        except BaseException:
            with self._lock:
                self._in_flight.pop(key, None)
            raise

        mr = result.data if result.success else None
        with self._lock:
            self._in_flight.pop(key, None)
            # Failures are cached as "no MR" so the same failing call is not
            # repeated within the TTL window
            self._cache.set(provider.id, sha, mr, generation=generation)

        if not result.success:
            logger.debug(
                "[%s] Lookup for %s failed: %s", provider.name, sha, result.error.message
            )
            self._emit_error(result.error, provider)
        return mr

    @staticmethod
    async def _wait(task: asyncio.Task, cancel: asyncio.Event | None):
        """Wait for ``task`` without letting this caller cancel it."""
        shielded = asyncio.shield(task)
        if cancel is None:
            return await shielded

        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {shielded, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancelled.cancel()
            losers = [cancelled]
            if not shielded.done():
                # Cancels only this caller's shield, never the shared task
                shielded.cancel()
                losers.append(shielded)
            await asyncio.gather(*losers, return_exceptions=True)
        if shielded in done:
            return shielded.result()
        raise _Abandoned()

    # -- stats -----------------------------------------------------------------

    async def fetch_stats(self, remote_url: str, sha: str) -> MergeRequestStats | None:
        """Lazily enrich a cached MR with change statistics.

        Returns:
            The stats, or None when the commit has no cached MR or the
            provider could not supply them
        """
        route = self._route(remote_url)
        if route is None:
            return None
        provider = route.provider
        key = (provider.id, sha)

        with self._lock:
            cached = self._cache.get(*key)
            if cached is ABSENT or cached is None:
                return None
            if cached.stats is not None:
                return cached.stats
            task = self._stats_in_flight.get(key)
            if task is None:
                task = asyncio.ensure_future(self._fetch_stats(route, sha, cached.number))
                self._stats_in_flight[key] = task

        return await asyncio.shield(task)

    async def _fetch_stats(self, route: _Route, sha: str, number: int) -> MergeRequestStats | None:
        provider = route.provider
        key = (provider.id, sha)
        try:
            result = await provider.fetch_stats(route.remote.project_path, number, route.remote.host)
        except Exception:
            logger.exception("[%s] Provider raised fetching stats for !%d", provider.name, number)
            return None
        finally:
            with self._lock:
                self._stats_in_flight.pop(key, None)

        if not result.success:
            logger.debug(
                "[%s] Stats for !%d unavailable: %s", provider.name, number, result.error.message
            )
            return None
        if not self._cache.update_stats(provider.id, sha, result.data):
            logger.debug("[%s] Cache entry for %s gone before stats arrived", provider.name, sha)
        return result.data

    # -- lifecycle -------------------------------------------------------------

    def set_credential(self, provider_id: str, token: str | None) -> None:
        """Swap a provider's token.

        Cached failures from the previous credential are dropped; fetches
        already in flight keep the token they started with.

        Raises:
            ValueError: If ``provider_id`` is not registered
        """
        provider = self._registry.require(provider_id)
        provider.set_credential(token)
        self._cache.invalidate_all()

    def invalidate(self) -> None:
        self._cache.invalidate_all()

    async def aclose(self) -> None:
        """Cancel outstanding fetches; further lookups raise RuntimeError."""
        with self._lock:
            self._closed = True
            tasks = [r.task for r in self._in_flight.values()]
            tasks.extend(self._stats_in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
