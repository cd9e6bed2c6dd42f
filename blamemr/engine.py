"""Composition root: builds and owns the resolution engine's parts."""

import logging
import time
from collections.abc import Callable

from .cache import RepositoryStateSignal, ResultCache
from .config import Settings
from .orchestrator import LookupOrchestrator
from .providers.registry import ProviderRegistry, default_registry
from .types import ProviderStatus

logger = logging.getLogger(__name__)


class Engine:
    """Registry, cache, repository-state signal and orchestrator, wired together.

    Created once at startup and closed at shutdown by whoever hosts it
    (the HTTP service lifespan, the CLI, or tests).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        registry: ProviderRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.registry = registry or default_registry(self.settings)
        self.cache = ResultCache(ttl=self.settings.cache_ttl, clock=clock)
        self.repository_changed = RepositoryStateSignal()
        self.cache.watch(self.repository_changed)
        self.orchestrator = LookupOrchestrator(self.registry, self.cache)
        logger.debug(
            "Engine ready: providers=%s ttl=%ss",
            [p.id for p in self.registry.list()],
            self.cache.ttl,
        )

    def provider_status(self) -> list[ProviderStatus]:
        return [
            ProviderStatus(
                id=p.id, name=p.name, host_url=p.host_url, has_credential=p.has_credential()
            )
            for p in self.registry.list()
        ]

    async def aclose(self) -> None:
        await self.orchestrator.aclose()
        self.cache.dispose()

    async def __aenter__(self) -> "Engine":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
