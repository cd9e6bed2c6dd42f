"""Provider registry for automatic provider detection."""

from ..config import Settings
from .base import MergeRequestProvider
from .github import GitHubProvider
from .gitlab import GitLabProvider


# Default registration order - first match wins
PROVIDERS: list[type[MergeRequestProvider]] = [
    GitLabProvider,
    GitHubProvider,
]


class ProviderRegistry:
    """Holds provider clients and picks one for a remote URL.

    Detection is a linear scan in registration order. If two providers
    could both claim a URL (e.g. a GitHub Enterprise host whose name
    contains "gitlab"), the one registered first wins; there is no
    priority scoring.
    """

    def __init__(self, providers: list[MergeRequestProvider] | None = None) -> None:
        self._providers: dict[str, MergeRequestProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: MergeRequestProvider) -> None:
        """Register a provider; an existing provider with the same id is replaced in place."""
        self._providers[provider.id] = provider

    def get(self, provider_id: str) -> MergeRequestProvider | None:
        return self._providers.get(provider_id)

    def require(self, provider_id: str) -> MergeRequestProvider:
        """Like get, but raises for unknown ids.

        Raises:
            ValueError: If no provider is registered under ``provider_id``
        """
        provider = self.get(provider_id)
        if provider is None:
            raise ValueError(f"No provider registered with id: {provider_id}")
        return provider

    def detect(self, remote_url: str) -> MergeRequestProvider | None:
        """Return the first registered provider that claims ``remote_url``."""
        for provider in self._providers.values():
            if provider.claims(remote_url):
                return provider
        return None

    def list(self) -> list[MergeRequestProvider]:
        return list(self._providers.values())

    def clear(self) -> None:
        self._providers.clear()

    def __len__(self) -> int:
        return len(self._providers)


def default_registry(settings: Settings) -> ProviderRegistry:
    """Build the GitLab + GitHub registry from configuration."""
    hosts = {
        GitLabProvider: (settings.gitlab_url, settings.gitlab_token),
        GitHubProvider: (settings.github_url, settings.github_token),
    }
    registry = ProviderRegistry()
    for provider_cls in PROVIDERS:
        host_url, token = hosts[provider_cls]
        registry.register(
            provider_cls(host_url=host_url, token=token, timeout=settings.request_timeout)
        )
    return registry
