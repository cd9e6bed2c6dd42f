"""Git hosting providers for blamemr.

Supports GitLab (cloud + self-hosted) and GitHub (cloud + Enterprise).
"""

from .base import MergeRequestProvider
from .github import GitHubProvider
from .gitlab import GitLabProvider
from .registry import PROVIDERS, ProviderRegistry, default_registry

__all__ = [
    "MergeRequestProvider",
    "GitHubProvider",
    "GitLabProvider",
    "PROVIDERS",
    "ProviderRegistry",
    "default_registry",
]
