"""Shared configuration loaded from .env"""

import os
import warnings
from dataclasses import dataclass

from dotenv import load_dotenv

# Make environment loading explicit with opt-out mechanism
if os.getenv("BLAMEMR_AUTO_LOAD_DOTENV", "true").lower() == "true":
    load_dotenv()


def _get_int(env_var: str, default: int, name: str) -> int:
    """Safely convert environment variable to int with fallback.

    Args:
        env_var: Environment variable name
        default: Default value if env var is not set or invalid
        name: Human-readable name for error messages

    Returns:
        Integer value from env var or default
    """
    value = os.getenv(env_var, str(default))
    try:
        result = int(value)
        if result < 0:
            warnings.warn(f"{name} must be non-negative, got {result}. Using default {default}.")
            return default
        return result
    except ValueError:
        warnings.warn(f"Invalid {env_var} value '{value}', using default {default}")
        return default


def _get_token(env_var: str) -> str | None:
    """Return a token from the environment, treating blank values as unset."""
    value = os.getenv(env_var)
    if value is None or not value.strip():
        return None
    return value.strip()


# Provider credentials and hosts
GITLAB_TOKEN = _get_token("GITLAB_TOKEN")
GITLAB_URL = os.getenv("GITLAB_URL", "https://gitlab.com")
GITHUB_TOKEN = _get_token("GITHUB_TOKEN")
GITHUB_URL = os.getenv("GITHUB_URL", "https://github.com")

# Result cache TTL in seconds (0 disables caching)
CACHE_TTL = _get_int("CACHE_TTL", 3600, "CACHE_TTL")

# Per-request HTTP timeout in seconds
REQUEST_TIMEOUT = _get_int("REQUEST_TIMEOUT", 30, "REQUEST_TIMEOUT")

# API Server configuration
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = _get_int("API_PORT", 8765, "API_PORT")


@dataclass(frozen=True)
class Settings:
    """Snapshot of the configuration consumed by the engine."""
    gitlab_url: str = "https://gitlab.com"
    gitlab_token: str | None = None
    github_url: str = "https://github.com"
    github_token: str | None = None
    cache_ttl: float = 3600
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            gitlab_url=GITLAB_URL,
            gitlab_token=GITLAB_TOKEN,
            github_url=GITHUB_URL,
            github_token=GITHUB_TOKEN,
            cache_ttl=CACHE_TTL,
            request_timeout=float(REQUEST_TIMEOUT),
        )
