"""Abstract base class for Git hosting providers."""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, ClassVar

import httpx

from ..remote_parser import looks_like_provider, parse_remote
from ..types import (
    MergeRequest,
    MergeRequestStats,
    RemoteInfo,
    VcsError,
    VcsErrorType,
    VcsResult,
)

# Constants for API requests
DEFAULT_TIMEOUT = 30.0
USER_AGENT = "blamemr"

logger = logging.getLogger(__name__)


class ApiStatusError(Exception):
    """Non-2xx response from a provider API."""

    def __init__(self, url: str, status_code: int):
        super().__init__(f"{url} returned status {status_code}")
        self.url = url
        self.status_code = status_code


class MergeRequestProvider(ABC):
    """Abstract base for Git hosting providers (GitLab, GitHub, etc.).

    Each provider implements:
    - Remote URL ownership (claims)
    - Commit to MR/PR lookup and selection (resolve)
    - Lazy change statistics (fetch_stats)

    Token and host are read once at the start of every call, so rotating a
    credential while a fetch is in flight only affects later fetches.
    Failures are never raised to callers; they come back as a VcsResult
    carrying a typed VcsError.
    """

    # Provider identifier (e.g., "github", "gitlab")
    id: ClassVar[str] = "unknown"
    name: ClassVar[str] = "Unknown"
    default_host_url: ClassVar[str] = ""

    def __init__(
        self,
        host_url: str | None = None,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._lock = threading.Lock()
        self._host_url = (host_url or self.default_host_url).rstrip("/")
        self._token = token or None
        self._timeout = timeout
        self._has_surfaced_credential_error = False

    # -- credentials ---------------------------------------------------------

    def has_credential(self) -> bool:
        """True when a non-empty token is configured (validity is not checked)."""
        with self._lock:
            return bool(self._token)

    def set_credential(self, token: str | None) -> None:
        """Replace the token and re-arm the one-shot credential warning."""
        with self._lock:
            self._token = token or None
            self._has_surfaced_credential_error = False

    def reset_error_state(self) -> None:
        with self._lock:
            self._has_surfaced_credential_error = False

    @property
    def host_url(self) -> str:
        with self._lock:
            return self._host_url

    @host_url.setter
    def host_url(self, url: str) -> None:
        with self._lock:
            self._host_url = url.rstrip("/")

    def _snapshot(self) -> tuple[str | None, str]:
        """Read token and host together for the duration of one call."""
        with self._lock:
            return self._token, self._host_url

    def _should_surface_credential_error(self) -> bool:
        """Return True the first time a credential error occurs, then False."""
        with self._lock:
            should_surface = not self._has_surfaced_credential_error
            self._has_surfaced_credential_error = True
            return should_surface

    # -- remote URLs -----------------------------------------------------------

    def claims(self, remote_url: str) -> bool:
        """Return True if this provider should handle the given remote URL."""
        return looks_like_provider(remote_url, self.id, self.host_url)

    def parse_remote_url(self, remote_url: str) -> RemoteInfo | None:
        """Parse a remote this provider claims; None otherwise."""
        if not self.claims(remote_url):
            return None
        parsed = parse_remote(remote_url)
        if not parsed:
            return None
        return RemoteInfo(host=parsed.host, project_path=parsed.project_path, provider=self.id)

    # -- network -------------------------------------------------------------

    @abstractmethod
    def _get_headers(self, token: str) -> dict[str, str]:
        """HTTP headers for an authenticated API request."""
        pass

    async def _get_json(self, client: httpx.AsyncClient, url: str, token: str) -> Any:
        """GET a JSON document.

        Raises:
            ApiStatusError: On any non-2xx response
            httpx.RequestError: On DNS, connect, timeout or reset failures
        """
        resp = await client.get(url, headers=self._get_headers(token), timeout=self._timeout)
        if not resp.is_success:
            raise ApiStatusError(url, resp.status_code)
        return resp.json()

    async def _get_json_list(self, client: httpx.AsyncClient, url: str, token: str) -> list[dict]:
        """GET a JSON array of objects.

        Raises:
            TypeError: When the body is valid JSON of another shape, e.g. an
                error envelope or an SSO interstitial served with 200
        """
        payload = await self._get_json(client, url, token)
        if not isinstance(payload, list) or not all(isinstance(e, dict) for e in payload):
            raise TypeError(f"expected a list of objects from {url}, got {type(payload).__name__}")
        return payload

    @abstractmethod
    async def _lookup(
        self, client: httpx.AsyncClient, token: str, host: str, project_path: str, sha: str
    ) -> MergeRequest | None:
        """Provider-specific lookup; may raise ApiStatusError or httpx errors."""
        pass

    @abstractmethod
    async def _lookup_stats(
        self, client: httpx.AsyncClient, token: str, host: str, project_path: str, number: int
    ) -> MergeRequestStats:
        """Provider-specific stats fetch; may raise ApiStatusError or httpx errors."""
        pass

    async def resolve(
        self, project_path: str, sha: str, host_override: str | None = None
    ) -> VcsResult[MergeRequest | None]:
        """Find the MR/PR that introduced a commit.

        Args:
            project_path: Project path, e.g. "group/project"
            sha: Commit SHA
            host_override: Host parsed from the remote, used instead of the
                configured host URL

        Returns:
            VcsResult holding the selected MergeRequest, None when the
            commit has no associated MR, or a typed error
        """
        token, host = self._snapshot()
        if not token:
            return VcsResult.fail(
                VcsError(
                    type=VcsErrorType.NO_CREDENTIAL,
                    message="No Personal Access Token configured",
                    should_surface=self._should_surface_credential_error(),
                )
            )
        host = (host_override or host).rstrip("/")
        try:
            async with httpx.AsyncClient(headers={"User-Agent": USER_AGENT}) as client:
                mr = await self._lookup(client, token, host, project_path, sha)
        except ApiStatusError as e:
            return VcsResult.fail(self._error_for_status(e.status_code))
        except httpx.RequestError as e:
            logger.warning("[%s] API request failed: %s", self.name, e)
            return VcsResult.fail(
                VcsError(type=VcsErrorType.NETWORK_ERROR, message=str(e) or "Network error")
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            # Undecodable body or unexpected payload shape
            logger.warning("[%s] Unexpected API response: %s", self.name, e)
            return VcsResult.fail(
                VcsError(type=VcsErrorType.UNKNOWN, message=f"Unexpected API response: {e}")
            )
        return VcsResult.ok(mr)

    async def fetch_stats(
        self, project_path: str, number: int, host_override: str | None = None
    ) -> VcsResult[MergeRequestStats]:
        """Fetch change statistics for an already resolved MR/PR."""
        token, host = self._snapshot()
        if not token:
            return VcsResult.fail(
                VcsError(type=VcsErrorType.NO_CREDENTIAL, message="No Personal Access Token configured")
            )
        host = (host_override or host).rstrip("/")
        try:
            async with httpx.AsyncClient(headers={"User-Agent": USER_AGENT}) as client:
                stats = await self._lookup_stats(client, token, host, project_path, number)
        except ApiStatusError as e:
            return VcsResult.fail(self._error_for_status(e.status_code, surface=False))
        except httpx.RequestError as e:
            logger.warning("[%s] Stats request failed: %s", self.name, e)
            return VcsResult.fail(
                VcsError(type=VcsErrorType.NETWORK_ERROR, message=str(e) or "Network error")
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("[%s] Unexpected stats response: %s", self.name, e)
            return VcsResult.fail(
                VcsError(type=VcsErrorType.UNKNOWN, message=f"Unexpected API response: {e}")
            )
        return VcsResult.ok(stats)

    def _error_for_status(self, status_code: int, surface: bool = True) -> VcsError:
        """Map an HTTP status to a VcsError.

        Only credential errors are UI-worthy, and only once per credential.
        """
        if status_code in (401, 403):
            return VcsError(
                type=VcsErrorType.INVALID_CREDENTIAL,
                message="Invalid or expired token",
                status_code=status_code,
                should_surface=surface and self._should_surface_credential_error(),
            )
        if status_code == 404:
            return VcsError(
                type=VcsErrorType.NOT_FOUND,
                message="Project or commit not found",
                status_code=status_code,
            )
        if status_code == 429:
            logger.warning("[%s] API rate limited", self.name)
            return VcsError(
                type=VcsErrorType.RATE_LIMITED,
                message="API rate limited",
                status_code=status_code,
            )
        logger.warning("[%s] API error %d", self.name, status_code)
        return VcsError(
            type=VcsErrorType.UNKNOWN,
            message=f"API error {status_code}",
            status_code=status_code,
        )

    # -- selection -------------------------------------------------------------

    @staticmethod
    def _select_earliest_merged(entries: list[dict], is_merged=None) -> dict | None:
        """Pick the first MR to merge the commit, else the first raw entry.

        Later merges of the same commit are usually rebases or cherry-picks,
        so the earliest ``merged_at`` is the one that introduced it.
        """
        if not entries:
            return None
        merged = [
            e for e in entries
            if e.get("merged_at") and (is_merged is None or is_merged(e))
        ]
        if not merged:
            return entries[0]
        return min(merged, key=lambda e: _parse_timestamp(e["merged_at"]))


def _parse_timestamp(value: str) -> float:
    """Sort key for ISO-8601 timestamps as returned by GitLab and GitHub."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return float("inf")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()
