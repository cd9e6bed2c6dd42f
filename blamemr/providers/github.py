"""GitHub provider.

Supports GitHub.com and GitHub Enterprise (API served from ``api.{host}``).
"""

import logging
import re
from urllib.parse import urlsplit

import httpx

from ..types import MergeRequest, MergeRequestStats, ProviderId
from .base import ApiStatusError, MergeRequestProvider

logger = logging.getLogger(__name__)


class GitHubProvider(MergeRequestProvider):
    """GitHub provider for Pull Requests.

    Claims remotes such as:
    - git@github.com:owner/repo.git
    - https://github.com/owner/repo.git
    - https://github.example.com/owner/repo.git
    """

    id = ProviderId.GITHUB.value
    name = "GitHub"
    default_host_url = "https://github.com"

    # "Title (#123)" from squash merges, "Merge pull request #123 from ..." from merge commits
    _SQUASH_REF_PATTERN = re.compile(r"\(#(\d+)\)")
    _MERGE_REF_PATTERN = re.compile(r"pull request #(\d+)", re.IGNORECASE)

    def _get_headers(self, token: str) -> dict[str, str]:
        """Get HTTP headers for GitHub API requests."""
        return {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
        }

    @staticmethod
    def api_url_for(git_host: str) -> str:
        """Convert a git host URL to its REST API base.

        github.com -> https://api.github.com
        github.enterprise.com -> https://api.github.enterprise.com
        """
        if "://" not in git_host:
            git_host = f"https://{git_host}"
        hostname = (urlsplit(git_host).hostname or "").lower()
        if not hostname:
            return git_host.rstrip("/")
        if hostname.startswith("api."):
            return f"https://{hostname}"
        if hostname == "github.com":
            return "https://api.github.com"
        return f"https://api.{hostname}"

    async def _lookup(
        self, client: httpx.AsyncClient, token: str, host: str, project_path: str, sha: str
    ) -> MergeRequest | None:
        api = self.api_url_for(host)
        prs = await self._get_json_list(client, f"{api}/repos/{project_path}/commits/{sha}/pulls", token)
        if prs:
            return self._map_pull_request(self.select_pull_request(prs))

        # The commit->pulls endpoint only knows merge-commit associations;
        # squash and rebase merges leave the PR number in the message instead.
        number = await self._pr_number_from_commit(client, token, api, project_path, sha)
        if number is None:
            return None
        return await self._fetch_pull_request(client, token, api, project_path, number)

    async def _lookup_stats(
        self, client: httpx.AsyncClient, token: str, host: str, project_path: str, number: int
    ) -> MergeRequestStats:
        api = self.api_url_for(host)
        pr = await self._get_json(client, f"{api}/repos/{project_path}/pulls/{number}", token)
        return MergeRequestStats(
            additions=pr.get("additions"),
            deletions=pr.get("deletions"),
            changed_files=pr.get("changed_files"),
        )

    @classmethod
    def select_pull_request(cls, prs: list[dict]) -> dict | None:
        """Select the PR that introduced a commit.

        GitHub reports merged PRs as ``closed`` with a ``merged_at``, so the
        timestamp alone marks a PR as merged.
        """
        return cls._select_earliest_merged(prs)

    @classmethod
    def pr_number_from_message(cls, message: str) -> int | None:
        """Extract a PR reference like ``(#123)`` or ``Merge pull request #123``."""
        match = cls._SQUASH_REF_PATTERN.search(message) or cls._MERGE_REF_PATTERN.search(message)
        return int(match.group(1)) if match else None

    async def _pr_number_from_commit(
        self, client: httpx.AsyncClient, token: str, api: str, project_path: str, sha: str
    ) -> int | None:
        try:
            commit = await self._get_json(client, f"{api}/repos/{project_path}/commits/{sha}", token)
            message = commit["commit"]["message"]
        except (ApiStatusError, httpx.RequestError, ValueError, KeyError, TypeError) as e:
            logger.warning("[GitHub] Failed to get PR number from commit message: %s", e)
            return None
        return self.pr_number_from_message(message or "")

    async def _fetch_pull_request(
        self, client: httpx.AsyncClient, token: str, api: str, project_path: str, number: int
    ) -> MergeRequest | None:
        try:
            pr = await self._get_json(client, f"{api}/repos/{project_path}/pulls/{number}", token)
            return self._map_pull_request(pr)
        except (ApiStatusError, httpx.RequestError, ValueError, KeyError, TypeError) as e:
            logger.warning("[GitHub] Failed to fetch PR #%d: %s", number, e)
            return None

    @staticmethod
    def _map_pull_request(pr: dict) -> MergeRequest:
        """Map GitHub API response to MergeRequest."""
        return MergeRequest(
            number=pr["number"],
            title=pr.get("title", ""),
            web_url=pr.get("html_url", ""),
            merged_at=pr.get("merged_at"),
            state=pr.get("state", "open"),
        )
