"""GitLab provider.

Supports GitLab.com and self-hosted GitLab (host taken from the remote, or
the configured GITLAB_URL).
"""

from urllib.parse import quote

import httpx

from ..types import MergeRequest, MergeRequestStats, ProviderId
from .base import MergeRequestProvider


class GitLabProvider(MergeRequestProvider):
    """GitLab provider for Merge Requests.

    Claims remotes such as:
    - git@gitlab.com:group/project.git
    - https://gitlab.com/group/subgroup/project.git
    - git@git.company.com:team/repo.git (when GITLAB_URL is https://git.company.com)
    """

    id = ProviderId.GITLAB.value
    name = "GitLab"
    default_host_url = "https://gitlab.com"

    def _get_headers(self, token: str) -> dict[str, str]:
        """Get HTTP headers for GitLab API requests."""
        return {
            "PRIVATE-TOKEN": token,
            "Accept": "application/json",
        }

    @staticmethod
    def _project_api_base(host: str, project_path: str) -> str:
        # Nested group paths must be sent as a single encoded segment
        return f"{host}/api/v4/projects/{quote(project_path, safe='')}"

    async def _lookup(
        self, client: httpx.AsyncClient, token: str, host: str, project_path: str, sha: str
    ) -> MergeRequest | None:
        url = f"{self._project_api_base(host, project_path)}/repository/commits/{sha}/merge_requests"
        mrs = await self._get_json_list(client, url, token)
        selected = self.select_merge_request(mrs)
        return self._map_merge_request(selected) if selected else None

    async def _lookup_stats(
        self, client: httpx.AsyncClient, token: str, host: str, project_path: str, number: int
    ) -> MergeRequestStats:
        # changes_count is only present on the single-MR endpoint
        url = f"{self._project_api_base(host, project_path)}/merge_requests/{number}"
        mr_data = await self._get_json(client, url, token)
        changes_count = mr_data.get("changes_count")
        return MergeRequestStats(
            changes_count=str(changes_count) if changes_count is not None else None
        )

    @classmethod
    def select_merge_request(cls, mrs: list[dict]) -> dict | None:
        """Select the MR that introduced a commit.

        Strategy: the merged MR with the earliest ``merged_at``; if none are
        merged, the first MR returned (e.g. still open).
        """
        return cls._select_earliest_merged(mrs, lambda mr: mr.get("state") == "merged")

    @staticmethod
    def _map_merge_request(mr: dict) -> MergeRequest:
        """Map GitLab API response to MergeRequest."""
        return MergeRequest(
            number=mr["iid"],
            title=mr.get("title", ""),
            web_url=mr.get("web_url", ""),
            merged_at=mr.get("merged_at"),
            state=mr.get("state", "opened"),
        )
