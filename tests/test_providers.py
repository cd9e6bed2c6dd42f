"""Tests for the GitLab and GitHub provider clients."""

import httpx
import pytest
from httpx import Response

from blamemr.providers.github import GitHubProvider
from blamemr.providers.gitlab import GitLabProvider
from blamemr.types import VcsErrorType

GITLAB_MRS = r"https://gitlab\.com/api/v4/projects/.+/repository/commits/abc123/merge_requests"


def gitlab_mr(iid, state="merged", merged_at="2024-03-01T10:00:00Z"):
    return {
        "iid": iid,
        "title": f"MR {iid}",
        "web_url": f"https://gitlab.com/group/project/-/merge_requests/{iid}",
        "merged_at": merged_at,
        "state": state,
    }


def github_pr(number, merged_at="2024-03-01T10:00:00Z", state="closed"):
    return {
        "number": number,
        "title": f"PR {number}",
        "html_url": f"https://github.com/owner/repo/pull/{number}",
        "merged_at": merged_at,
        "state": state,
    }


class TestClaims:
    """Tests for remote URL ownership."""

    def test_gitlab_claims_gitlab_remotes(self):
        provider = GitLabProvider()
        assert provider.claims("git@gitlab.com:group/project.git")
        assert provider.claims("https://gitlab.example.com/org/project.git")
        assert not provider.claims("git@github.com:owner/repo.git")

    def test_gitlab_claims_configured_self_hosted(self):
        provider = GitLabProvider(host_url="https://git.company.com")
        assert provider.claims("git@git.company.com:team/repo.git")

    def test_github_claims_github_remotes(self):
        provider = GitHubProvider()
        assert provider.claims("git@github.com:owner/repo.git")
        assert provider.claims("https://github.example.com/owner/repo")
        assert not provider.claims("git@gitlab.com:group/project.git")

    def test_parse_remote_url_tags_provider(self):
        info = GitLabProvider().parse_remote_url("git@gitlab.com:group/sub/project.git")
        assert info.provider == "gitlab"
        assert info.project_path == "group/sub/project"
        assert GitLabProvider().parse_remote_url("git@github.com:owner/repo.git") is None


class TestCredentials:
    """Tests for credential state."""

    def test_has_credential(self):
        assert GitLabProvider(token="glpat-x").has_credential()
        assert not GitLabProvider(token="").has_credential()
        assert not GitLabProvider().has_credential()

    def test_set_credential(self):
        provider = GitHubProvider()
        provider.set_credential("ghp_x")
        assert provider.has_credential()
        provider.set_credential(None)
        assert not provider.has_credential()

    @pytest.mark.asyncio
    async def test_no_credential_surfaces_once(self, mock_http):
        """A missing token is reported without any request, surfaced only once."""
        route = mock_http.get(url__regex=GITLAB_MRS)
        provider = GitLabProvider()

        first = await provider.resolve("group/project", "abc123")
        second = await provider.resolve("group/project", "abc123")

        assert not route.called
        assert first.error.type == VcsErrorType.NO_CREDENTIAL
        assert first.error.should_surface is True
        assert second.error.should_surface is False


class TestGitLabResolve:
    """Tests for GitLab commit -> MR lookup."""

    @pytest.mark.asyncio
    async def test_request_contract(self, mock_http):
        """Token header and a single encoded segment for nested project paths."""
        route = mock_http.get(url__regex=GITLAB_MRS).mock(
            return_value=Response(200, json=[gitlab_mr(42)])
        )
        provider = GitLabProvider(token="glpat-secret")

        result = await provider.resolve("group/subgroup/project", "abc123")

        assert result.success
        request = route.calls.last.request
        assert request.headers["PRIVATE-TOKEN"] == "glpat-secret"
        assert b"/api/v4/projects/group%2Fsubgroup%2Fproject/" in request.url.raw_path

    @pytest.mark.asyncio
    async def test_maps_merge_request(self, mock_http):
        mock_http.get(url__regex=GITLAB_MRS).mock(return_value=Response(200, json=[gitlab_mr(42)]))
        provider = GitLabProvider(token="t")

        result = await provider.resolve("group/project", "abc123")

        mr = result.data
        assert mr.number == 42
        assert mr.title == "MR 42"
        assert mr.web_url.endswith("/merge_requests/42")
        assert mr.state == "merged"
        assert mr.stats is None

    @pytest.mark.asyncio
    async def test_uses_host_override(self, mock_http):
        """The host parsed from the remote wins over the configured one."""
        route = mock_http.get(
            url__regex=r"https://gitlab\.example\.com/api/v4/projects/.+/merge_requests"
        ).mock(return_value=Response(200, json=[]))
        provider = GitLabProvider(token="t")

        await provider.resolve("team/repo", "abc123", host_override="https://gitlab.example.com")

        assert route.called

    @pytest.mark.asyncio
    async def test_empty_list_is_success_without_mr(self, mock_http):
        mock_http.get(url__regex=GITLAB_MRS).mock(return_value=Response(200, json=[]))

        result = await GitLabProvider(token="t").resolve("group/project", "abc123")

        assert result.success
        assert result.data is None

    @pytest.mark.asyncio
    async def test_undecodable_body(self, mock_http):
        mock_http.get(url__regex=GITLAB_MRS).mock(return_value=Response(200, content=b"<html>"))

        result = await GitLabProvider(token="t").resolve("group/project", "abc123")

        assert result.error.type == VcsErrorType.UNKNOWN


class TestGitLabSelection:
    """Tests for choosing among several MRs."""

    def test_earliest_merged_wins(self):
        mrs = [
            gitlab_mr(1, state="opened", merged_at=None),
            gitlab_mr(2, merged_at="2024-05-01T00:00:00Z"),
            gitlab_mr(3, merged_at="2024-01-15T00:00:00Z"),
        ]
        assert GitLabProvider.select_merge_request(mrs)["iid"] == 3

    def test_merged_state_required(self):
        """A merged_at on a non-merged MR does not count."""
        mrs = [
            gitlab_mr(1, state="closed", merged_at="2023-01-01T00:00:00Z"),
            gitlab_mr(2, merged_at="2024-01-01T00:00:00Z"),
        ]
        assert GitLabProvider.select_merge_request(mrs)["iid"] == 2

    def test_falls_back_to_first(self):
        mrs = [gitlab_mr(5, state="opened", merged_at=None), gitlab_mr(6, state="opened", merged_at=None)]
        assert GitLabProvider.select_merge_request(mrs)["iid"] == 5

    def test_timezone_offsets_compared_as_instants(self):
        mrs = [
            gitlab_mr(1, merged_at="2024-01-01T10:00:00+02:00"),
            gitlab_mr(2, merged_at="2024-01-01T09:00:00Z"),
        ]
        assert GitLabProvider.select_merge_request(mrs)["iid"] == 1

    def test_empty(self):
        assert GitLabProvider.select_merge_request([]) is None


class TestErrorTaxonomy:
    """Tests for HTTP status -> VcsError mapping."""

    @pytest.mark.asyncio
    async def test_unauthorized_surfaces_once_per_credential(self, mock_http):
        mock_http.get(url__regex=GITLAB_MRS).mock(return_value=Response(401))
        provider = GitLabProvider(token="bad")

        first = await provider.resolve("group/project", "abc123")
        second = await provider.resolve("group/project", "abc123")
        provider.set_credential("still-bad")
        third = await provider.resolve("group/project", "abc123")

        assert first.error.type == VcsErrorType.INVALID_CREDENTIAL
        assert first.error.status_code == 401
        assert first.error.should_surface is True
        assert second.error.should_surface is False
        assert third.error.should_surface is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,expected",
        [
            (403, VcsErrorType.INVALID_CREDENTIAL),
            (404, VcsErrorType.NOT_FOUND),
            (429, VcsErrorType.RATE_LIMITED),
            (500, VcsErrorType.UNKNOWN),
            (502, VcsErrorType.UNKNOWN),
        ],
    )
    async def test_status_mapping(self, mock_http, status, expected):
        mock_http.get(url__regex=GITLAB_MRS).mock(return_value=Response(status))

        result = await GitLabProvider(token="t").resolve("group/project", "abc123")

        assert not result.success
        assert result.error.type == expected
        assert result.error.status_code == status

    @pytest.mark.asyncio
    async def test_only_credential_errors_surface(self, mock_http):
        mock_http.get(url__regex=GITLAB_MRS).mock(return_value=Response(404))

        result = await GitLabProvider(token="t").resolve("group/project", "abc123")

        assert result.error.should_surface is False

    @pytest.mark.asyncio
    async def test_gitlab_object_body(self, mock_http):
        """A 200 error envelope instead of a list is UNKNOWN, not an exception."""
        mock_http.get(url__regex=GITLAB_MRS).mock(
            return_value=Response(200, json={"message": "sso login required"})
        )

        result = await GitLabProvider(token="t").resolve("group/project", "abc123")

        assert result.error.type == VcsErrorType.UNKNOWN

    @pytest.mark.asyncio
    async def test_github_object_body(self, mock_github_api):
        mock_github_api.get("/repos/owner/repo/commits/abc123/pulls").mock(
            return_value=Response(200, json={"message": "sso login required"})
        )

        result = await GitHubProvider(token="t").resolve("owner/repo", "abc123")

        assert result.error.type == VcsErrorType.UNKNOWN

    @pytest.mark.asyncio
    async def test_list_of_non_objects(self, mock_http):
        mock_http.get(url__regex=GITLAB_MRS).mock(return_value=Response(200, json=["a", "b"]))

        result = await GitLabProvider(token="t").resolve("group/project", "abc123")

        assert result.error.type == VcsErrorType.UNKNOWN

    @pytest.mark.asyncio
    async def test_stats_list_body(self, mock_http):
        mock_http.get(
            url__regex=r"https://gitlab\.com/api/v4/projects/.+/merge_requests/42$"
        ).mock(return_value=Response(200, json=[]))

        result = await GitLabProvider(token="t").fetch_stats("group/project", 42)

        assert result.error.type == VcsErrorType.UNKNOWN

    @pytest.mark.asyncio
    async def test_network_error(self, mock_http):
        mock_http.get(url__regex=GITLAB_MRS).mock(side_effect=httpx.ConnectError)

        result = await GitLabProvider(token="t").resolve("group/project", "abc123")

        assert result.error.type == VcsErrorType.NETWORK_ERROR
        assert result.error.status_code is None


class TestGitLabStats:
    """Tests for GitLab change statistics."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw,expected", [("1000+", "1000+"), (12, "12"), (None, None)])
    async def test_changes_count(self, mock_http, raw, expected):
        mock_http.get(
            url__regex=r"https://gitlab\.com/api/v4/projects/.+/merge_requests/42$"
        ).mock(return_value=Response(200, json={"iid": 42, "changes_count": raw}))

        result = await GitLabProvider(token="t").fetch_stats("group/project", 42)

        assert result.success
        assert result.data.changes_count == expected
        assert result.data.additions is None

    @pytest.mark.asyncio
    async def test_stats_errors_never_surface(self, mock_http):
        mock_http.get(
            url__regex=r"https://gitlab\.com/api/v4/projects/.+/merge_requests/42$"
        ).mock(return_value=Response(401))
        provider = GitLabProvider(token="t")

        result = await provider.fetch_stats("group/project", 42)

        assert result.error.type == VcsErrorType.INVALID_CREDENTIAL
        assert result.error.should_surface is False


class TestGitHubApiUrl:
    """Tests for git host -> API host conversion."""

    @pytest.mark.parametrize(
        "host,expected",
        [
            ("https://github.com", "https://api.github.com"),
            ("github.com", "https://api.github.com"),
            ("https://github.example.com", "https://api.github.example.com"),
            ("https://api.github.example.com", "https://api.github.example.com"),
        ],
    )
    def test_api_url_for(self, host, expected):
        assert GitHubProvider.api_url_for(host) == expected


class TestGitHubResolve:
    """Tests for GitHub commit -> PR lookup."""

    @pytest.mark.asyncio
    async def test_request_contract(self, mock_github_api):
        route = mock_github_api.get("/repos/owner/repo/commits/abc123/pulls").mock(
            return_value=Response(200, json=[github_pr(7)])
        )
        provider = GitHubProvider(token="ghp_secret")

        result = await provider.resolve("owner/repo", "abc123")

        request = route.calls.last.request
        assert request.headers["Authorization"] == "token ghp_secret"
        assert request.headers["Accept"] == "application/vnd.github+json"
        assert result.data.number == 7
        assert result.data.web_url == "https://github.com/owner/repo/pull/7"

    @pytest.mark.asyncio
    async def test_enterprise_api_host(self, mock_http):
        route = mock_http.get(
            "https://api.github.example.com/repos/team/repo/commits/abc123/pulls"
        ).mock(return_value=Response(200, json=[github_pr(3)]))
        provider = GitHubProvider(token="t")

        result = await provider.resolve(
            "team/repo", "abc123", host_override="https://github.example.com"
        )

        assert route.called
        assert result.data.number == 3

    @pytest.mark.asyncio
    async def test_earliest_merged_wins(self, mock_github_api):
        mock_github_api.get("/repos/owner/repo/commits/abc123/pulls").mock(
            return_value=Response(
                200,
                json=[
                    github_pr(1, merged_at=None, state="open"),
                    github_pr(2, merged_at="2024-06-01T00:00:00Z"),
                    github_pr(3, merged_at="2024-02-01T00:00:00Z"),
                ],
            )
        )

        result = await GitHubProvider(token="t").resolve("owner/repo", "abc123")

        assert result.data.number == 3

    def test_unmerged_falls_back_to_first(self):
        prs = [github_pr(9, merged_at=None, state="open"), github_pr(10, merged_at=None)]
        assert GitHubProvider.select_pull_request(prs)["number"] == 9

    @pytest.mark.asyncio
    async def test_commit_message_fallback(self, mock_github_api):
        """Squash merges are found through the PR reference in the message."""
        mock_github_api.get("/repos/owner/repo/commits/abc123/pulls").mock(
            return_value=Response(200, json=[])
        )
        mock_github_api.get("/repos/owner/repo/commits/abc123").mock(
            return_value=Response(200, json={"commit": {"message": "Fix hover (#77)\n\nDetails"}})
        )
        pr_route = mock_github_api.get("/repos/owner/repo/pulls/77").mock(
            return_value=Response(200, json=github_pr(77))
        )

        result = await GitHubProvider(token="t").resolve("owner/repo", "abc123")

        assert pr_route.called
        assert result.data.number == 77

    @pytest.mark.asyncio
    async def test_fallback_without_reference(self, mock_github_api):
        mock_github_api.get("/repos/owner/repo/commits/abc123/pulls").mock(
            return_value=Response(200, json=[])
        )
        mock_github_api.get("/repos/owner/repo/commits/abc123").mock(
            return_value=Response(200, json={"commit": {"message": "Direct push"}})
        )

        result = await GitHubProvider(token="t").resolve("owner/repo", "abc123")

        assert result.success
        assert result.data is None

    @pytest.mark.asyncio
    async def test_fallback_failure_is_no_mr(self, mock_github_api):
        """Errors in the fallback path mean "no MR", not a failed lookup."""
        mock_github_api.get("/repos/owner/repo/commits/abc123/pulls").mock(
            return_value=Response(200, json=[])
        )
        mock_github_api.get("/repos/owner/repo/commits/abc123").mock(
            return_value=Response(200, json={"commit": {"message": "Merge pull request #5 from a/b"}})
        )
        mock_github_api.get("/repos/owner/repo/pulls/5").mock(return_value=Response(404))

        result = await GitHubProvider(token="t").resolve("owner/repo", "abc123")

        assert result.success
        assert result.data is None

    @pytest.mark.asyncio
    async def test_primary_lookup_error(self, mock_github_api):
        mock_github_api.get("/repos/owner/repo/commits/abc123/pulls").mock(
            return_value=Response(429)
        )

        result = await GitHubProvider(token="t").resolve("owner/repo", "abc123")

        assert result.error.type == VcsErrorType.RATE_LIMITED


class TestGitHubMessageReference:
    """Tests for PR number extraction from commit messages."""

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Add feature (#123)", 123),
            ("Merge pull request #45 from org/branch", 45),
            ("merge Pull Request #8 from x", 8),
            ("Refs issue #12", None),
            ("", None),
        ],
    )
    def test_pr_number_from_message(self, message, expected):
        assert GitHubProvider.pr_number_from_message(message) == expected


class TestGitHubStats:
    """Tests for GitHub change statistics."""

    @pytest.mark.asyncio
    async def test_stats(self, mock_github_api):
        mock_github_api.get("/repos/owner/repo/pulls/7").mock(
            return_value=Response(
                200, json={"number": 7, "additions": 120, "deletions": 30, "changed_files": 4}
            )
        )

        result = await GitHubProvider(token="t").fetch_stats("owner/repo", 7)

        assert result.data.additions == 120
        assert result.data.deletions == 30
        assert result.data.changed_files == 4
        assert result.data.changes_count is None
