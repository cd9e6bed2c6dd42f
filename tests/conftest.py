"""Shared test fixtures."""

import asyncio

import pytest
import respx

from blamemr.providers.base import MergeRequestProvider
from blamemr.types import MergeRequest, MergeRequestStats, VcsResult


@pytest.fixture
def mock_github_api():
    """Fixture providing a respx mock router for the GitHub API."""
    with respx.mock(base_url="https://api.github.com", assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
def mock_http():
    """Fixture providing a respx mock router without a base URL."""
    with respx.mock(assert_all_called=False) as respx_mock:
        yield respx_mock


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class FakeProvider(MergeRequestProvider):
    """Provider that counts calls and can be held open with ``gate``."""

    id = "gitlab"
    name = "FakeLab"
    default_host_url = "https://gitlab.com"

    def __init__(self, result=None, stats=None, token="test-token"):
        super().__init__(token=token)
        self.result = result if result is not None else VcsResult.ok(None)
        self.stats = stats or MergeRequestStats(changes_count="7")
        self.gate: asyncio.Event | None = None
        self.calls = 0
        self.stats_calls = 0

    def hold(self) -> asyncio.Event:
        """Make the next fetches block until the returned event is set."""
        self.gate = asyncio.Event()
        return self.gate

    def _get_headers(self, token):
        return {}

    async def _lookup(self, client, token, host, project_path, sha):
        raise NotImplementedError

    async def _lookup_stats(self, client, token, host, project_path, number):
        raise NotImplementedError

    async def resolve(self, project_path, sha, host_override=None):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        return self.result

    async def fetch_stats(self, project_path, number, host_override=None):
        self.stats_calls += 1
        return VcsResult.ok(self.stats)


@pytest.fixture
def sample_mr():
    return MergeRequest(
        number=42,
        title="Add blame hover",
        web_url="https://gitlab.com/group/project/-/merge_requests/42",
        merged_at="2024-03-01T10:00:00Z",
        state="merged",
    )


async def settle(rounds: int = 5):
    """Let scheduled tasks run up to their next blocking await."""
    for _ in range(rounds):
        await asyncio.sleep(0)
