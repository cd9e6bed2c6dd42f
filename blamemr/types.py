"""Type definitions for commit-to-MR resolution."""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")

UNCOMMITTED_SHA = "0" * 40


class ProviderId(str, Enum):
    """Identifiers of the supported hosting platforms."""
    GITLAB = "gitlab"
    GITHUB = "github"
    BITBUCKET = "bitbucket"


@dataclass(frozen=True)
class MergeRequestStats:
    """MR/PR change statistics.

    GitHub reports granular line and file counts; GitLab only reports
    ``changes_count``, which may be a capped string such as ``"1000+"``.
    """
    additions: int | None = None
    deletions: int | None = None
    changed_files: int | None = None
    changes_count: str | None = None

    def to_dict(self) -> dict:
        return {
            "additions": self.additions,
            "deletions": self.deletions,
            "changedFiles": self.changed_files,
            "changesCount": self.changes_count,
        }


@dataclass(frozen=True)
class MergeRequest:
    """A resolved merge request (GitLab) or pull request (GitHub)."""
    number: int
    title: str
    web_url: str
    merged_at: str | None
    state: str
    stats: MergeRequestStats | None = None

    def with_stats(self, stats: MergeRequestStats) -> "MergeRequest":
        """Return a copy carrying ``stats``; shared instances are never mutated."""
        return replace(self, stats=stats)

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "title": self.title,
            "webUrl": self.web_url,
            "mergedAt": self.merged_at,
            "state": self.state,
            "stats": self.stats.to_dict() if self.stats else None,
        }


@dataclass(frozen=True)
class RemoteInfo:
    """Host and project path extracted from a git remote URL."""
    host: str  # scheme + host, e.g. https://gitlab.com
    project_path: str  # group/subgroup/project
    provider: str = ""


@dataclass(frozen=True)
class BlameLine:
    """Per-line blame record produced by the blame parser."""
    sha: str
    author: str
    date: datetime
    summary: str
    line: int = 0
    author_email: str = ""

    @property
    def is_uncommitted(self) -> bool:
        return not self.sha.strip("0")


class VcsErrorType(str, Enum):
    """Typed failures returned by provider clients."""
    NO_CREDENTIAL = "NO_CREDENTIAL"
    INVALID_CREDENTIAL = "INVALID_CREDENTIAL"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class VcsError:
    """A provider failure plus whether the UI should be told about it."""
    type: VcsErrorType
    message: str
    status_code: int | None = None
    should_surface: bool = False

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "message": self.message,
            "statusCode": self.status_code,
            "shouldSurface": self.should_surface,
        }


@dataclass(frozen=True)
class VcsResult(Generic[T]):
    """Outcome of a provider operation: either ``data`` or ``error``."""
    data: T | None = None
    error: VcsError | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, data: T | None) -> "VcsResult[T]":
        return cls(data=data)

    @classmethod
    def fail(cls, error: VcsError) -> "VcsResult[T]":
        return cls(error=error)


@dataclass(frozen=True)
class LookupResult:
    """What the orchestrator hands back to a single caller.

    ``checked`` is True only when ``mr`` is authoritative (cache hit or a
    settled fetch). ``pending`` means the caller stopped waiting while the
    fetch kept running; ``mr`` is then None but nothing has been confirmed.
    """
    mr: MergeRequest | None = None
    from_cache: bool = False
    pending: bool = False
    checked: bool = False

    @classmethod
    def unavailable(cls, pending: bool = False) -> "LookupResult":
        return cls(mr=None, from_cache=False, pending=pending, checked=False)

    def to_dict(self) -> dict:
        return {
            "mr": self.mr.to_dict() if self.mr else None,
            "fromCache": self.from_cache,
            "pending": self.pending,
            "checked": self.checked,
        }


@dataclass
class ProviderStatus:
    """Diagnostic view of one registered provider."""
    id: str
    name: str
    host_url: str
    has_credential: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "hostUrl": self.host_url,
            "hasCredential": self.has_credential,
        }
