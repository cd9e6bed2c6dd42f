"""Parse git remote URLs into host and project path.

Handles both remote forms git accepts for hosted repositories:

- SCP-like SSH: ``git@gitlab.com:group/subgroup/project.git``
- URLs: ``https://gitlab.example.com/org/team/project.git``,
  ``ssh://git@github.com/owner/repo.git``

Nothing here performs I/O or raises; unparseable input yields None.
"""

import re
from urllib.parse import urlsplit

from .types import RemoteInfo

# user@host:path. The first colon splits host from path; a "//" after it
# means a URL, not an scp-style remote. Digits after the colon are a path
# segment, as in scp.
_SCP_PATTERN = re.compile(r"^(?:[^@/\s]+@)?([^:/\s]+):(?!//)(.+?)(?:\.git)?/?$")

_URL_SCHEMES = ("http", "https", "ssh", "git")


def _strip_path(path: str) -> str:
    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return path


def parse_remote(remote_url: str) -> RemoteInfo | None:
    """Extract host and project path from a git remote URL.

    Args:
        remote_url: The git remote URL (SSH or HTTPS)

    Returns:
        RemoteInfo with an ``https://`` host for SSH remotes, or None if the
        URL cannot be parsed

    Examples:
        >>> parse_remote("git@gitlab.com:group/project.git")
        RemoteInfo(host='https://gitlab.com', project_path='group/project', provider='')
        >>> parse_remote("https://gitlab.example.com/org/team/project.git").project_path
        'org/team/project'
    """
    if not remote_url:
        return None
    remote_url = remote_url.strip()

    if "://" not in remote_url:
        match = _SCP_PATTERN.match(remote_url)
        if not match:
            return None
        host, path = match.group(1), _strip_path(match.group(2))
        if not path:
            return None
        return RemoteInfo(host=f"https://{host}", project_path=path)

    try:
        parts = urlsplit(remote_url)
        hostname = parts.hostname
        port = parts.port
    except ValueError:
        return None
    if parts.scheme.lower() not in _URL_SCHEMES or not hostname:
        return None

    path = _strip_path(parts.path)
    if not path:
        return None

    if parts.scheme.lower() in ("http", "https"):
        netloc = hostname if port is None else f"{hostname}:{port}"
        host = f"{parts.scheme.lower()}://{netloc}"
    else:
        # ssh:// and git:// ports belong to the transport, not the web UI
        host = f"https://{hostname}"
    return RemoteInfo(host=host, project_path=path)


def extract_hostname(remote_url: str) -> str | None:
    """Return just the hostname of a remote URL, or None."""
    if not remote_url:
        return None
    remote_url = remote_url.strip()
    if "://" not in remote_url:
        match = _SCP_PATTERN.match(remote_url)
        return match.group(1) if match else None
    try:
        return urlsplit(remote_url).hostname
    except ValueError:
        return None


def extract_project_path(remote_url: str) -> str | None:
    """Convenience wrapper when only the project path is needed."""
    info = parse_remote(remote_url)
    return info.project_path if info else None


def configured_git_host(host_url: str) -> str:
    """Hostname of a configured provider URL as it appears in git remotes.

    API hosts are commonly served from an ``api.`` subdomain of the git host
    (``api.github.com`` vs ``github.com``), so that prefix is dropped.
    """
    if not host_url:
        return ""
    if "://" not in host_url:
        host_url = f"https://{host_url}"
    try:
        hostname = urlsplit(host_url).hostname or ""
    except ValueError:
        return ""
    hostname = hostname.lower()
    if hostname.startswith("api."):
        hostname = hostname[len("api."):]
    return hostname


def looks_like_provider(
    remote_url: str, provider_name: str, configured_host: str | None = None
) -> bool:
    """Cheap check whether a remote belongs to a provider.

    True when the remote hostname contains ``provider_name`` (``gitlab``,
    ``github``) or equals the hostname of ``configured_host`` for
    self-hosted instances. Both comparisons ignore case.
    """
    hostname = extract_hostname(remote_url)
    if not hostname:
        return False
    hostname = hostname.lower()
    if provider_name.lower() in hostname:
        return True
    if configured_host:
        return hostname == configured_git_host(configured_host)
    return False
