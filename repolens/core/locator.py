"""Repository URL validation and normalisation.

Only public repositories on GitHub, GitLab and Bitbucket are accepted, in
either HTTPS or SSH form::

    https://github.com/vercel/next.js
    git@gitlab.com:group/project.git
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_HTTPS_PATTERN = re.compile(
    r"^https?://(www\.)?(github|gitlab|bitbucket)\.(com|org)/[\w-]+/[\w.-]+(\.git)?$",
    re.IGNORECASE,
)
_SSH_PATTERN = re.compile(
    r"^git@(github|gitlab|bitbucket)\.(com|org):[\w-]+/[\w.-]+(\.git)?$",
    re.IGNORECASE,
)
_OWNER_REPO_PATTERN = re.compile(r"[:/]([\w-]+)/([\w.-]+?)(\.git)?$")

_PROVIDER_HOSTS: tuple[tuple[str, str], ...] = (
    ("github.com", "github"),
    ("gitlab.com", "gitlab"),
    ("bitbucket.org", "bitbucket"),
)


@dataclass(frozen=True)
class RepoLocation:
    normalized_url: str
    provider: str
    owner: str
    repo: str


def is_valid_url(url: str) -> bool:
    """Return ``True`` when *url* is a supported HTTPS or SSH repository URL."""
    if not url:
        return False
    return bool(_HTTPS_PATTERN.match(url) or _SSH_PATTERN.match(url))


def parse(url: str) -> RepoLocation:
    """Best-effort decomposition of *url*; never raises.

    The normalised form is the trimmed URL with a ``.git`` suffix, so parsing
    an already-normalised URL is a no-op. Unknown hosts yield provider
    ``"other"`` and unmatched paths yield empty owner/repo.
    """
    normalized = (url or "").strip()
    if not normalized.endswith(".git"):
        normalized += ".git"

    lowered = normalized.lower()
    provider = "other"
    for host, name in _PROVIDER_HOSTS:
        if host in lowered:
            provider = name
            break

    match = _OWNER_REPO_PATTERN.search(normalized)
    owner = match.group(1) if match else ""
    repo = match.group(2) if match else ""

    return RepoLocation(normalized_url=normalized, provider=provider, owner=owner, repo=repo)
