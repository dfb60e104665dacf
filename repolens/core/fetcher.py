"""Git operations against public repositories.

All remote commands run with credential prompting disabled
(``GIT_TERMINAL_PROMPT=0`` and ``GIT_ASKPASS=echo``), so repositories that
require authentication fail fast instead of hanging, and locally stored
credentials are never offered. Only public repositories can succeed.

Checkouts live in per-scan directories under ``scratch_dir``; callers must
pair every :meth:`RepositoryFetcher.checkout` with :meth:`RepositoryFetcher.cleanup`.
:meth:`RepositoryFetcher.sweep_stale` removes anything a crashed process left
behind.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from repolens.core.errors import (
    InvalidRepositoryUrl,
    RepoLensError,
    RepositoryNotAccessible,
    RepositoryTooLarge,
)
from repolens.core.locator import is_valid_url, parse

logger = logging.getLogger(__name__)

ACCESS_CHECK_TIMEOUT_SECONDS: float = 10.0
REVISION_TIMEOUT_SECONDS: float = 30.0
LOCAL_COMMAND_TIMEOUT_SECONDS: float = 60.0
DEFAULT_LOG_LIMIT: int = 500

_HEAD_PATTERN = re.compile(r"^([a-f0-9]{40})\s+HEAD$", re.MULTILINE)
_LOG_FORMAT = "%H|%aI|%an|%ae|%s"


class GitTimeout(Exception):
    """Raised internally when a git subprocess exceeds its time budget."""


@dataclass(frozen=True)
class CheckoutResult:
    local_path: str
    url: str
    provider: str
    owner: str
    repo: str


@dataclass(frozen=True)
class CommitInfo:
    hash: str
    date: str
    author: str
    email: str
    message: str


@dataclass(frozen=True)
class RepositoryMetadata:
    default_branch: str
    last_commit_date: str
    total_commits: int


def _git_env() -> dict[str, str]:
    env = dict(os.environ)
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["GIT_ASKPASS"] = "echo"
    return env


class RepositoryFetcher:
    """Remote checks, shallow checkouts and local history queries.

    Args:
        scratch_dir: Root directory for per-scan checkouts.
        clone_timeout_seconds: Default wall-clock budget for :meth:`checkout`.
        clone_depth: Default commit depth for :meth:`checkout`.
        stale_after_seconds: Age after which :meth:`sweep_stale` removes a checkout.
        git_binary: Name or path of the git executable.
    """

    def __init__(
        self,
        scratch_dir: str,
        clone_timeout_seconds: float = 300.0,
        clone_depth: int = 1,
        stale_after_seconds: float = 3600.0,
        git_binary: str = "git",
    ) -> None:
        self._scratch_dir = scratch_dir
        self._clone_timeout = clone_timeout_seconds
        self._clone_depth = clone_depth
        self._stale_after = stale_after_seconds
        self._git = git_binary

    @property
    def scratch_dir(self) -> str:
        return self._scratch_dir

    # ------------------------------------------------------------------
    # Subprocess plumbing
    # ------------------------------------------------------------------

    async def _run_git(
        self,
        *args: str,
        timeout: float,
        cwd: str | None = None,
    ) -> tuple[int, str, str]:
        """Run ``git <args>`` and return ``(returncode, stdout, stderr)``.

        Raises:
            GitTimeout: The process did not finish within *timeout* seconds;
                it has been killed and reaped.
            OSError: The git executable could not be started.
        """
        proc = await asyncio.create_subprocess_exec(
            self._git,
            *args,
            cwd=cwd,
            env=_git_env(),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise GitTimeout(f"git {args[0]} exceeded {timeout:.0f}s")
        return (
            proc.returncode if proc.returncode is not None else -1,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    # ------------------------------------------------------------------
    # Remote checks
    # ------------------------------------------------------------------

    async def is_accessible(self, url: str) -> bool:
        """Return ``True`` if an anonymous ``ls-remote`` of *url* succeeds within 10s."""
        normalized = parse(url).normalized_url
        try:
            code, _, stderr = await self._run_git(
                "ls-remote", normalized, "HEAD", timeout=ACCESS_CHECK_TIMEOUT_SECONDS
            )
        except (GitTimeout, OSError) as exc:
            logger.info("Repository accessibility check failed for %s: %s", normalized, exc)
            return False
        if code != 0:
            logger.info(
                "Repository not accessible: %s (exit %d): %s",
                normalized,
                code,
                stderr.strip()[:200],
            )
            return False
        return True

    async def get_latest_revision(self, url: str) -> str:
        """Return the 40-character commit hash of the remote default-branch head.

        Raises:
            InvalidRepositoryUrl: *url* is not a supported repository URL.
            RepositoryNotAccessible: The listing failed or could not be parsed.
        """
        if not is_valid_url(url):
            raise InvalidRepositoryUrl("Invalid Git repository URL")
        normalized = parse(url).normalized_url

        try:
            code, stdout, stderr = await self._run_git(
                "ls-remote", normalized, "HEAD", timeout=REVISION_TIMEOUT_SECONDS
            )
        except (GitTimeout, OSError) as exc:
            raise RepositoryNotAccessible(f"Failed to get commit hash: {exc}") from exc

        if code != 0:
            raise RepositoryNotAccessible(f"Failed to get commit hash: {stderr.strip()[:200]}")

        match = _HEAD_PATTERN.search(stdout)
        if match is None:
            raise RepositoryNotAccessible("Failed to parse commit hash from git ls-remote output")
        return match.group(1)

    # ------------------------------------------------------------------
    # Checkout lifecycle
    # ------------------------------------------------------------------

    async def checkout(
        self,
        url: str,
        depth: int | None = None,
        timeout_seconds: float | None = None,
    ) -> CheckoutResult:
        """Shallow, single-branch clone of *url* into a fresh directory.

        The partially written directory is always removed before an error
        propagates.

        Raises:
            InvalidRepositoryUrl: *url* is not a supported repository URL.
            RepositoryTooLarge: The clone was killed for exceeding its time budget.
            RepositoryNotAccessible: The clone failed for any other reason.
        """
        if not is_valid_url(url):
            raise InvalidRepositoryUrl("Invalid Git repository URL")

        location = parse(url)
        depth = depth or self._clone_depth
        timeout = timeout_seconds or self._clone_timeout

        target = os.path.join(self._scratch_dir, str(uuid.uuid4()))

        logger.info("Cloning repository %s into %s (depth=%d)", location.normalized_url, target, depth)
        try:
            os.makedirs(target, exist_ok=True)
            code, _, stderr = await self._run_git(
                "clone",
                "--depth",
                str(depth),
                "--single-branch",
                location.normalized_url,
                target,
                timeout=timeout,
            )
        except GitTimeout as exc:
            await self.cleanup(target)
            raise RepositoryTooLarge(
                "Repository clone timeout - repository may be too large"
            ) from exc
        except OSError as exc:
            await self.cleanup(target)
            raise RepositoryNotAccessible(f"Failed to clone repository: {exc}") from exc

        if code != 0:
            await self.cleanup(target)
            raise RepositoryNotAccessible(f"Failed to clone repository: {stderr.strip()[:200]}")

        logger.info("Repository cloned successfully to %s", target)
        return CheckoutResult(
            local_path=target,
            url=location.normalized_url,
            provider=location.provider,
            owner=location.owner,
            repo=location.repo,
        )

    async def cleanup(self, local_path: str | None) -> None:
        """Recursively delete *local_path*; failures are logged, never raised."""
        if not local_path:
            return
        try:
            await asyncio.to_thread(shutil.rmtree, local_path)
            logger.info("Cleaned up repository: %s", local_path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to clean up repository at %s: %s", local_path, exc)

    async def sweep_stale(self) -> int:
        """Remove checkout directories older than the stale threshold.

        Returns the number of directories removed. A missing scratch root is a
        no-op.
        """
        return await asyncio.to_thread(self._sweep_stale_sync)

    def _sweep_stale_sync(self) -> int:
        if not os.path.isdir(self._scratch_dir):
            return 0

        removed = 0
        cutoff = time.time() - self._stale_after
        try:
            entries = list(os.scandir(self._scratch_dir))
        except OSError as exc:
            logger.warning("Failed to list scratch directory %s: %s", self._scratch_dir, exc)
            return 0

        for entry in entries:
            try:
                if not entry.is_dir(follow_symlinks=False):
                    continue
                if entry.stat(follow_symlinks=False).st_mtime > cutoff:
                    continue
                shutil.rmtree(entry.path)
                removed += 1
                logger.info("Cleaned up stale checkout: %s", entry.name)
            except OSError as exc:
                logger.warning("Failed to remove stale checkout %s: %s", entry.path, exc)
        return removed

    # ------------------------------------------------------------------
    # Local history queries
    # ------------------------------------------------------------------

    async def get_commit_log(self, local_path: str, limit: int = DEFAULT_LOG_LIMIT) -> list[CommitInfo]:
        """Return up to *limit* commits from *local_path*, newest first."""
        try:
            code, stdout, stderr = await self._run_git(
                "log",
                "--all",
                f"--format={_LOG_FORMAT}",
                "-n",
                str(limit),
                cwd=local_path,
                timeout=LOCAL_COMMAND_TIMEOUT_SECONDS,
            )
        except (GitTimeout, OSError) as exc:
            raise RepoLensError("Failed to retrieve git commit history") from exc
        if code != 0:
            raise RepoLensError(f"Failed to retrieve git commit history: {stderr.strip()[:200]}")

        commits: list[CommitInfo] = []
        for line in stdout.strip().splitlines():
            parts = line.split("|", 4)
            if len(parts) != 5 or not all(parts):
                continue
            commits.append(CommitInfo(*parts))
        return commits

    async def get_metadata(self, local_path: str) -> RepositoryMetadata:
        """Default branch, last commit date and commit count of a checkout.

        Falls back to ``main`` / now / 0 when git cannot answer.
        """
        try:
            branch = await self._git_output(
                local_path, "symbolic-ref", "--short", "refs/remotes/origin/HEAD"
            )
            if branch:
                branch = branch.split("/", 1)[-1]
            else:
                branch = await self._git_output(local_path, "rev-parse", "--abbrev-ref", "HEAD")
            last_date = await self._git_output(local_path, "log", "-1", "--format=%cI")
            count = await self._git_output(local_path, "rev-list", "--count", "HEAD")
            return RepositoryMetadata(
                default_branch=branch or "main",
                last_commit_date=last_date or datetime.now(timezone.utc).isoformat(),
                total_commits=int(count) if count.isdigit() else 0,
            )
        except (GitTimeout, OSError) as exc:
            logger.warning("Failed to get repository metadata for %s: %s", local_path, exc)
            return RepositoryMetadata(
                default_branch="main",
                last_commit_date=datetime.now(timezone.utc).isoformat(),
                total_commits=0,
            )

    async def _git_output(self, local_path: str, *args: str) -> str:
        code, stdout, _ = await self._run_git(
            *args, cwd=local_path, timeout=LOCAL_COMMAND_TIMEOUT_SECONDS
        )
        return stdout.strip() if code == 0 else ""

    async def get_size(self, local_path: str) -> int:
        """Total size in bytes of the working tree, excluding ``.git``."""
        return await asyncio.to_thread(_tree_size, local_path)


def _tree_size(root: str) -> int:
    total = 0
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d != ".git"]
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError:
                continue
    return total
