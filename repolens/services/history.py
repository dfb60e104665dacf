"""Commit-history timeline for a checked-out repository.

Reads a bounded commit log from the checkout and asks the AI client to
condense it into milestone events. When the model returns fewer than three
events but the log holds at least three commits, events built from the
first, middle and latest commits are added so the timeline is never thinner
than the history allows.
"""

from __future__ import annotations

import logging

from repolens.core.fetcher import DEFAULT_LOG_LIMIT, CommitInfo, RepositoryFetcher
from repolens.schemas.analysis import TimelineEvent, TimelineEventType
from repolens.services.gemini import MAX_TIMELINE_EVENTS, GeminiClient

logger = logging.getLogger(__name__)

MIN_TIMELINE_EVENTS = 3


def fallback_events(commits: list[CommitInfo]) -> list[TimelineEvent]:
    """Initial, middle and latest commit as events; *commits* are newest first."""
    if len(commits) < MIN_TIMELINE_EVENTS:
        return []
    picks = (
        (commits[-1], "Initial Commit", TimelineEventType.MILESTONE),
        (commits[len(commits) // 2], "Project Development", TimelineEventType.FEATURE),
        (commits[0], "Latest Update", TimelineEventType.RELEASE),
    )
    return [
        TimelineEvent(
            date=commit.date[:10],
            title=title,
            description=commit.message,
            type=event_type,
            related_commits=[commit.hash[:7]],
        )
        for commit, title, event_type in picks
    ]


class HistorySummarizer:
    def __init__(self, fetcher: RepositoryFetcher, ai_client: GeminiClient, log_limit: int = DEFAULT_LOG_LIMIT) -> None:
        self._fetcher = fetcher
        self._ai = ai_client
        self._log_limit = log_limit

    async def summarize(self, local_path: str, repo_url: str) -> list[TimelineEvent]:
        """Return the timeline for the checkout at *local_path*, oldest event first.

        Errors from the git log or the AI call propagate; the orchestrator
        treats the timeline as best-effort.
        """
        commits = await self._fetcher.get_commit_log(local_path, self._log_limit)
        if not commits:
            logger.info("No commits found for %s; skipping timeline", repo_url)
            return []

        logger.info("Summarizing %d commits for %s", len(commits), repo_url)
        events = await self._ai.summarize_timeline(commits, repo_url)

        if len(events) < MIN_TIMELINE_EVENTS:
            extra = fallback_events(commits)
            if extra:
                logger.warning(
                    "Only %d timeline events for %s; adding %d from commit history",
                    len(events),
                    repo_url,
                    len(extra),
                )
                events = extra + events

        events.sort(key=lambda event: event.date)
        return events[:MAX_TIMELINE_EVENTS]
