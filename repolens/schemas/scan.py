"""Pydantic schemas for the scan API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScanCreate(_ApiModel):
    repo_url: str = Field(..., min_length=1, max_length=2048)


class ScanSubmitted(_ApiModel):
    """Response to a scan submission.

    Attributes:
        scan_id: Identifier of the created record.
        status: ``queued``, or ``succeeded`` on a cache hit.
        cached: ``True`` when results were copied from an earlier scan of
            the same revision.
    """

    scan_id: str
    status: str
    cached: bool


class ScanProgress(_ApiModel):
    stage: str
    message: str
    percentage: int


class UserFacingError(_ApiModel):
    title: str
    message: str
    actions: list[str]


class ScanOut(_ApiModel):
    """Serialisable view of a scan record.

    Identity fields used for quota accounting (``ip``, ``ip_hash``) are
    deliberately omitted.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    repo_url: str
    provider: str
    owner: str
    repo: str
    commit_hash: str | None = None
    status: str
    progress: ScanProgress | None = None
    error: str | None = None
    error_code: str | None = None
    error_type: str | None = None
    user_error: UserFacingError | None = None
    description: str | None = None
    tech_stack: list[str] | None = None
    categorized_tech_stack: dict[str, Any] | None = None
    skill_level: str | None = None
    repository_info: dict[str, Any] | None = None
    detailed_assessment: dict[str, Any] | None = None
    timeline: list[dict[str, Any]] | None = None
    stats: dict[str, Any] | None = None
    user_id: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class QueueStatusOut(_ApiModel):
    pending: int
    is_processing: bool


class QuotaOut(_ApiModel):
    """Caller's quota in the current window."""

    max_scans: int
    used_scans: int
    remaining_scans: int
    reset_at: datetime
    is_authenticated: bool
