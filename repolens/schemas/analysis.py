"""Pydantic schemas for AI assessment results.

These models are the trust boundary for the generation provider: its JSON
response is validated into :class:`AnalysisResult` (or a list of
:class:`TimelineEvent`) before any field reaches the scan record. Field names
are camelCase on the wire and snake_case in Python.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SkillLevel(str, Enum):
    BEGINNER = "Beginner"
    JUNIOR = "Junior"
    MID_LEVEL = "Mid-level"
    SENIOR = "Senior"


class TimelineEventType(str, Enum):
    FEATURE = "feature"
    REFACTOR = "refactor"
    ARCHITECTURE = "architecture"
    RELEASE = "release"
    MILESTONE = "milestone"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_document(self) -> dict:
        """Serialise for storage on a scan record (camelCase, no nulls)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class CategorizedTechStack(_CamelModel):
    """Technologies grouped by the layer they belong to."""

    frontend: list[str] = Field(default_factory=list)
    backend: list[str] = Field(default_factory=list)
    database: list[str] = Field(default_factory=list)
    devops: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    other: list[str] = Field(default_factory=list)


class RepositoryInfo(_CamelModel):
    """Project scope estimates aimed at non-technical readers.

    Attributes:
        name: Repository name.
        description: Short project description.
        team_size: Estimated team size, e.g. ``"1-2 developers"``.
        project_duration: Estimated build time, e.g. ``"2-3 months"``.
        complexity: Overall rating (Low / Medium / High / Very High).
        lines_of_code: Total counted lines.
        files_count: Total files.
        languages: Languages in use.
        main_purpose: What the project is for.
        target_audience: Who the project is for.
    """

    name: str
    description: str
    complexity: str
    team_size: str | None = None
    project_duration: str | None = None
    lines_of_code: int | None = None
    files_count: int | None = None
    languages: list[str] | None = None
    main_purpose: str | None = None
    target_audience: str | None = None


class DetailedAssessment(_CamelModel):
    """Skill-level reasoning plus strengths, weaknesses and quality ratings."""

    skill_level: SkillLevel
    reasoning: str
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    code_quality: str | None = None
    architecture_rating: str | None = None
    test_coverage: str | None = None


class AnalysisResult(_CamelModel):
    """Structured assessment returned by the generation provider.

    ``description``, ``tech_stack`` and ``skill_level`` are required; a
    response missing any of them fails validation.
    """

    description: str = Field(min_length=1)
    tech_stack: list[str]
    skill_level: SkillLevel
    categorized_tech_stack: CategorizedTechStack | None = None
    repository_info: RepositoryInfo | None = None
    detailed_assessment: DetailedAssessment | None = None


class TimelineEvent(_CamelModel):
    """One milestone condensed from commit history.

    ``date`` is an ISO ``YYYY-MM-DD`` string; ``related_commits`` holds short
    commit hashes.
    """

    date: str
    title: str
    description: str
    type: TimelineEventType
    related_commits: list[str] = Field(default_factory=list)


class TimelineResult(_CamelModel):
    timeline: list[TimelineEvent] = Field(default_factory=list)
