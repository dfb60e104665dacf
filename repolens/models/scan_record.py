import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Enum, Index, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from repolens.db.base import Base

ScanStatus = Enum(
    "queued", "running", "succeeded", "failed",
    name="scan_status",
    native_enum=False,
    length=16,
)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanRecord(Base):
    """One repository scan and, once it succeeds, its assessment.

    Created by the submission flow; after creation only the scan orchestrator
    changes ``status``, ``progress``, the error triple and the result fields.
    """

    __tablename__ = "scan_record"
    __table_args__ = (
        Index("ix_scan_record_cache_key", "repo_url", "commit_hash", "status"),
        Index("ix_scan_record_user_id", "user_id"),
        Index("ix_scan_record_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    # Repository identity
    repo_url: Mapped[str] = mapped_column(Text, nullable=False)
    provider: Mapped[str] = mapped_column(String(16), nullable=False, default="other")
    owner: Mapped[str] = mapped_column(Text, nullable=False, default="")
    repo: Mapped[str] = mapped_column(Text, nullable=False, default="")
    commit_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # State machine
    status: Mapped[str] = mapped_column(ScanStatus, nullable=False, default="queued")
    progress: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    error_type: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # Results
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tech_stack: Mapped[list | None] = mapped_column(JSONDocument, nullable=True)
    categorized_tech_stack: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    skill_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    repository_info: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    detailed_assessment: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    timeline: Mapped[list | None] = mapped_column(JSONDocument, nullable=True)
    stats: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)

    # Quota identity
    user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ip_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Columns copied from a prior succeeded scan on a cache hit
    RESULT_FIELDS = (
        "description",
        "tech_stack",
        "categorized_tech_stack",
        "skill_level",
        "repository_info",
        "detailed_assessment",
        "timeline",
        "stats",
    )

    def snapshot(self) -> dict:
        """Return a plain-dict copy of the row, safe to hand to watchers."""
        return {
            column.key: getattr(self, column.key)
            for column in self.__table__.columns
        }
