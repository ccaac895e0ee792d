"""SQLAlchemy models for the failure knowledge base.

Vectors are stored as raw float32 blobs; similarity is computed in numpy
by the semantic cache rather than in the database.
"""

from datetime import UTC, datetime

import numpy as np
import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

DETECTION_METHODS = (
    "pattern",
    "prompt_cache_exact",
    "prompt_semantic_search",
    "llm",
    "llm_malformed",
    "llm_need_more_info",
    "llm_below_threshold",
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def vector_to_blob(vector) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def blob_to_vector(blob: bytes | None) -> np.ndarray | None:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32)


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# CI entities
# ---------------------------------------------------------------------------

class WorkflowRun(Base):
    __tablename__ = "workflow_runs"

    id: Mapped[int] = mapped_column(sa.BigInteger, primary_key=True, autoincrement=False)
    repository: Mapped[str] = mapped_column(sa.String(255), index=True)
    workflow_name: Mapped[str | None] = mapped_column(sa.String(255))
    workflow_file: Mapped[str | None] = mapped_column(sa.String(255))
    run_number: Mapped[int | None] = mapped_column(sa.Integer)
    run_attempt: Mapped[int | None] = mapped_column(sa.Integer)
    head_branch: Mapped[str | None] = mapped_column(sa.String(255))
    head_sha: Mapped[str | None] = mapped_column(sa.String(64))
    event: Mapped[str | None] = mapped_column(sa.String(64))
    conclusion: Mapped[str | None] = mapped_column(sa.String(32))
    html_url: Mapped[str | None] = mapped_column(sa.Text)
    run_created_at: Mapped[str | None] = mapped_column(sa.String(32))
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utcnow)


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(sa.BigInteger, primary_key=True, autoincrement=False)
    run_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("workflow_runs.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(sa.String(255))
    conclusion: Mapped[str | None] = mapped_column(sa.String(32))
    html_url: Mapped[str | None] = mapped_column(sa.Text)
    completed_at: Mapped[str | None] = mapped_column(sa.String(32))
    logs_accessible: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    log_file_path: Mapped[str | None] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utcnow)


class JobStep(Base):
    __tablename__ = "job_steps"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("jobs.id", ondelete="CASCADE"), index=True
    )
    step_number: Mapped[int] = mapped_column(sa.Integer)
    step_name: Mapped[str] = mapped_column(sa.String(255))
    status: Mapped[str | None] = mapped_column(sa.String(32))
    conclusion: Mapped[str | None] = mapped_column(sa.String(32))

    __table_args__ = (
        sa.UniqueConstraint("job_id", "step_number", "step_name", name="uq_job_step"),
    )


class ErrorAnnotation(Base):
    __tablename__ = "error_annotations"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("jobs.id", ondelete="CASCADE"), index=True
    )
    # sha256 over level/path/lines/title/message, keeps re-inserts idempotent
    fingerprint: Mapped[str] = mapped_column(sa.String(64))
    annotation_level: Mapped[str | None] = mapped_column(sa.String(32))
    message: Mapped[str | None] = mapped_column(sa.Text)
    title: Mapped[str | None] = mapped_column(sa.Text)
    path: Mapped[str | None] = mapped_column(sa.Text)
    start_line: Mapped[int | None] = mapped_column(sa.Integer)
    end_line: Mapped[int | None] = mapped_column(sa.Integer)
    raw_details: Mapped[str | None] = mapped_column(sa.Text)

    __table_args__ = (
        sa.UniqueConstraint("job_id", "fingerprint", name="uq_annotation_fingerprint"),
    )


# ---------------------------------------------------------------------------
# Knowledge base
# ---------------------------------------------------------------------------

class RootCause(Base):
    """Deduplicated failure class; (category, title) is the natural key."""

    __tablename__ = "root_causes"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    category: Mapped[str] = mapped_column(sa.String(100))
    title: Mapped[str] = mapped_column(sa.String(255))
    description: Mapped[str | None] = mapped_column(sa.Text)
    suggested_fix: Mapped[str | None] = mapped_column(sa.Text)
    confidence_threshold: Mapped[float] = mapped_column(sa.Float, default=0.85)
    occurrence_count: Mapped[int] = mapped_column(sa.Integer, default=0)
    discovery_method: Mapped[str] = mapped_column(sa.String(16), default="pattern")
    embedding: Mapped[bytes | None] = mapped_column(sa.LargeBinary)
    embedding_model: Mapped[str | None] = mapped_column(sa.String(100))
    embedding_config: Mapped[str | None] = mapped_column(sa.Text)
    embedding_generated_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True))
    last_seen_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        sa.UniqueConstraint("category", "title", name="uq_root_cause_category_title"),
        sa.CheckConstraint(
            "discovery_method IN ('pattern', 'llm')", name="valid_discovery_method"
        ),
    )


class JobRootCause(Base):
    """One detection event; append-only, newest row is authoritative."""

    __tablename__ = "job_root_causes"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(sa.BigInteger, index=True)
    # no FK: catalog rows may be deleted by an operator
    root_cause_id: Mapped[int | None] = mapped_column(sa.Integer, index=True)
    confidence: Mapped[float] = mapped_column(sa.Float)
    detection_method: Mapped[str] = mapped_column(sa.String(32))
    llm_model: Mapped[str | None] = mapped_column(sa.String(100))
    llm_tokens_used: Mapped[int | None] = mapped_column(sa.Integer)
    analysis_duration_ms: Mapped[int | None] = mapped_column(sa.Integer)
    raw_analysis: Mapped[str | None] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name="valid_confidence"),
        sa.CheckConstraint(
            "detection_method IN ("
            + ", ".join(f"'{m}'" for m in DETECTION_METHODS)
            + ")",
            name="valid_detection_method",
        ),
    )


class PromptCacheEntry(Base):
    """A failure context that has been embedded, and what it resolved to."""

    __tablename__ = "llm_prompts"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    prompt_hash: Mapped[str] = mapped_column(sa.String(64), unique=True, index=True)
    prompt_text: Mapped[str] = mapped_column(sa.Text)
    prompt_embedding: Mapped[bytes | None] = mapped_column(sa.LargeBinary)
    embedding_model: Mapped[str | None] = mapped_column(sa.String(100))
    job_id: Mapped[int | None] = mapped_column(sa.BigInteger, index=True)
    error_annotation_ids: Mapped[str | None] = mapped_column(sa.Text)  # JSON list
    failed_step_names: Mapped[str | None] = mapped_column(sa.Text)  # JSON list
    log_excerpt_length: Mapped[int] = mapped_column(sa.Integer, default=0)
    llm_model: Mapped[str | None] = mapped_column(sa.String(100))
    llm_response: Mapped[str | None] = mapped_column(sa.Text)
    llm_tokens_used: Mapped[int | None] = mapped_column(sa.Integer)
    llm_duration_ms: Mapped[int | None] = mapped_column(sa.Integer)
    root_cause_id: Mapped[int | None] = mapped_column(sa.Integer, index=True)
    confidence: Mapped[float | None] = mapped_column(sa.Float)
    reused_count: Mapped[int] = mapped_column(sa.Integer, default=0)
    last_reused_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utcnow)
