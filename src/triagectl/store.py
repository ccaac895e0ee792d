"""Knowledge store: root-cause catalog, detection links, and CI entities.

SQLAlchemy does the work synchronously; every public coroutine hands the
query to a worker thread so the event loop only suspends at I/O.
"""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from triagectl.models import (
    Base,
    ErrorAnnotation,
    Job,
    JobRootCause,
    JobStep,
    RootCause,
    WorkflowRun,
    utcnow,
    vector_to_blob,
)

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///triagectl.db"


@dataclass(frozen=True)
class RootCauseCandidate:
    category: str
    title: str
    description: str = ""
    suggested_fix: str = ""
    confidence: float = 0.85
    discovery_method: str = "pattern"


@dataclass(frozen=True)
class Detection:
    """How a job got (or failed to get) its root cause."""

    method: str
    confidence: float
    llm_model: str | None = None
    llm_tokens: int | None = None
    duration_ms: int | None = None
    raw_analysis: str | None = None


def annotation_fingerprint(annotation: dict) -> str:
    key = json.dumps(
        [
            annotation.get("annotation_level"),
            annotation.get("path"),
            annotation.get("start_line"),
            annotation.get("end_line"),
            annotation.get("title"),
            annotation.get("message"),
        ],
        sort_keys=True,
    )
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def annotation_to_dict(row: ErrorAnnotation) -> dict:
    return {
        "id": row.id,
        "annotation_level": row.annotation_level,
        "message": row.message,
        "title": row.title,
        "path": row.path,
        "start_line": row.start_line,
        "end_line": row.end_line,
        "raw_details": row.raw_details,
    }


def step_to_dict(row: JobStep) -> dict:
    return {
        "number": row.step_number,
        "name": row.step_name,
        "status": row.status,
        "conclusion": row.conclusion,
    }


def _latest_link(session: Session, job_id: int) -> JobRootCause | None:
    return session.scalars(
        sa.select(JobRootCause)
        .where(JobRootCause.job_id == job_id)
        .order_by(JobRootCause.created_at.desc(), JobRootCause.id.desc())
        .limit(1)
    ).first()


def needs_reprocessing(link: JobRootCause | None, confidence_threshold: float) -> bool:
    """True when the authoritative link leaves the job unexplained."""
    if link is None or link.root_cause_id is None:
        return True
    return link.confidence < confidence_threshold


class KnowledgeStore:
    def __init__(self, url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        connect_args = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.url = url
        self.engine = sa.create_engine(url, echo=echo, connect_args=connect_args)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    def session(self) -> Session:
        return self._sessions()

    async def run(self, fn, *args):
        """Run a blocking storage callable in a worker thread."""
        return await asyncio.to_thread(fn, *args)

    # -----------------------------------------------------------------------
    # Root-cause catalog
    # -----------------------------------------------------------------------

    def _find_or_create_root_cause(self, candidate: RootCauseCandidate) -> RootCause:
        title = candidate.title[:255]
        query = sa.select(RootCause).where(
            RootCause.category == candidate.category, RootCause.title == title,
        )
        # second pass picks up the row a concurrent writer inserted
        for _ in range(2):
            with self.session() as session:
                row = session.scalars(query).first()
                if row is not None:
                    return row
                row = RootCause(
                    category=candidate.category,
                    title=title,
                    description=candidate.description,
                    suggested_fix=candidate.suggested_fix,
                    confidence_threshold=candidate.confidence,
                    occurrence_count=0,
                    discovery_method=candidate.discovery_method,
                )
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    logger.debug(
                        "Root cause (%s, %s) inserted concurrently, refetching",
                        candidate.category, title,
                    )
                    continue
                logger.info(
                    "New root cause #%d [%s] %s (via %s)",
                    row.id, row.category, row.title, row.discovery_method,
                )
                return row
        raise RuntimeError(
            f"Could not find or create root cause ({candidate.category}, {title})"
        )

    async def find_or_create_root_cause(self, candidate: RootCauseCandidate) -> RootCause:
        return await self.run(self._find_or_create_root_cause, candidate)

    def _get_root_cause_by_id(self, root_cause_id: int) -> RootCause | None:
        with self.session() as session:
            return session.get(RootCause, root_cause_id)

    async def get_root_cause_by_id(self, root_cause_id: int | None) -> RootCause | None:
        if root_cause_id is None:
            return None
        return await self.run(self._get_root_cause_by_id, root_cause_id)

    def _bump_occurrence(self, root_cause_id: int) -> None:
        with self.session() as session:
            session.execute(
                sa.update(RootCause)
                .where(RootCause.id == root_cause_id)
                .values(occurrence_count=RootCause.occurrence_count + 1)
            )
            session.commit()

    async def bump_occurrence(self, root_cause_id: int | None) -> None:
        if root_cause_id is None:
            return
        await self.run(self._bump_occurrence, root_cause_id)

    def _touch_last_seen(self, root_cause_id: int) -> None:
        with self.session() as session:
            session.execute(
                sa.update(RootCause)
                .where(RootCause.id == root_cause_id)
                .values(last_seen_at=utcnow())
            )
            session.commit()

    async def touch_last_seen(self, root_cause_id: int | None) -> None:
        if root_cause_id is None:
            return
        await self.run(self._touch_last_seen, root_cause_id)

    def _delete_root_cause(self, root_cause_id: int) -> bool:
        with self.session() as session:
            result = session.execute(
                sa.delete(RootCause).where(RootCause.id == root_cause_id)
            )
            session.commit()
            return result.rowcount > 0

    async def delete_root_cause(self, root_cause_id: int) -> bool:
        """Operator action; cache entries pointing here are left dangling."""
        return await self.run(self._delete_root_cause, root_cause_id)

    def _root_causes_without_embedding(self) -> list[RootCause]:
        with self.session() as session:
            return list(session.scalars(
                sa.select(RootCause)
                .where(RootCause.embedding.is_(None))
                .order_by(RootCause.id)
            ))

    async def root_causes_without_embedding(self) -> list[RootCause]:
        return await self.run(self._root_causes_without_embedding)

    def _root_causes_with_embedding(self) -> list[RootCause]:
        with self.session() as session:
            return list(session.scalars(
                sa.select(RootCause).where(RootCause.embedding.is_not(None))
            ))

    async def root_causes_with_embedding(self) -> list[RootCause]:
        return await self.run(self._root_causes_with_embedding)

    def _set_root_cause_embedding(
        self, root_cause_id: int, vector, model: str, config: dict,
    ) -> None:
        with self.session() as session:
            session.execute(
                sa.update(RootCause)
                .where(RootCause.id == root_cause_id)
                .values(
                    embedding=vector_to_blob(vector),
                    embedding_model=model,
                    embedding_config=json.dumps(config),
                    embedding_generated_at=utcnow(),
                )
            )
            session.commit()

    async def set_root_cause_embedding(
        self, root_cause_id: int, vector, model: str, config: dict,
    ) -> None:
        await self.run(self._set_root_cause_embedding, root_cause_id, vector, model, config)

    # -----------------------------------------------------------------------
    # Detection links
    # -----------------------------------------------------------------------

    def _link_job(
        self, job_id: int, root_cause_id: int | None, detection: Detection,
    ) -> JobRootCause:
        with self.session() as session:
            link = JobRootCause(
                job_id=job_id,
                root_cause_id=root_cause_id,
                confidence=detection.confidence,
                detection_method=detection.method,
                llm_model=detection.llm_model,
                llm_tokens_used=detection.llm_tokens,
                analysis_duration_ms=detection.duration_ms,
                raw_analysis=detection.raw_analysis,
            )
            session.add(link)
            session.commit()
            return link

    async def link_job(
        self, job_id: int, root_cause_id: int | None, detection: Detection,
    ) -> JobRootCause:
        """Append a detection row; a None cause records the attempt only."""
        return await self.run(self._link_job, job_id, root_cause_id, detection)

    def _latest_link_for(self, job_id: int) -> JobRootCause | None:
        with self.session() as session:
            return _latest_link(session, job_id)

    async def latest_link(self, job_id: int) -> JobRootCause | None:
        return await self.run(self._latest_link_for, job_id)

    def _links_for_job(self, job_id: int) -> list[JobRootCause]:
        with self.session() as session:
            return list(session.scalars(
                sa.select(JobRootCause)
                .where(JobRootCause.job_id == job_id)
                .order_by(JobRootCause.created_at, JobRootCause.id)
            ))

    async def links_for_job(self, job_id: int) -> list[JobRootCause]:
        return await self.run(self._links_for_job, job_id)

    # -----------------------------------------------------------------------
    # Runs, jobs, steps, annotations
    # -----------------------------------------------------------------------

    def _run_exists(self, run_id: int) -> bool:
        with self.session() as session:
            return session.get(WorkflowRun, run_id) is not None

    async def run_exists(self, run_id: int) -> bool:
        return await self.run(self._run_exists, run_id)

    def _upsert_workflow_run(self, repository: str, run: dict) -> WorkflowRun:
        with self.session() as session:
            row = session.get(WorkflowRun, run["id"])
            if row is None:
                row = WorkflowRun(id=run["id"], repository=repository)
                session.add(row)
            row.workflow_name = run.get("name")
            row.workflow_file = run.get("path")
            row.run_number = run.get("run_number")
            row.run_attempt = run.get("run_attempt")
            row.head_branch = run.get("head_branch")
            row.head_sha = run.get("head_sha")
            row.event = run.get("event")
            row.conclusion = run.get("conclusion", "failure")
            row.html_url = run.get("url")
            row.run_created_at = run.get("created_at")
            session.commit()
            return row

    async def upsert_workflow_run(self, repository: str, run: dict) -> WorkflowRun:
        return await self.run(self._upsert_workflow_run, repository, run)

    def _upsert_job(self, run_id: int, job: dict) -> Job:
        with self.session() as session:
            row = session.get(Job, job["id"])
            if row is None:
                row = Job(id=job["id"], run_id=run_id, logs_accessible=False)
                session.add(row)
            row.name = job.get("name", "")
            row.conclusion = job.get("conclusion")
            row.html_url = job.get("url")
            row.completed_at = job.get("completed_at")
            session.commit()
            return row

    async def upsert_job(self, run_id: int, job: dict) -> Job:
        """Insert or refresh a job; log availability flags are preserved."""
        return await self.run(self._upsert_job, run_id, job)

    def _get_workflow_run(self, run_id: int) -> WorkflowRun | None:
        with self.session() as session:
            return session.get(WorkflowRun, run_id)

    async def get_workflow_run(self, run_id: int) -> WorkflowRun | None:
        return await self.run(self._get_workflow_run, run_id)

    def _get_job(self, job_id: int) -> Job | None:
        with self.session() as session:
            return session.get(Job, job_id)

    async def get_job(self, job_id: int) -> Job | None:
        return await self.run(self._get_job, job_id)

    def _insert_job_steps(self, job_id: int, steps: list[dict]) -> int:
        with self.session() as session:
            existing = {
                (number, name)
                for number, name in session.execute(
                    sa.select(JobStep.step_number, JobStep.step_name)
                    .where(JobStep.job_id == job_id)
                )
            }
            inserted = 0
            for i, step in enumerate(steps, 1):
                key = (step.get("number", i), step.get("name", ""))
                if key in existing:
                    continue
                existing.add(key)
                session.add(JobStep(
                    job_id=job_id,
                    step_number=key[0],
                    step_name=key[1],
                    status=step.get("status"),
                    conclusion=step.get("conclusion"),
                ))
                inserted += 1
            session.commit()
            return inserted

    async def insert_job_steps(self, job_id: int, steps: list[dict]) -> int:
        """Store steps not already stored for the job; returns rows added."""
        return await self.run(self._insert_job_steps, job_id, steps)

    def _insert_error_annotations(self, job_id: int, annotations: list[dict]) -> list[int]:
        with self.session() as session:
            by_fingerprint = {
                row.fingerprint: row
                for row in session.scalars(
                    sa.select(ErrorAnnotation).where(ErrorAnnotation.job_id == job_id)
                )
            }
            rows = []
            for annotation in annotations:
                fp = annotation_fingerprint(annotation)
                row = by_fingerprint.get(fp)
                if row is None:
                    row = ErrorAnnotation(
                        job_id=job_id,
                        fingerprint=fp,
                        annotation_level=annotation.get("annotation_level"),
                        message=annotation.get("message"),
                        title=annotation.get("title"),
                        path=annotation.get("path"),
                        start_line=annotation.get("start_line"),
                        end_line=annotation.get("end_line"),
                        raw_details=annotation.get("raw_details"),
                    )
                    session.add(row)
                    by_fingerprint[fp] = row
                rows.append(row)
            session.commit()
            return [row.id for row in rows]

    async def insert_error_annotations(self, job_id: int, annotations: list[dict]) -> list[int]:
        """Store annotations idempotently; returns ids in input order."""
        return await self.run(self._insert_error_annotations, job_id, annotations)

    def _load_job_evidence(self, job_id: int) -> tuple[list[dict], list[dict]]:
        with self.session() as session:
            annotations = [
                annotation_to_dict(row)
                for row in session.scalars(
                    sa.select(ErrorAnnotation)
                    .where(ErrorAnnotation.job_id == job_id)
                    .order_by(ErrorAnnotation.id)
                )
            ]
            steps = [
                step_to_dict(row)
                for row in session.scalars(
                    sa.select(JobStep)
                    .where(JobStep.job_id == job_id, JobStep.conclusion == "failure")
                    .order_by(JobStep.step_number)
                )
            ]
            return annotations, steps

    async def load_job_evidence(self, job_id: int) -> tuple[list[dict], list[dict]]:
        """Return stored (annotations, failed steps) for a job."""
        return await self.run(self._load_job_evidence, job_id)

    def _update_job_logs(self, job_id: int, path: str | None, accessible: bool) -> None:
        with self.session() as session:
            session.execute(
                sa.update(Job)
                .where(Job.id == job_id)
                .values(log_file_path=path, logs_accessible=accessible)
            )
            session.commit()

    async def update_job_logs(self, job_id: int, path: str | None, accessible: bool) -> None:
        await self.run(self._update_job_logs, job_id, path, accessible)

    # -----------------------------------------------------------------------
    # Reprocessing selection
    # -----------------------------------------------------------------------

    def _jobs_needing_reprocessing(self, run_id: int, confidence_threshold: float) -> list[int]:
        with self.session() as session:
            job_ids = session.scalars(
                sa.select(Job.id)
                .where(
                    Job.run_id == run_id,
                    Job.conclusion == "failure",
                    Job.logs_accessible.is_(False),
                )
                .order_by(Job.id)
            ).all()
            return [
                job_id for job_id in job_ids
                if needs_reprocessing(_latest_link(session, job_id), confidence_threshold)
            ]

    async def jobs_needing_reprocessing(
        self, run_id: int, confidence_threshold: float = 0.8,
    ) -> list[int]:
        """Jobs without logs whose newest link is missing, empty, or weak."""
        return await self.run(self._jobs_needing_reprocessing, run_id, confidence_threshold)

    def _runs_needing_reprocessing(self, repository: str, confidence_threshold: float) -> list[int]:
        with self.session() as session:
            run_ids = session.scalars(
                sa.select(WorkflowRun.id)
                .where(WorkflowRun.repository == repository)
                .order_by(WorkflowRun.id)
            ).all()
        return [
            run_id for run_id in run_ids
            if self._jobs_needing_reprocessing(run_id, confidence_threshold)
        ]

    async def runs_needing_reprocessing(
        self, repository: str, confidence_threshold: float = 0.8,
    ) -> list[int]:
        return await self.run(self._runs_needing_reprocessing, repository, confidence_threshold)
