#!/usr/bin/env python3
"""Walk failed runs and classify their failed jobs.

Per job: fetch annotations and failed steps (cheap API calls), store
them, classify. Full logs are only downloaded from inside the
classifier when LazyEvidencePolicy says so. A job that crashes is
logged and recorded as an error; its siblings carry on.

Runs seen before are not re-ingested. Only their jobs that still lack
both logs and a confident root cause are classified again, from the
evidence already stored.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field, replace

from triagectl.classify import ClassificationResult, JobEvidence, Status
from triagectl.evidence import LazyEvidencePolicy
from triagectl.responses import LogRequest
from triagectl.runlog import RESET, run_prefix, status_summary

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    run_id: int
    skipped: bool = False
    reprocessed: bool = False
    results: list[ClassificationResult] = field(default_factory=list)

    def counts(self) -> Counter:
        return Counter(r.status.value for r in self.results)

    @property
    def llm_calls(self) -> int:
        return sum(r.llm_calls for r in self.results)

    @property
    def logs_fetched(self) -> int:
        return sum(1 for r in self.results if r.logs_fetched)


class RunProcessor:
    def __init__(
        self,
        store,
        classifier,
        source,
        repository: str,
        *,
        max_follow_ups: int = 2,
        initial_log_lines: int = 50,
        policy: LazyEvidencePolicy | None = None,
    ):
        self.store = store
        self.classifier = classifier
        self.source = source
        self.repository = repository
        self.max_follow_ups = max_follow_ups
        self.initial_log_lines = initial_log_lines
        self.policy = policy or classifier.policy

    async def process_run(self, run: dict) -> RunSummary:
        run_id = run["id"]
        prefix = run_prefix(run_id)

        if await self.store.run_exists(run_id):
            job_ids = await self.policy.jobs_to_reprocess(run_id)
            if not job_ids:
                logger.info("%s Already processed, skipping%s", prefix, RESET)
                return RunSummary(run_id=run_id, skipped=True)
            logger.info("%s Already processed, %d job(s) still unexplained%s",
                        prefix, len(job_ids), RESET)
            return await self.reprocess_run(run_id, job_ids)

        jobs = await self.source.fetch_failed_jobs(run_id)
        await self.store.upsert_workflow_run(self.repository, run)
        logger.info("%s %s: %d failed job(s)%s",
                    prefix, run.get("name") or "workflow", len(jobs), RESET)

        summary = RunSummary(run_id=run_id)
        for job in jobs:
            summary.results.append(
                await self._guarded(job["id"], self._process_new_job(run, job))
            )
        self._log_summary(summary)
        return summary

    async def reprocess_run(self, run_id: int, job_ids: list[int] | None = None) -> RunSummary:
        """Classify again only the jobs that still need it."""
        if job_ids is None:
            job_ids = await self.policy.jobs_to_reprocess(run_id)
        run = await self.store.get_workflow_run(run_id)
        workflow_name = run.workflow_name if run else ""

        summary = RunSummary(run_id=run_id, reprocessed=True)
        for job_id in job_ids:
            summary.results.append(
                await self._guarded(job_id, self._reprocess_job(job_id, workflow_name or ""))
            )
        self._log_summary(summary)
        return summary

    async def _guarded(self, job_id: int, analysis) -> ClassificationResult:
        try:
            return await analysis
        except Exception as e:
            logger.warning("[job %s] Analysis crashed: %s", job_id, e)
            return ClassificationResult(job_id=job_id, status=Status.ERROR, error=str(e))

    async def _process_new_job(self, run: dict, job: dict) -> ClassificationResult:
        job_id = job["id"]
        annotations = await self.source.fetch_error_annotations(job_id)
        steps = await self.source.fetch_failed_steps(job)

        stored = await self.store.upsert_job(run["id"], job)
        await self.store.insert_job_steps(job_id, job.get("steps", []))
        annotation_ids = await self.store.insert_error_annotations(job_id, annotations)
        annotations = [{**a, "id": aid} for a, aid in zip(annotations, annotation_ids)]

        evidence = JobEvidence(
            job_id=job_id,
            job_name=job.get("name", ""),
            workflow_name=run.get("name") or "",
            repository=self.repository,
            annotations=annotations,
            steps=steps,
            log_line_count=self.initial_log_lines,
            logs_accessible=stored.logs_accessible,
            log_file_path=stored.log_file_path,
        )
        return await self.classify_with_follow_ups(evidence)

    async def _reprocess_job(self, job_id: int, workflow_name: str) -> ClassificationResult:
        job = await self.store.get_job(job_id)
        if job is None:
            raise LookupError(f"Job {job_id} is not stored")
        annotations, steps = await self.store.load_job_evidence(job_id)
        evidence = JobEvidence(
            job_id=job_id,
            job_name=job.name,
            workflow_name=workflow_name,
            repository=self.repository,
            annotations=annotations,
            steps=steps,
            log_line_count=self.initial_log_lines,
            logs_accessible=job.logs_accessible,
            log_file_path=job.log_file_path,
        )
        return await self.classify_with_follow_ups(evidence)

    async def classify_with_follow_ups(self, evidence: JobEvidence) -> ClassificationResult:
        """Classify, then honour up to max_follow_ups requests for more lines."""
        result = await self.classifier.classify(evidence)
        attempts = 0
        while result.status is Status.LLM_NEED_MORE_INFO and attempts < self.max_follow_ups:
            attempts += 1
            request = result.request or LogRequest()
            fetched = not evidence.logs_accessible
            if not await self._ensure_full_log(evidence):
                logger.warning("[job %s] logs_unavailable: no full log for follow-up", evidence.job_id)
                return replace(
                    result,
                    status=Status.LOGS_UNAVAILABLE,
                    request=None,
                    error="Full log not available for follow-up",
                )
            evidence.log_line_count += request.more_lines
            evidence.log_excerpt = await self.source.fetch_log_excerpt(
                evidence.job_id, evidence.log_line_count,
            )
            logger.info(
                "[job %s] Follow-up %d/%d: excerpt widened to %d lines (%s)",
                evidence.job_id, attempts, self.max_follow_ups,
                evidence.log_line_count, request.direction,
            )
            followed = await self.classifier.follow_up(evidence, result)
            followed.llm_calls += result.llm_calls
            followed.logs_fetched = followed.logs_fetched or result.logs_fetched or fetched
            result = followed
        return result

    async def _ensure_full_log(self, evidence: JobEvidence) -> bool:
        """True once the full log is on disk; downloads it at most once."""
        if evidence.logs_accessible:
            return True
        path = await self.source.fetch_full_log(evidence.job_id)
        await self.store.update_job_logs(evidence.job_id, path, path is not None)
        evidence.logs_accessible = path is not None
        evidence.log_file_path = path
        return path is not None

    def _log_summary(self, summary: RunSummary) -> None:
        logger.info(
            "%s Done: %s (LLM calls: %d, logs fetched: %d)%s",
            run_prefix(summary.run_id), status_summary(summary.counts()),
            summary.llm_calls, summary.logs_fetched, RESET,
        )
