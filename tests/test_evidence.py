"""Tests for triagectl.evidence -- when full logs are worth fetching."""

import asyncio

from conftest import make_job, make_run, make_store

from triagectl.classify import JobEvidence
from triagectl.evidence import LazyEvidencePolicy, TierOutcome
from triagectl.patterns import match_pattern
from triagectl.store import Detection

GENERIC = match_pattern([{"message": "Process completed with exit code 2."}], [])
SPECIFIC = match_pattern([{"message": "npm ERR! code ERESOLVE"}], [])


# ---------------------------------------------------------------------------
# TierOutcome
# ---------------------------------------------------------------------------

class TestTierOutcome:
    def test_specific_match_actionable(self):
        assert TierOutcome(SPECIFIC, 0.9).actionable

    def test_generic_match_not_actionable(self):
        assert not TierOutcome(GENERIC, 0.5).actionable

    def test_nothing_not_actionable(self):
        assert not TierOutcome().actionable


# ---------------------------------------------------------------------------
# needs_full_logs
# ---------------------------------------------------------------------------

class TestNeedsFullLogs:
    policy = LazyEvidencePolicy(llm_enabled=True)

    def test_nothing_known(self):
        assert self.policy.needs_full_logs(JobEvidence(job_id=1), TierOutcome())

    def test_generic_match_still_needs_logs(self):
        assert self.policy.needs_full_logs(JobEvidence(job_id=1), TierOutcome(GENERIC, 0.5))

    def test_specific_match(self):
        assert not self.policy.needs_full_logs(JobEvidence(job_id=1), TierOutcome(SPECIFIC, 0.9))

    def test_already_accessible(self):
        job = JobEvidence(job_id=1, logs_accessible=True)
        assert not self.policy.needs_full_logs(job, TierOutcome())

    def test_llm_disabled(self):
        policy = LazyEvidencePolicy(llm_enabled=False)
        assert not policy.needs_full_logs(JobEvidence(job_id=1), TierOutcome())

    def test_confident_tier(self):
        assert not self.policy.needs_full_logs(JobEvidence(job_id=1), TierOutcome(None, 0.88))

    def test_threshold_exclusive(self):
        assert self.policy.needs_full_logs(JobEvidence(job_id=1), TierOutcome(None, 0.79))
        assert not self.policy.needs_full_logs(JobEvidence(job_id=1), TierOutcome(None, 0.8))

    def test_stored_job_row(self):
        row = type("Job", (), {"logs_accessible": True})()
        assert not self.policy.needs_full_logs(row, TierOutcome())


# ---------------------------------------------------------------------------
# Reprocessing selection
# ---------------------------------------------------------------------------

class TestReprocessSelection:
    def test_jobs_and_runs(self, tmp_path):
        store = make_store(tmp_path)
        policy = LazyEvidencePolicy(llm_enabled=True, store=store)

        async def go():
            await store.upsert_workflow_run("org/repo", make_run(1))
            await store.upsert_job(1, make_job(10))
            await store.upsert_job(1, make_job(11))
            await store.link_job(11, None, Detection(method="llm_below_threshold", confidence=0.6))
            return await policy.jobs_to_reprocess(1), await policy.runs_to_reprocess("org/repo")

        jobs, runs = asyncio.run(go())
        assert jobs == [10, 11]
        assert runs == [1]

    def test_threshold_follows_policy(self, tmp_path):
        store = make_store(tmp_path)
        policy = LazyEvidencePolicy(llm_enabled=True, confidence_threshold=0.5, store=store)

        async def go():
            await store.upsert_workflow_run("org/repo", make_run(1))
            await store.upsert_job(1, make_job(10))
            await store.link_job(10, 1, Detection(method="llm", confidence=0.6))
            return await policy.jobs_to_reprocess(1)

        assert asyncio.run(go()) == []
