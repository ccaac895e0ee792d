"""Evidence acquisition: what to fetch for a job, and when.

Full job logs are the expensive evidence. LazyEvidencePolicy keeps them
out of the pipeline until the cheap tiers (patterns over annotations and
step names, then the prompt cache) have failed to produce a confident
answer and an LLM is actually going to look at them.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from triagectl.patterns import PatternMatch

logger = logging.getLogger(__name__)


class EvidenceSource(ABC):
    """Where job evidence comes from (the CI provider and local log files)."""

    @abstractmethod
    async def fetch_failed_jobs(self, run_id: int) -> list[dict]:
        ...

    @abstractmethod
    async def fetch_error_annotations(self, job_id: int) -> list[dict]:
        ...

    @abstractmethod
    async def fetch_failed_steps(self, job: dict) -> list[dict]:
        ...

    @abstractmethod
    async def fetch_log_excerpt(self, job_id: int, line_count: int) -> str:
        """Last line_count lines of the job log, or "" if not available."""

    @abstractmethod
    async def fetch_full_log(self, job_id: int) -> str | None:
        """Make the full log available locally; None if it cannot be."""


@dataclass(frozen=True)
class TierOutcome:
    """What the cheap tiers produced before escalation."""

    pattern_match: PatternMatch | None = None
    confidence: float = 0.0

    @property
    def actionable(self) -> bool:
        return self.pattern_match is not None and not self.pattern_match.is_generic


class LazyEvidencePolicy:
    def __init__(self, llm_enabled: bool, confidence_threshold: float = 0.8, store=None):
        self.llm_enabled = llm_enabled
        self.confidence_threshold = confidence_threshold
        self.store = store

    def needs_full_logs(self, job, outcome: TierOutcome) -> bool:
        """True only if nothing cheaper settled the job and an LLM will run."""
        if getattr(job, "logs_accessible", False):
            return False
        if outcome.actionable:
            return False
        if not self.llm_enabled:
            return False
        return outcome.confidence < self.confidence_threshold

    async def jobs_to_reprocess(self, run_id: int) -> list[int]:
        """Jobs of a stored run still lacking both logs and a confident cause."""
        return await self.store.jobs_needing_reprocessing(run_id, self.confidence_threshold)

    async def runs_to_reprocess(self, repository: str) -> list[int]:
        return await self.store.runs_needing_reprocessing(repository, self.confidence_threshold)
