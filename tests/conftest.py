"""Shared fakes and helpers for triagectl tests."""

import asyncio
import hashlib
import json
import math

from triagectl.classify import ClassifierSettings, RootCauseClassifier
from triagectl.embeddings import Embedding, EmbeddingError, EmbeddingProvider
from triagectl.evidence import EvidenceSource
from triagectl.llm.base import LLMOracle, OracleResponse, TokenUsage
from triagectl.semantic_cache import SemanticCache
from triagectl.store import KnowledgeStore

DIM = 16


def make_store(tmp_path, name="triage.db"):
    """A KnowledgeStore on a fresh SQLite file with the schema created."""
    store = KnowledgeStore(f"sqlite:///{tmp_path / name}")
    store.create_schema()
    return store


def tilted(cos: float) -> list[float]:
    """Unit vector at the given cosine from axis 0."""
    return [cos, math.sqrt(max(0.0, 1.0 - cos * cos))] + [0.0] * (DIM - 2)


def hashed_vector(text: str) -> list[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [b / 127.5 - 1.0 for b in digest[:DIM]]


class FakeEmbedder(EmbeddingProvider):
    """Maps text to vectors by substring rules, checked in order.

    Text matching no rule gets a vector derived from its hash, so two
    different contexts are (practically) never similar by accident.
    """

    model_name = "fake-embedder"

    def __init__(self, rules=None, error: str | None = None):
        self.rules = list(rules or [])
        self.error = error
        self.calls: list[str] = []

    async def embed(self, text: str) -> Embedding:
        self.calls.append(text)
        if self.error:
            raise EmbeddingError(self.error)
        vector = None
        for needle, vec in self.rules:
            if needle in text:
                vector = vec
                break
        if vector is None:
            vector = hashed_vector(text)
        return Embedding(vector=list(vector), dimensions=len(vector), model=self.model_name)


def root_cause_json(
    category="runtime",
    title="Worker segfault",
    confidence=0.9,
    description="The worker crashed",
    suggested_fix="Pin the native library",
):
    return json.dumps({
        "type": "root_cause",
        "category": category,
        "title": title,
        "description": description,
        "confidence": confidence,
        "suggested_fix": suggested_fix,
        "reasoning": "stack trace",
    })


def need_more_info_json(more_lines=50, direction="before", reason="excerpt cut off"):
    return json.dumps({
        "type": "need_more_info",
        "reason": reason,
        "request": {"more_lines": more_lines, "direction": direction},
    })


class FakeOracle(LLMOracle):
    """Replays scripted answers; the last one repeats. Exceptions are raised."""

    provider = "fake"

    def __init__(self, responses=(), delay: float = 0.0, model: str = "fake-model"):
        super().__init__(model)
        self.responses = list(responses)
        self.delay = delay
        self.calls: list[list[dict]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def user_prompt(self, index: int = -1) -> str:
        return next(m["content"] for m in self.calls[index] if m["role"] == "user")

    async def _send(self, messages):
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return OracleResponse(
            content=item,
            model=self.model,
            provider=self.provider,
            tokens=TokenUsage(input=100, output=20),
        )


class FakeEvidenceSource(EvidenceSource):
    """In-memory CI provider. Logs become readable only once downloaded."""

    def __init__(self, jobs=None, annotations=None, logs=None, failing_jobs=()):
        self.jobs = jobs or {}
        self.annotations = annotations or {}
        self.logs = logs or {}
        self.failing_jobs = set(failing_jobs)
        self.downloaded: set[int] = set()
        self.full_log_fetches: list[int] = []
        self.annotation_fetches: list[int] = []
        self.excerpt_requests: list[tuple[int, int]] = []

    async def fetch_failed_jobs(self, run_id):
        return list(self.jobs.get(run_id, []))

    async def fetch_error_annotations(self, job_id):
        self.annotation_fetches.append(job_id)
        if job_id in self.failing_jobs:
            raise RuntimeError(f"annotations for {job_id} exploded")
        return list(self.annotations.get(job_id, []))

    async def fetch_failed_steps(self, job):
        return [s for s in job.get("steps", []) if s.get("conclusion") == "failure"]

    async def fetch_log_excerpt(self, job_id, line_count):
        self.excerpt_requests.append((job_id, line_count))
        if job_id not in self.downloaded:
            return ""
        return "\n".join(self.logs[job_id].split("\n")[-line_count:])

    async def fetch_full_log(self, job_id):
        self.full_log_fetches.append(job_id)
        if job_id not in self.logs:
            return None
        self.downloaded.add(job_id)
        return f"/logs/{job_id}-job.log"


def make_classifier(store, *, oracle=None, embedder=None, source=None, **settings):
    """RootCauseClassifier over a real store; LLM on whenever an oracle is given."""
    settings.setdefault("llm_enabled", oracle is not None)
    return RootCauseClassifier(
        store,
        settings=ClassifierSettings(**settings),
        semantic_cache=SemanticCache(store) if embedder is not None else None,
        embedder=embedder,
        oracle=oracle,
        evidence_source=source,
    )


def annotation(message, title="", path="src/worker.c", level="failure", line=12):
    return {
        "annotation_level": level,
        "message": message,
        "title": title,
        "path": path,
        "start_line": line,
        "end_line": line,
        "raw_details": None,
    }


def step(name, number=3, conclusion="failure"):
    return {"name": name, "number": number, "status": "completed", "conclusion": conclusion}


def make_job(job_id, name="build-linux", steps=None, conclusion="failure"):
    return {
        "id": job_id,
        "name": name,
        "url": f"https://github.com/org/repo/actions/runs/1/job/{job_id}",
        "conclusion": conclusion,
        "steps": steps if steps is not None else [
            step("Set up job", 1, "success"),
            step("Run suite", 2),
        ],
        "completed_at": "2025-01-15T10:05:00Z",
    }


def make_run(run_id, name="CI", created_at="2025-01-15T10:00:00Z"):
    return {
        "id": run_id,
        "url": f"https://github.com/org/repo/actions/runs/{run_id}",
        "name": name,
        "path": ".github/workflows/ci.yml",
        "run_number": 7,
        "head_branch": "main",
        "event": "push",
        "head_sha": "abc123",
        "conclusion": "failure",
        "created_at": created_at,
        "run_attempt": 1,
    }
