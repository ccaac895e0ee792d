"""Prompt cache keyed by failure context.

Each distinct failure context (annotations, failed steps, job/workflow
names and a short log tail) is hashed and embedded once. Identical
contexts hit by hash; near-identical ones are found by cosine similarity
over the stored vectors and may reuse an earlier LLM verdict.
"""

import hashlib
import json
import logging
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from triagectl.embeddings import Embedding, cosine_similarities
from triagectl.models import PromptCacheEntry, RootCause, utcnow, vector_to_blob

logger = logging.getLogger(__name__)

LOG_EXCERPT_MAX_CHARS = 500
LOG_EXCERPT_MAX_LINES = 10


# ---------------------------------------------------------------------------
# Failure context
# ---------------------------------------------------------------------------

def truncate_log_excerpt(text: str, max_chars: int = LOG_EXCERPT_MAX_CHARS) -> str:
    """Keep the tail of a log: last 10 lines, capped at max_chars."""
    if not text or len(text) <= max_chars:
        return text or ""
    tail = "\n".join(text.split("\n")[-LOG_EXCERPT_MAX_LINES:])
    if len(tail) > max_chars:
        return tail[:max_chars - 3] + "..."
    return tail


def build_failure_context(
    annotations: list[dict],
    steps: list[dict],
    job_name: str | None = None,
    workflow_name: str | None = None,
    log_excerpt: str = "",
) -> str:
    """Normalized text that is hashed and embedded for a job failure."""
    parts = []

    errors = []
    for annotation in annotations:
        title = annotation.get("title") or ""
        message = annotation.get("message") or ""
        text = f"{title} {message}".strip()
        if text:
            errors.append(text)
    if errors:
        parts.append("ERROR: " + " | ".join(errors))

    step_names = [s["name"] for s in steps if s.get("name")]
    if step_names:
        parts.append("STEPS: " + " → ".join(step_names))

    if job_name:
        parts.append(f"JOB: {job_name}")
    if workflow_name:
        parts.append(f"WORKFLOW: {workflow_name}")

    if log_excerpt and log_excerpt.strip():
        parts.append("LOGS: " + truncate_log_excerpt(log_excerpt.strip()))

    return "\n\n".join(parts)


def context_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Cache records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CacheOutcome:
    """What a context resolved to, recorded on its cache entry."""

    model: str
    response: str
    tokens: int = 0
    duration_ms: int = 0
    root_cause_id: int | None = None
    confidence: float | None = None


@dataclass(frozen=True)
class SimilarEntry:
    entry: PromptCacheEntry
    root_cause: RootCause
    similarity: float


def _recency(entry: PromptCacheEntry) -> float:
    if entry.last_reused_at is None:
        return float("-inf")
    return entry.last_reused_at.timestamp()


def rank_similar(hits: list[SimilarEntry]) -> list[SimilarEntry]:
    """Order by similarity, then reuse count, then most recent reuse."""
    return sorted(
        hits,
        key=lambda h: (
            round(h.similarity, 6),
            h.entry.reused_count or 0,
            _recency(h.entry),
        ),
        reverse=True,
    )


class SemanticCache:
    def __init__(self, store):
        self.store = store

    # -- exact ----------------------------------------------------------------

    def _lookup_exact(self, prompt_hash: str) -> PromptCacheEntry | None:
        with self.store.session() as session:
            return session.scalars(
                sa.select(PromptCacheEntry).where(PromptCacheEntry.prompt_hash == prompt_hash)
            ).first()

    async def lookup_exact(self, prompt_hash: str) -> PromptCacheEntry | None:
        return await self.store.run(self._lookup_exact, prompt_hash)

    # -- save -----------------------------------------------------------------

    def _save(
        self,
        context_text: str,
        embedding: Embedding,
        job_id: int | None,
        annotation_ids: list[int],
        step_names: list[str],
        log_excerpt_length: int,
    ) -> int:
        prompt_hash = context_hash(context_text)
        with self.store.session() as session:
            entry = PromptCacheEntry(
                prompt_hash=prompt_hash,
                prompt_text=context_text,
                prompt_embedding=vector_to_blob(embedding.vector),
                embedding_model=embedding.model,
                job_id=job_id,
                error_annotation_ids=json.dumps(annotation_ids),
                failed_step_names=json.dumps(step_names),
                log_excerpt_length=log_excerpt_length,
                reused_count=0,
            )
            session.add(entry)
            try:
                session.commit()
                return entry.id
            except IntegrityError:
                session.rollback()
        existing = self._lookup_exact(prompt_hash)
        if existing is None:
            raise RuntimeError(f"Prompt cache insert failed for {prompt_hash[:12]}")
        logger.debug("Prompt %s saved concurrently as #%d", prompt_hash[:12], existing.id)
        return existing.id

    async def save(
        self,
        context_text: str,
        embedding: Embedding,
        job_id: int | None = None,
        annotation_ids: list[int] | None = None,
        step_names: list[str] | None = None,
        log_excerpt_length: int = 0,
    ) -> int:
        """Persist a context before it is sent anywhere; returns the entry id."""
        return await self.store.run(
            self._save, context_text, embedding, job_id,
            annotation_ids or [], step_names or [], log_excerpt_length,
        )

    # -- similarity -----------------------------------------------------------

    def _find_similar(
        self, vector, threshold: float, limit: int, exclude_id: int | None,
    ) -> list[SimilarEntry]:
        with self.store.session() as session:
            query = (
                sa.select(PromptCacheEntry, RootCause)
                .join(RootCause, RootCause.id == PromptCacheEntry.root_cause_id)
                .where(PromptCacheEntry.prompt_embedding.is_not(None))
            )
            if exclude_id is not None:
                query = query.where(PromptCacheEntry.id != exclude_id)
            rows = session.execute(query).all()

        sims = cosine_similarities(vector, [entry.prompt_embedding for entry, _ in rows])
        hits = [
            SimilarEntry(entry=entry, root_cause=root_cause, similarity=sim)
            for (entry, root_cause), sim in zip(rows, sims)
            if sim is not None and sim >= threshold
        ]
        return rank_similar(hits)[:limit]

    async def find_similar(
        self,
        vector,
        threshold: float = 0.85,
        limit: int = 5,
        exclude_id: int | None = None,
    ) -> list[SimilarEntry]:
        """Resolved entries at or above threshold, best first.

        Entries without a root cause, or whose root cause no longer exists,
        are never returned.
        """
        return await self.store.run(self._find_similar, vector, threshold, limit, exclude_id)

    # -- updates --------------------------------------------------------------

    def _mark_reused(self, entry_id: int) -> None:
        with self.store.session() as session:
            session.execute(
                sa.update(PromptCacheEntry)
                .where(PromptCacheEntry.id == entry_id)
                .values(
                    reused_count=PromptCacheEntry.reused_count + 1,
                    last_reused_at=utcnow(),
                )
            )
            session.commit()

    async def mark_reused(self, entry_id: int) -> None:
        await self.store.run(self._mark_reused, entry_id)

    def _attach_outcome(self, entry_id: int, outcome: CacheOutcome) -> None:
        with self.store.session() as session:
            session.execute(
                sa.update(PromptCacheEntry)
                .where(PromptCacheEntry.id == entry_id)
                .values(
                    llm_model=outcome.model,
                    llm_response=outcome.response,
                    llm_tokens_used=outcome.tokens,
                    llm_duration_ms=outcome.duration_ms,
                    root_cause_id=outcome.root_cause_id,
                    confidence=outcome.confidence,
                )
            )
            session.commit()

    async def attach_outcome(self, entry_id: int, outcome: CacheOutcome) -> None:
        await self.store.run(self._attach_outcome, entry_id, outcome)

    def _get(self, entry_id: int) -> PromptCacheEntry | None:
        with self.store.session() as session:
            return session.get(PromptCacheEntry, entry_id)

    async def get(self, entry_id: int) -> PromptCacheEntry | None:
        return await self.store.run(self._get, entry_id)

    # -- stats ----------------------------------------------------------------

    def summarize(self) -> dict:
        """Cache usage figures, read synchronously."""
        e = PromptCacheEntry
        with self.store.session() as session:
            row = session.execute(
                sa.select(
                    sa.func.count(e.id),
                    sa.func.count(e.root_cause_id),
                    sa.func.count(sa.case((e.reused_count > 0, 1))),
                    sa.func.coalesce(sa.func.sum(e.reused_count), 0),
                    sa.func.avg(e.confidence),
                    sa.func.coalesce(sa.func.sum(e.llm_tokens_used), 0),
                )
            ).one()
        total, with_results, reused, total_reuses, avg_confidence, tokens = row
        return {
            "total_prompts": total,
            "prompts_with_results": with_results,
            "reused_prompts": reused,
            "total_reuses": int(total_reuses),
            "avg_confidence": round(float(avg_confidence), 3) if avg_confidence is not None else None,
            "total_llm_tokens": int(tokens),
        }

    async def stats(self) -> dict:
        return await self.store.run(self.summarize)
