"""Tiered root-cause classification for one failed job.

Three tiers, cheapest first:

  1. Pattern rules over annotations and failed step names. A specific
     match is trusted outright; the generic exit-code rule is not.
  2. Prompt cache. The failure context is hashed for an exact lookup,
     otherwise embedded, saved, and compared to earlier resolved
     contexts. A close enough neighbour is reused; a weaker one is
     passed on to the LLM as a hint.
  3. LLM. Full logs are fetched first if LazyEvidencePolicy asks for
     them, then the oracle answers with a root cause or a request for
     more log lines.

Each tier's decision is a pure function returning a Transition: the next
stage plus a list of persistence effects. RootCauseClassifier performs
the I/O between tiers and applies the effects at the end, so every
write a classification makes is visible in one place.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum

from triagectl.embeddings import EmbeddingError
from triagectl.evidence import LazyEvidencePolicy, TierOutcome
from triagectl.llm.base import OracleError, OracleResponse
from triagectl.models import blob_to_vector
from triagectl.patterns import PatternMatch, PatternMatcher
from triagectl.prompts.classifier import build_messages
from triagectl.responses import (
    LogRequest,
    MalformedAnswer,
    NeedMoreInfoAnswer,
    RootCauseAnswer,
    parse_answer,
)
from triagectl.semantic_cache import (
    CacheOutcome,
    SimilarEntry,
    build_failure_context,
    context_hash,
)
from triagectl.store import Detection, RootCauseCandidate

logger = logging.getLogger(__name__)

SEMANTIC_REUSE_MODEL = "semantic-reuse"


class Stage(str, Enum):
    START = "start"
    PATTERN_CHECKED = "pattern_checked"
    CACHE_CHECKED = "cache_checked"
    LOG_FETCH_NEEDED = "log_fetch_needed"
    LLM_INVOKED = "llm_invoked"
    DONE = "done"


class Status(str, Enum):
    PATTERN_SUCCESS = "pattern_success"
    PROMPT_CACHE_SUCCESS = "prompt_cache_success"
    PROMPT_SEMANTIC_SUCCESS = "prompt_semantic_success"
    LLM_SUCCESS = "llm_success"
    NO_MATCH = "no_match"
    LOGS_UNAVAILABLE = "logs_unavailable"
    LLM_FAILURE = "llm_failure"
    LLM_MALFORMED = "llm_malformed"
    LLM_NEED_MORE_INFO = "llm_need_more_info"
    LLM_BELOW_THRESHOLD = "llm_below_threshold"
    ERROR = "error"

    @property
    def succeeded(self) -> bool:
        return self in _SUCCESS


_SUCCESS = {
    Status.PATTERN_SUCCESS,
    Status.PROMPT_CACHE_SUCCESS,
    Status.PROMPT_SEMANTIC_SUCCESS,
    Status.LLM_SUCCESS,
}


class Method(str, Enum):
    PATTERN = "pattern"
    PROMPT_CACHE_EXACT = "prompt_cache_exact"
    PROMPT_SEMANTIC_SEARCH = "prompt_semantic_search"
    LLM = "llm"
    LLM_MALFORMED = "llm_malformed"
    LLM_NEED_MORE_INFO = "llm_need_more_info"
    LLM_BELOW_THRESHOLD = "llm_below_threshold"


# ---------------------------------------------------------------------------
# Inputs and results
# ---------------------------------------------------------------------------

@dataclass
class ClassifierSettings:
    llm_enabled: bool = False
    confidence_threshold: float = 0.8
    llm_timeout: float = 60.0
    semantic_enabled: bool = True
    similarity_threshold: float = 0.85
    similarity_limit: int = 5
    accept_similarity: float = 0.90
    accept_reuse_count: int = 3
    initial_log_lines: int = 50

    @classmethod
    def from_config(cls, config) -> "ClassifierSettings":
        return cls(
            llm_enabled=config.llm.enabled,
            confidence_threshold=config.llm.confidence_threshold,
            llm_timeout=config.llm.timeout,
            semantic_enabled=config.semantic_search.enabled,
            similarity_threshold=config.semantic_search.threshold,
            similarity_limit=config.semantic_search.limit,
            accept_similarity=config.semantic_search.accept_similarity,
            accept_reuse_count=config.semantic_search.accept_reuse_count,
            initial_log_lines=config.initial_log_lines,
        )


@dataclass
class JobEvidence:
    """Everything known about a failed job at classification time."""

    job_id: int
    job_name: str = ""
    workflow_name: str = ""
    repository: str = ""
    annotations: list[dict] = field(default_factory=list)
    steps: list[dict] = field(default_factory=list)
    # None until fetched; "" means fetched but nothing available
    log_excerpt: str | None = None
    log_line_count: int = 50
    logs_accessible: bool = False
    log_file_path: str | None = None


@dataclass(frozen=True)
class SemanticHint:
    """A similar past failure that was not close enough to reuse."""

    entry_id: int
    root_cause_id: int
    category: str
    title: str
    similarity: float
    reuse_count: int

    def as_prompt(self) -> dict:
        return {
            "title": self.title,
            "category": self.category,
            "similarity": self.similarity,
            "reuse_count": self.reuse_count,
        }


@dataclass
class ClassificationResult:
    job_id: int
    status: Status
    method: Method | None = None
    root_cause_id: int | None = None
    category: str | None = None
    title: str | None = None
    confidence: float = 0.0
    cache_entry_id: int | None = None
    hint: SemanticHint | None = None
    # set for llm_need_more_info, drives the caller's follow-up loop
    request: LogRequest | None = None
    reason: str | None = None
    error: str | None = None
    llm_calls: int = 0
    logs_fetched: bool = False
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status.succeeded


# ---------------------------------------------------------------------------
# Transitions and effects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RecordRootCause:
    """Find or create the catalog entry, then link and count it."""

    candidate: RootCauseCandidate
    detection: Detection


@dataclass(frozen=True)
class LinkRootCause:
    root_cause_id: int
    detection: Detection


@dataclass(frozen=True)
class RecordAttempt:
    """Audit row for an analysis that assigned no cause."""

    detection: Detection


@dataclass(frozen=True)
class MarkReused:
    entry_id: int


@dataclass(frozen=True)
class AttachOutcome:
    # root_cause_id None in the outcome means "the cause recorded above"
    entry_id: int
    outcome: CacheOutcome


@dataclass(frozen=True)
class Transition:
    stage: Stage
    effects: tuple = ()
    status: Status | None = None
    method: Method | None = None
    confidence: float = 0.0
    root_cause_id: int | None = None
    category: str | None = None
    title: str | None = None
    hint: SemanticHint | None = None
    request: LogRequest | None = None
    reason: str | None = None
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return self.stage is Stage.DONE


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def decide_pattern(match: PatternMatch | None, llm_enabled: bool, duration_ms: int = 0) -> Transition:
    if match is not None and not match.is_generic:
        detection = Detection(
            method=Method.PATTERN.value,
            confidence=match.confidence,
            duration_ms=duration_ms,
            raw_analysis=json.dumps({
                "rule_id": match.rule_id,
                "matched_text": match.matched_text,
            }),
        )
        candidate = RootCauseCandidate(
            category=match.category,
            title=match.title,
            description=match.description,
            suggested_fix=match.suggested_fix,
            confidence=match.confidence,
            discovery_method="pattern",
        )
        return Transition(
            Stage.DONE,
            effects=(RecordRootCause(candidate, detection),),
            status=Status.PATTERN_SUCCESS,
            method=Method.PATTERN,
            confidence=match.confidence,
            category=match.category,
            title=match.title,
        )
    if not llm_enabled:
        return Transition(
            Stage.DONE,
            status=Status.NO_MATCH,
            method=Method.PATTERN,
            confidence=match.confidence if match else 0.0,
            category=match.category if match else None,
            title=match.title if match else None,
        )
    return Transition(Stage.PATTERN_CHECKED)


def decide_exact_hit(entry, root_cause, duration_ms: int = 0) -> Transition:
    """An exact context hit is reusable only if its cause still exists."""
    if root_cause is None:
        return Transition(Stage.CACHE_CHECKED)
    confidence = entry.confidence
    if confidence is None:
        confidence = root_cause.confidence_threshold
    detection = Detection(
        method=Method.PROMPT_CACHE_EXACT.value,
        confidence=_clamp(confidence),
        llm_model=entry.llm_model,
        llm_tokens=0,
        duration_ms=duration_ms,
        raw_analysis=json.dumps({"prompt_id": entry.id, "prompt_hash": entry.prompt_hash}),
    )
    return Transition(
        Stage.DONE,
        effects=(MarkReused(entry.id), LinkRootCause(root_cause.id, detection)),
        status=Status.PROMPT_CACHE_SUCCESS,
        method=Method.PROMPT_CACHE_EXACT,
        confidence=_clamp(confidence),
        root_cause_id=root_cause.id,
        category=root_cause.category,
        title=root_cause.title,
    )


def accept_similar(hit: SimilarEntry, settings: ClassifierSettings) -> bool:
    return (
        hit.similarity >= settings.accept_similarity
        or (hit.entry.reused_count or 0) >= settings.accept_reuse_count
        or hit.root_cause.discovery_method == "pattern"
    )


def decide_similarity(
    hits: list[SimilarEntry],
    entry_id: int | None,
    settings: ClassifierSettings,
    duration_ms: int = 0,
) -> Transition:
    if not hits:
        return Transition(Stage.CACHE_CHECKED)
    top = hits[0]
    if not accept_similar(top, settings):
        return Transition(
            Stage.CACHE_CHECKED,
            hint=SemanticHint(
                entry_id=top.entry.id,
                root_cause_id=top.root_cause.id,
                category=top.root_cause.category,
                title=top.root_cause.title,
                similarity=round(top.similarity, 4),
                reuse_count=top.entry.reused_count or 0,
            ),
        )

    similarity = _clamp(top.similarity)
    detection = Detection(
        method=Method.PROMPT_SEMANTIC_SEARCH.value,
        confidence=similarity,
        llm_model=SEMANTIC_REUSE_MODEL,
        llm_tokens=0,
        duration_ms=duration_ms,
        raw_analysis=json.dumps({
            "matched_prompt_id": top.entry.id,
            "similarity": round(top.similarity, 4),
            "reused_count": top.entry.reused_count or 0,
        }),
    )
    effects = [MarkReused(top.entry.id), LinkRootCause(top.root_cause.id, detection)]
    if entry_id is not None:
        effects.append(AttachOutcome(entry_id, CacheOutcome(
            model=SEMANTIC_REUSE_MODEL,
            response=f"Reused analysis from prompt #{top.entry.id}",
            tokens=0,
            duration_ms=duration_ms,
            root_cause_id=top.root_cause.id,
            confidence=similarity,
        )))
    return Transition(
        Stage.DONE,
        effects=tuple(effects),
        status=Status.PROMPT_SEMANTIC_SUCCESS,
        method=Method.PROMPT_SEMANTIC_SEARCH,
        confidence=similarity,
        root_cause_id=top.root_cause.id,
        category=top.root_cause.category,
        title=top.root_cause.title,
    )


def decide_llm_answer(
    answer: RootCauseAnswer | NeedMoreInfoAnswer | MalformedAnswer,
    response: OracleResponse,
    confidence_threshold: float,
    entry_id: int | None,
    duration_ms: int = 0,
) -> Transition:
    def detection(method: Method, confidence: float) -> Detection:
        return Detection(
            method=method.value,
            confidence=confidence,
            llm_model=response.model,
            llm_tokens=response.tokens.total,
            duration_ms=duration_ms,
            raw_analysis=response.content,
        )

    if isinstance(answer, MalformedAnswer):
        return Transition(
            Stage.DONE,
            effects=(RecordAttempt(detection(Method.LLM_MALFORMED, 0.0)),),
            status=Status.LLM_MALFORMED,
            method=Method.LLM_MALFORMED,
            error=answer.error,
        )

    if isinstance(answer, NeedMoreInfoAnswer):
        return Transition(
            Stage.DONE,
            effects=(RecordAttempt(detection(Method.LLM_NEED_MORE_INFO, 0.0)),),
            status=Status.LLM_NEED_MORE_INFO,
            method=Method.LLM_NEED_MORE_INFO,
            request=answer.request,
            reason=answer.reason,
        )

    if answer.confidence < confidence_threshold:
        return Transition(
            Stage.DONE,
            effects=(RecordAttempt(detection(Method.LLM_BELOW_THRESHOLD, answer.confidence)),),
            status=Status.LLM_BELOW_THRESHOLD,
            method=Method.LLM_BELOW_THRESHOLD,
            confidence=answer.confidence,
            category=answer.category,
            title=answer.title,
        )

    candidate = RootCauseCandidate(
        category=answer.category,
        title=answer.title,
        description=answer.description,
        suggested_fix=answer.suggested_fix,
        confidence=answer.confidence,
        discovery_method="llm",
    )
    effects = [RecordRootCause(candidate, detection(Method.LLM, answer.confidence))]
    if entry_id is not None:
        effects.append(AttachOutcome(entry_id, CacheOutcome(
            model=response.model,
            response=response.content,
            tokens=response.tokens.total,
            duration_ms=duration_ms,
            confidence=answer.confidence,
        )))
    return Transition(
        Stage.DONE,
        effects=tuple(effects),
        status=Status.LLM_SUCCESS,
        method=Method.LLM,
        confidence=answer.confidence,
        category=answer.category,
        title=answer.title,
    )


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

@dataclass
class AnalysisContext:
    """State threaded through one classification."""

    evidence: JobEvidence
    started: float = field(default_factory=time.monotonic)
    stage: Stage = Stage.START
    pattern_match: PatternMatch | None = None
    cache_entry_id: int | None = None
    hint: SemanticHint | None = None
    previous_request: dict | None = None
    llm_calls: int = 0
    logs_fetched: bool = False

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def tier_outcome(self) -> TierOutcome:
        """Pattern evidence only; a semantic hint is a rejected match."""
        confidence = self.pattern_match.confidence if self.pattern_match is not None else 0.0
        return TierOutcome(pattern_match=self.pattern_match, confidence=confidence)


class RootCauseClassifier:
    def __init__(
        self,
        store,
        *,
        settings: ClassifierSettings | None = None,
        matcher: PatternMatcher | None = None,
        semantic_cache=None,
        embedder=None,
        oracle=None,
        evidence_source=None,
        policy: LazyEvidencePolicy | None = None,
    ):
        self.store = store
        self.settings = settings or ClassifierSettings()
        self.matcher = matcher or PatternMatcher()
        self.semantic_cache = semantic_cache
        self.embedder = embedder
        self.oracle = oracle
        self.evidence_source = evidence_source
        self.policy = policy or LazyEvidencePolicy(
            self.llm_enabled, self.settings.confidence_threshold, store=store,
        )

    @property
    def llm_enabled(self) -> bool:
        return self.settings.llm_enabled and self.oracle is not None

    @property
    def semantic_enabled(self) -> bool:
        return (
            self.settings.semantic_enabled
            and self.semantic_cache is not None
            and self.embedder is not None
        )

    async def classify(self, evidence: JobEvidence) -> ClassificationResult:
        """Run the tiers for a job and persist the outcome."""
        ctx = AnalysisContext(evidence=evidence)

        step = decide_pattern(self._match(ctx), self.llm_enabled, ctx.elapsed_ms())
        if step.terminal:
            return await self._finish(ctx, step)
        ctx.stage = Stage.PATTERN_CHECKED

        step = await self._semantic_tier(ctx)
        if step.terminal:
            return await self._finish(ctx, step)

        return await self._escalate(ctx)

    async def follow_up(
        self, evidence: JobEvidence, previous: ClassificationResult,
    ) -> ClassificationResult:
        """Re-ask the LLM after a need_more_info answer.

        Skips the pattern and cache tiers and keeps the same cache entry,
        so a successful answer lands on the context first recorded.
        """
        if previous.status is not Status.LLM_NEED_MORE_INFO:
            raise ValueError(f"Cannot follow up on status {previous.status.value}")
        ctx = AnalysisContext(
            evidence=evidence,
            stage=Stage.CACHE_CHECKED,
            cache_entry_id=previous.cache_entry_id,
            hint=previous.hint,
        )
        if previous.request is not None:
            ctx.previous_request = {
                **previous.request.model_dump(),
                "reason": previous.reason,
            }
        return await self._escalate(ctx)

    # -- tiers ----------------------------------------------------------------

    def _match(self, ctx: AnalysisContext) -> PatternMatch | None:
        ev = ctx.evidence
        ctx.pattern_match = self.matcher.match(ev.annotations, ev.steps)
        return ctx.pattern_match

    async def _log_excerpt(self, ev: JobEvidence) -> str:
        if ev.log_excerpt is None:
            if self.evidence_source is None:
                ev.log_excerpt = ""
            else:
                ev.log_excerpt = await self.evidence_source.fetch_log_excerpt(
                    ev.job_id, ev.log_line_count,
                )
        return ev.log_excerpt

    async def _semantic_tier(self, ctx: AnalysisContext) -> Transition:
        ctx.stage = Stage.CACHE_CHECKED
        if not self.semantic_enabled:
            return Transition(Stage.CACHE_CHECKED)

        ev = ctx.evidence
        excerpt = await self._log_excerpt(ev)
        text = build_failure_context(
            ev.annotations, ev.steps, ev.job_name, ev.workflow_name, excerpt,
        )
        if not text.strip():
            return Transition(Stage.CACHE_CHECKED)
        prompt_hash = context_hash(text)

        try:
            entry = await self.semantic_cache.lookup_exact(prompt_hash)
            if entry is not None:
                ctx.cache_entry_id = entry.id
                root_cause = await self.store.get_root_cause_by_id(entry.root_cause_id)
                step = decide_exact_hit(entry, root_cause, ctx.elapsed_ms())
                if step.terminal:
                    return step
                if entry.root_cause_id is not None:
                    logger.warning(
                        "[job %s] Cached prompt #%d points at missing root cause #%d, "
                        "re-analysing", ev.job_id, entry.id, entry.root_cause_id,
                    )
                    return step
                vector = blob_to_vector(entry.prompt_embedding)
                if vector is None:
                    return step
            else:
                embedding = await self.embedder.embed(text)
                ctx.cache_entry_id = await self.semantic_cache.save(
                    text,
                    embedding,
                    job_id=ev.job_id,
                    annotation_ids=[a["id"] for a in ev.annotations if a.get("id") is not None],
                    step_names=[s.get("name", "") for s in ev.steps],
                    log_excerpt_length=len(excerpt),
                )
                vector = embedding.vector
        except EmbeddingError as e:
            return Transition(
                Stage.DONE,
                status=Status.LLM_FAILURE,
                error=f"Embedding failed: {e}",
            )

        hits = await self.semantic_cache.find_similar(
            vector,
            threshold=self.settings.similarity_threshold,
            limit=self.settings.similarity_limit,
            exclude_id=ctx.cache_entry_id,
        )
        step = decide_similarity(hits, ctx.cache_entry_id, self.settings, ctx.elapsed_ms())
        ctx.hint = step.hint
        return step

    async def _escalate(self, ctx: AnalysisContext) -> ClassificationResult:
        step = await self._acquire_logs(ctx)
        if step is None:
            step = await self._llm_tier(ctx)
        return await self._finish(ctx, step)

    async def _acquire_logs(self, ctx: AnalysisContext) -> Transition | None:
        """Download full logs if the policy asks; None means carry on."""
        ev = ctx.evidence
        if self.evidence_source is None:
            return None
        if not self.policy.needs_full_logs(ev, ctx.tier_outcome()):
            return None

        ctx.stage = Stage.LOG_FETCH_NEEDED
        logger.debug("[job %s] Fetching full log", ev.job_id)
        path = await self.evidence_source.fetch_full_log(ev.job_id)
        if path is None:
            await self.store.update_job_logs(ev.job_id, None, False)
            return Transition(
                Stage.DONE,
                status=Status.LOGS_UNAVAILABLE,
                error="Full log not available",
            )

        await self.store.update_job_logs(ev.job_id, path, True)
        ctx.logs_fetched = True
        ev.logs_accessible = True
        ev.log_file_path = path
        ev.log_excerpt = await self.evidence_source.fetch_log_excerpt(ev.job_id, ev.log_line_count)
        return None

    async def _llm_tier(self, ctx: AnalysisContext) -> Transition:
        ev = ctx.evidence
        if not self.llm_enabled:
            return Transition(Stage.DONE, status=Status.NO_MATCH, method=Method.PATTERN)

        ctx.stage = Stage.LLM_INVOKED
        messages = build_messages(
            job_id=ev.job_id,
            job_name=ev.job_name,
            workflow_name=ev.workflow_name,
            repository=ev.repository,
            annotations=ev.annotations,
            steps=ev.steps,
            log_excerpt=await self._log_excerpt(ev),
            log_line_count=ev.log_line_count,
            hint=ctx.hint.as_prompt() if ctx.hint else None,
            previous_request=ctx.previous_request,
        )

        start = time.monotonic()
        ctx.llm_calls += 1
        timeout = self.settings.llm_timeout
        try:
            response = await asyncio.wait_for(self.oracle.send(messages), timeout=timeout)
        except TimeoutError:
            return Transition(
                Stage.DONE, status=Status.LLM_FAILURE, method=Method.LLM,
                error=f"LLM call timed out after {timeout:g}s",
            )
        except OracleError as e:
            return Transition(
                Stage.DONE, status=Status.LLM_FAILURE, method=Method.LLM, error=str(e),
            )
        duration_ms = int((time.monotonic() - start) * 1000)

        answer = parse_answer(response.content)
        return decide_llm_answer(
            answer, response, self.settings.confidence_threshold,
            ctx.cache_entry_id, duration_ms,
        )

    # -- persistence ----------------------------------------------------------

    async def _link_and_count(self, job_id: int, root_cause_id: int, detection: Detection) -> None:
        await self.store.link_job(job_id, root_cause_id, detection)
        await self.store.bump_occurrence(root_cause_id)
        await self.store.touch_last_seen(root_cause_id)

    async def _apply(self, job_id: int, effects: tuple) -> int | None:
        recorded = None
        for effect in effects:
            if isinstance(effect, RecordRootCause):
                root_cause = await self.store.find_or_create_root_cause(effect.candidate)
                await self._link_and_count(job_id, root_cause.id, effect.detection)
                recorded = root_cause.id
            elif isinstance(effect, LinkRootCause):
                await self._link_and_count(job_id, effect.root_cause_id, effect.detection)
                recorded = effect.root_cause_id
            elif isinstance(effect, RecordAttempt):
                await self.store.link_job(job_id, None, effect.detection)
            elif isinstance(effect, MarkReused):
                await self.semantic_cache.mark_reused(effect.entry_id)
            elif isinstance(effect, AttachOutcome):
                outcome = effect.outcome
                if outcome.root_cause_id is None:
                    outcome = replace(outcome, root_cause_id=recorded)
                await self.semantic_cache.attach_outcome(effect.entry_id, outcome)
            else:
                raise TypeError(f"Unknown effect: {effect!r}")
        return recorded

    async def _finish(self, ctx: AnalysisContext, step: Transition) -> ClassificationResult:
        ctx.stage = Stage.DONE
        recorded = await self._apply(ctx.evidence.job_id, step.effects)
        result = ClassificationResult(
            job_id=ctx.evidence.job_id,
            status=step.status,
            method=step.method,
            root_cause_id=recorded if recorded is not None else step.root_cause_id,
            category=step.category,
            title=step.title,
            confidence=step.confidence,
            cache_entry_id=ctx.cache_entry_id,
            hint=ctx.hint,
            request=step.request,
            reason=step.reason,
            error=step.error,
            llm_calls=ctx.llm_calls,
            logs_fetched=ctx.logs_fetched,
            duration_ms=ctx.elapsed_ms(),
        )
        log_result(result)
        return result


def log_result(result: ClassificationResult) -> None:
    method = result.method.value if result.method else "-"
    if result.succeeded:
        logger.info(
            "[job %s] %s via %s: [%s] %s (confidence %.2f, %dms)",
            result.job_id, result.status.value, method, result.category,
            result.title, result.confidence, result.duration_ms,
        )
    elif result.status is Status.NO_MATCH:
        logger.info("[job %s] no_match (%dms)", result.job_id, result.duration_ms)
    else:
        logger.warning(
            "[job %s] %s via %s%s (%dms)",
            result.job_id, result.status.value, method,
            f": {result.error}" if result.error else "", result.duration_ms,
        )
