"""Build the classification pipeline from configuration and run it.

Each run_* function is the body of one CLI command and returns an exit
status.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass

from triagectl.classify import ClassifierSettings, RootCauseClassifier
from triagectl.embeddings import (
    EmbeddingError,
    SentenceTransformerEmbedder,
    find_similar_root_causes,
    generate_missing_embeddings,
)
from triagectl.evidence import LazyEvidencePolicy
from triagectl.fetch import STATUS_ERROR, STATUS_OK, collect_failed_runs
from triagectl.github import GitHubEvidenceSource
from triagectl.llm import create_oracle
from triagectl.processor import RunProcessor, RunSummary
from triagectl.runlog import RESET, run_prefix, status_summary
from triagectl.semantic_cache import SemanticCache
from triagectl.store import KnowledgeStore

logger = logging.getLogger(__name__)


def build_oracle(llm_config):
    """Oracle for the configured provider, or None when LLM analysis is off.

    A backend that cannot be constructed downgrades the run to pattern
    matching when fallback_to_pattern is set, and is fatal otherwise.
    """
    if not llm_config.enabled:
        logger.info("LLM analysis disabled, using pattern matching only")
        return None
    try:
        oracle = create_oracle(llm_config)
    except ValueError as e:
        if not llm_config.fallback_to_pattern:
            raise
        logger.warning("LLM backend unavailable (%s), falling back to pattern matching", e)
        return None
    logger.info("LLM analysis enabled: %s (%s)", oracle.provider, oracle.model)
    return oracle


def build_embedder(config):
    if not config.semantic_search.enabled:
        return None
    return SentenceTransformerEmbedder(config.embedding_model)


def open_store(config) -> KnowledgeStore:
    store = KnowledgeStore(config.database_url)
    store.create_schema()
    return store


@dataclass
class Pipeline:
    store: KnowledgeStore
    classifier: RootCauseClassifier
    processor: RunProcessor


def build_pipeline(config, store, source, oracle=None, embedder=None) -> Pipeline:
    settings = ClassifierSettings.from_config(config)
    settings.llm_enabled = settings.llm_enabled and oracle is not None
    policy = LazyEvidencePolicy(
        settings.llm_enabled, settings.confidence_threshold, store=store,
    )
    classifier = RootCauseClassifier(
        store,
        settings=settings,
        semantic_cache=SemanticCache(store),
        embedder=embedder,
        oracle=oracle,
        evidence_source=source,
        policy=policy,
    )
    processor = RunProcessor(
        store,
        classifier,
        source,
        config.repository,
        max_follow_ups=config.max_follow_up_attempts,
        initial_log_lines=config.initial_log_lines,
        policy=policy,
    )
    return Pipeline(store=store, classifier=classifier, processor=processor)


def log_totals(summaries: list[RunSummary]) -> None:
    counts: Counter = Counter()
    for summary in summaries:
        counts.update(summary.counts())
    processed = [s for s in summaries if not s.skipped]
    logger.info(
        "Processed %d run(s) (%d skipped): %s; LLM calls: %d, logs fetched: %d",
        len(processed),
        len(summaries) - len(processed),
        status_summary(counts),
        sum(s.llm_calls for s in summaries),
        sum(s.logs_fetched for s in summaries),
    )


async def process_runs(processor: RunProcessor, runs: list[dict]) -> list[RunSummary]:
    """Process runs oldest first; a run that fails is logged and skipped."""
    summaries = []
    for run in sorted(runs, key=lambda r: r.get("created_at") or ""):
        try:
            summaries.append(await processor.process_run(run))
        except Exception as e:
            logger.warning("%s Run failed: %s%s", run_prefix(run["id"]), e, RESET)
    return summaries


async def reprocess_stored_runs(processor: RunProcessor, repository: str) -> list[RunSummary]:
    run_ids = await processor.policy.runs_to_reprocess(repository)
    if not run_ids:
        logger.info("Nothing to reprocess for %s", repository)
        return []
    logger.info("Reprocessing %d run(s) for %s", len(run_ids), repository)
    summaries = []
    for run_id in run_ids:
        try:
            summaries.append(await processor.reprocess_run(run_id))
        except Exception as e:
            logger.warning("%s Reprocessing failed: %s%s", run_prefix(run_id), e, RESET)
    return summaries


def _require_repository(config) -> bool:
    if not config.repository:
        logger.error("No repository configured. Use --repo or set 'repository' in the config file.")
        return False
    return True


def run_analyze(
    config,
    lookback_days: int = 7,
    workflows: list[str] | None = None,
    branches: list[str] | None = None,
) -> int:
    """Fetch failed runs and classify their failed jobs."""
    if not _require_repository(config):
        return STATUS_ERROR
    try:
        runs = collect_failed_runs(config.repository, lookback_days, workflows, branches)
    except (RuntimeError, ValueError) as e:
        logger.error("Failed to fetch runs: %s", e)
        return STATUS_ERROR
    if not runs:
        logger.info("No failed workflow runs found for the selected filters.")
        return STATUS_OK

    try:
        oracle = build_oracle(config.llm)
    except ValueError as e:
        logger.error("Cannot start LLM backend: %s", e)
        return STATUS_ERROR
    store = open_store(config)
    source = GitHubEvidenceSource(config.repository, config.logs_directory, config.download_logs)
    pipeline = build_pipeline(config, store, source, oracle, build_embedder(config))
    try:
        summaries = asyncio.run(process_runs(pipeline.processor, runs))
    finally:
        store.dispose()
    log_totals(summaries)
    return STATUS_OK


def run_reprocess(config) -> int:
    """Classify again the stored jobs that still lack logs and a confident cause."""
    if not _require_repository(config):
        return STATUS_ERROR
    try:
        oracle = build_oracle(config.llm)
    except ValueError as e:
        logger.error("Cannot start LLM backend: %s", e)
        return STATUS_ERROR
    store = open_store(config)
    source = GitHubEvidenceSource(config.repository, config.logs_directory, config.download_logs)
    pipeline = build_pipeline(config, store, source, oracle, build_embedder(config))
    try:
        summaries = asyncio.run(reprocess_stored_runs(pipeline.processor, config.repository))
    finally:
        store.dispose()
    log_totals(summaries)
    return STATUS_OK


def run_embed(config) -> int:
    """Embed every root cause that has no vector yet."""
    store = open_store(config)
    embedder = SentenceTransformerEmbedder(config.embedding_model)
    try:
        result = asyncio.run(generate_missing_embeddings(store, embedder))
    finally:
        store.dispose()
    return STATUS_ERROR if result["failed"] else STATUS_OK


def run_similar(config, text: str, threshold: float = 0.7, limit: int = 5) -> int:
    """Print the catalog root causes closest to a failure description."""
    store = open_store(config)
    embedder = SentenceTransformerEmbedder(config.embedding_model)
    try:
        matches = asyncio.run(
            find_similar_root_causes(store, embedder, text, threshold=threshold, limit=limit)
        )
    except EmbeddingError as e:
        logger.error("Cannot embed query: %s", e)
        return STATUS_ERROR
    finally:
        store.dispose()
    if not matches:
        print(f"No root cause at similarity >= {threshold:g} (run 'triagectl embed' first?)")
        return STATUS_OK
    for root_cause, similarity in matches:
        print(f"{similarity:.3f}  #{root_cause.id} [{root_cause.category}] {root_cause.title}")
    return STATUS_OK
