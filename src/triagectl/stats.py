"""Detection statistics and efficiency metrics.

Every figure is taken from the newest detection row per job, so a job
first marked need_more_info and later resolved by the LLM counts once,
as resolved. Token spend is the exception: it sums every row, because
every call was paid for.
"""

import json
import logging
from collections import Counter

import sqlalchemy as sa

from triagectl.models import Job, JobRootCause, RootCause, WorkflowRun
from triagectl.semantic_cache import SemanticCache

logger = logging.getLogger(__name__)

NO_LLM_METHODS = ("pattern", "prompt_cache_exact", "prompt_semantic_search")
TOP_ROOT_CAUSES = 10
UNMATCHED_JOBS = 10


def _ratio(part: int, whole: int) -> float:
    return round(part / whole, 3) if whole else 0.0


def _failed_jobs(session, repository: str | None) -> list[tuple[Job, WorkflowRun]]:
    query = (
        sa.select(Job, WorkflowRun)
        .join(WorkflowRun, WorkflowRun.id == Job.run_id)
        .where(Job.conclusion == "failure")
        .order_by(Job.id)
    )
    if repository:
        query = query.where(WorkflowRun.repository == repository)
    return list(session.execute(query).all())


def _latest_links(session, job_ids: list[int]) -> dict[int, JobRootCause]:
    if not job_ids:
        return {}
    newest = (
        sa.select(sa.func.max(JobRootCause.id))
        .where(JobRootCause.job_id.in_(job_ids))
        .group_by(JobRootCause.job_id)
    )
    rows = session.scalars(sa.select(JobRootCause).where(JobRootCause.id.in_(newest)))
    return {link.job_id: link for link in rows}


def _total_tokens(session, job_ids: list[int]) -> int:
    if not job_ids:
        return 0
    total = session.scalar(
        sa.select(sa.func.coalesce(sa.func.sum(JobRootCause.llm_tokens_used), 0))
        .where(JobRootCause.job_id.in_(job_ids))
    )
    return int(total or 0)


def _top_root_causes(session, limit: int) -> list[dict]:
    rows = session.scalars(
        sa.select(RootCause)
        .where(RootCause.occurrence_count > 0)
        .order_by(RootCause.occurrence_count.desc(), RootCause.id)
        .limit(limit)
    )
    return [
        {
            "id": rc.id,
            "category": rc.category,
            "title": rc.title,
            "occurrences": rc.occurrence_count,
            "discovery_method": rc.discovery_method,
        }
        for rc in rows
    ]


def collect_stats(store, repository: str | None = None) -> dict:
    with store.session() as session:
        jobs = _failed_jobs(session, repository)
        job_ids = [job.id for job, _ in jobs]
        latest = _latest_links(session, job_ids)

        by_method: Counter = Counter()
        resolved = []
        unmatched = []
        for job, run in jobs:
            link = latest.get(job.id)
            if link is not None:
                by_method[link.detection_method] += 1
            if link is not None and link.root_cause_id is not None:
                resolved.append((job, link))
            else:
                unmatched.append({
                    "job_id": job.id,
                    "job_name": job.name,
                    "run_id": run.id,
                    "workflow_name": run.workflow_name,
                    "url": job.html_url,
                    "last_method": link.detection_method if link else None,
                })

        without_logs = sum(1 for job, _ in resolved if not job.logs_accessible)
        without_llm = sum(1 for _, link in resolved if link.detection_method in NO_LLM_METHODS)
        confidences = [link.confidence for _, link in resolved]

        stats = {
            "repository": repository,
            "failed_jobs": len(jobs),
            "jobs_with_root_cause": len(resolved),
            "jobs_without_root_cause": len(unmatched),
            "match_rate": _ratio(len(resolved), len(jobs)),
            "by_method": dict(sorted(by_method.items())),
            "avg_confidence": (
                round(sum(confidences) / len(confidences), 3) if confidences else None
            ),
            "total_llm_tokens": _total_tokens(session, job_ids),
            "resolved_without_logs": without_logs,
            "resolved_without_logs_rate": _ratio(without_logs, len(resolved)),
            "resolved_without_llm": without_llm,
            "resolved_without_llm_rate": _ratio(without_llm, len(resolved)),
            "top_root_causes": _top_root_causes(session, TOP_ROOT_CAUSES),
            "unmatched_jobs": unmatched[-UNMATCHED_JOBS:][::-1],
        }
    stats["prompt_cache"] = SemanticCache(store).summarize()
    return stats


async def detection_stats(store, repository: str | None = None) -> dict:
    return await store.run(collect_stats, store, repository)


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def format_report(stats: dict) -> str:
    """Plain-text report for the terminal."""
    lines = [
        f"Root cause detection{' for ' + stats['repository'] if stats.get('repository') else ''}",
        "",
        f"  Failed jobs:            {stats['failed_jobs']}",
        f"  With root cause:        {stats['jobs_with_root_cause']} ({_pct(stats['match_rate'])})",
        f"  Without root cause:     {stats['jobs_without_root_cause']}",
    ]
    if stats["avg_confidence"] is not None:
        lines.append(f"  Average confidence:     {stats['avg_confidence']:.2f}")
    lines += [
        f"  LLM tokens spent:       {stats['total_llm_tokens']}",
        f"  Resolved without logs:  {stats['resolved_without_logs']}"
        f" ({_pct(stats['resolved_without_logs_rate'])})",
        f"  Resolved without LLM:   {stats['resolved_without_llm']}"
        f" ({_pct(stats['resolved_without_llm_rate'])})",
    ]

    if stats["by_method"]:
        lines += ["", "By detection method:"]
        for method, count in sorted(stats["by_method"].items(), key=lambda kv: -kv[1]):
            lines.append(f"  {method:<24} {count}")

    if stats["top_root_causes"]:
        lines += ["", "Top root causes:"]
        for rc in stats["top_root_causes"]:
            lines.append(f"  {rc['occurrences']:>4}x  [{rc['category']}] {rc['title']}")

    if stats["unmatched_jobs"]:
        lines += ["", "Recent unexplained jobs:"]
        for job in stats["unmatched_jobs"]:
            lines.append(
                f"  job {job['job_id']} {job['job_name']}"
                f" (run {job['run_id']}, last: {job['last_method'] or 'never analysed'})"
            )

    cache = stats["prompt_cache"]
    lines += [
        "",
        "Prompt cache:",
        f"  Contexts:               {cache['total_prompts']}",
        f"  With results:           {cache['prompts_with_results']}",
        f"  Reused contexts:        {cache['reused_prompts']} ({cache['total_reuses']} reuses)",
    ]
    return "\n".join(lines)


def write_report_json(stats: dict, path: str) -> None:
    with open(path, "w") as f:
        json.dump(stats, f, indent=2)
    logger.info("Wrote %s", path)


def run(store, repository: str | None = None, output_json: str | None = None) -> int:
    """Print the report, optionally also writing it as JSON."""
    stats = collect_stats(store, repository)
    print(format_report(stats))
    if output_json:
        write_report_json(stats, output_json)
    return 0
