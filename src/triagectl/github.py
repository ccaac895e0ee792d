"""GitHub Actions access through PyGithub, plus the evidence source built on it.

The module-level functions return plain dicts so the store and the
classifier never touch PyGithub objects. GitHubEvidenceSource runs them
in worker threads: annotations and steps come from the API, log excerpts
from local files, and full logs are downloaded only when asked for.
"""

import asyncio
import functools
import itertools
import logging
import os

import requests
from github import Github, GithubException

from triagectl.evidence import EvidenceSource
from triagectl.logfiles import job_log_path, tail_lines, write_log

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
API_URL = "https://api.github.com"
LOG_DOWNLOAD_TIMEOUT = 120
RATE_LIMIT_FLOOR = 50


@functools.lru_cache(maxsize=1)
def get_client() -> Github:
    """One client per process; the token cannot change mid-run."""
    return Github(_get_token())


def _get_token() -> str:
    token = os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")
    if not token:
        raise RuntimeError(
            "GitHub token not found. Set GITHUB_TOKEN or GH_TOKEN environment variable."
        )
    return token


def _validate_repo(repo_slug: str) -> None:
    if not repo_slug or repo_slug.count("/") != 1:
        raise ValueError(f"Invalid repo format: '{repo_slug}'. Expected 'owner/name'.")


def _repo(repo_slug: str):
    _validate_repo(repo_slug)
    return get_client().get_repo(repo_slug)


def _timestamp(value) -> str:
    return value.strftime(TIMESTAMP_FORMAT) if value else ""


def run_to_dict(run) -> dict:
    return {
        "id": run.id,
        "url": run.html_url,
        "name": run.name,
        "path": run.path,
        "run_number": run.run_number,
        "head_branch": run.head_branch,
        "event": run.event,
        "head_sha": run.head_sha,
        "conclusion": run.conclusion,
        "created_at": _timestamp(run.created_at),
        "run_attempt": run.run_attempt,
    }


def job_to_dict(job) -> dict:
    return {
        "id": job.id,
        "name": job.name,
        "url": job.html_url,
        "conclusion": job.conclusion,
        "steps": [
            {"name": s.name, "status": s.status, "conclusion": s.conclusion, "number": s.number}
            for s in job.steps
        ],
        "completed_at": _timestamp(job.completed_at),
    }


def annotation_fields(annotation) -> dict:
    return {
        "annotation_level": annotation.annotation_level,
        "message": annotation.message,
        "title": annotation.title,
        "path": annotation.path,
        "start_line": annotation.start_line,
        "end_line": annotation.end_line,
        "raw_details": annotation.raw_details,
    }


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

def list_failed_runs(
    repo_slug: str,
    limit: int,
    workflow: str | None = None,
    branch: str | None = None,
) -> list[dict]:
    """Up to limit failed runs of one workflow file (or all), optionally on one branch."""
    repo = _repo(repo_slug)
    filters = {"status": "failure"}
    if branch:
        filters["branch"] = branch
    if workflow:
        if not workflow.endswith((".yml", ".yaml")):
            raise ValueError(f"Workflow must be a filename ending in .yml or .yaml: '{workflow}'")
        runs = repo.get_workflow(workflow).get_runs(**filters)
    else:
        runs = repo.get_workflow_runs(**filters)
    return [run_to_dict(run) for run in itertools.islice(runs, limit)]


def warn_if_rate_limited(client: Github) -> None:
    try:
        core = client.get_rate_limit().core
    except GithubException as e:
        logger.debug("Could not read rate limit: %s", e)
        return
    if core.remaining < RATE_LIMIT_FLOOR:
        logger.warning(
            "GitHub API rate limit low: %d/%d remaining, resets at %s",
            core.remaining, core.limit, core.reset,
        )


def search_failed_runs(
    repo_slug: str,
    limit: int,
    workflows: list[str] | None,
    branches: list[str] | None,
) -> list[dict]:
    """Failed runs for every workflow x branch combination, newest first.

    None for either filter means no filtering on it. A run reported by
    several combinations appears once.
    """
    by_id: dict[int, dict] = {}
    for workflow, branch in itertools.product(workflows or [None], branches or [None]):
        try:
            runs = list_failed_runs(repo_slug, limit, workflow, branch)
        except Exception as e:
            raise RuntimeError(
                "GitHub workflow run lookup failed "
                f"(workflow={workflow or '*'}, branch={branch or '*'}): {e}"
            ) from e
        for run in runs:
            by_id.setdefault(run["id"], run)

    warn_if_rate_limited(get_client())
    return sorted(by_id.values(), key=lambda r: r["created_at"], reverse=True)


# ---------------------------------------------------------------------------
# Jobs, annotations, logs
# ---------------------------------------------------------------------------

def list_failed_jobs(repo_slug: str, run_id: int) -> list[dict]:
    jobs = _repo(repo_slug).get_workflow_run(run_id).jobs()
    return [job_to_dict(job) for job in jobs if job.conclusion == "failure"]


def list_job_annotations(repo_slug: str, job_id: int) -> list[dict]:
    """Check-run annotations of a job; a job id doubles as its check-run id."""
    check_run = _repo(repo_slug).get_check_run(job_id)
    return [annotation_fields(a) for a in check_run.get_annotations()]


def download_job_log(repo_slug: str, job_id: int) -> str:
    """Plain-text job log. The API answers with a redirect to blob storage."""
    _validate_repo(repo_slug)
    response = requests.get(
        f"{API_URL}/repos/{repo_slug}/actions/jobs/{job_id}/logs",
        headers={
            "Authorization": f"token {_get_token()}",
            "Accept": "application/vnd.github+json",
        },
        allow_redirects=True,
        timeout=LOG_DOWNLOAD_TIMEOUT,
    )
    response.raise_for_status()
    return response.text


# ---------------------------------------------------------------------------
# Evidence source
# ---------------------------------------------------------------------------

class GitHubEvidenceSource(EvidenceSource):
    def __init__(self, repo_slug: str, logs_dir: str = "./files", download_logs: bool = True):
        _validate_repo(repo_slug)
        self.repo_slug = repo_slug
        self.logs_dir = logs_dir
        self.download_logs = download_logs

    async def fetch_failed_jobs(self, run_id: int) -> list[dict]:
        return await asyncio.to_thread(list_failed_jobs, self.repo_slug, run_id)

    async def fetch_error_annotations(self, job_id: int) -> list[dict]:
        """Failure-level annotations only; warnings and notices are noise here."""
        try:
            annotations = await asyncio.to_thread(list_job_annotations, self.repo_slug, job_id)
        except GithubException as e:
            logger.warning("[job %s] Could not fetch annotations: %s", job_id, e)
            return []
        return [a for a in annotations if a.get("annotation_level") == "failure"]

    async def fetch_failed_steps(self, job: dict) -> list[dict]:
        return [s for s in job.get("steps", []) if s.get("conclusion") == "failure"]

    async def fetch_log_excerpt(self, job_id: int, line_count: int) -> str:
        return await asyncio.to_thread(
            tail_lines, job_log_path(self.logs_dir, job_id), line_count,
        )

    async def fetch_full_log(self, job_id: int) -> str | None:
        path = job_log_path(self.logs_dir, job_id)
        if os.path.isfile(path):
            return path
        if not self.download_logs:
            logger.info("[job %s] Log download disabled, no local log", job_id)
            return None
        try:
            text = await asyncio.to_thread(download_job_log, self.repo_slug, job_id)
        except requests.RequestException as e:
            logger.warning("[job %s] Log download failed: %s", job_id, e)
            return None
        path = await asyncio.to_thread(write_log, self.logs_dir, job_id, text)
        logger.info("[job %s] Downloaded log to %s", job_id, path)
        return path
