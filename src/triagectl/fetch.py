#!/usr/bin/env python3
"""Select the failed GitHub Actions runs an analysis pass walks.

Combines workflow/branch filters (from flags or the config file) with a
look-back window.
"""

import logging
from datetime import UTC, datetime, timedelta

from triagectl.github import search_failed_runs

logger = logging.getLogger(__name__)

STATUS_OK = 0
STATUS_ERROR = 1

DEFAULT_RUN_LIMIT = 200
WORKFLOW_SUFFIXES = (".yml", ".yaml")


def lookback_cutoff(days: int, now: datetime | None = None) -> datetime:
    """Midnight UTC of the day `days` before now."""
    start = (now or datetime.now(UTC)) - timedelta(days=days)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def _created_at(run: dict) -> datetime:
    return datetime.fromisoformat(run["created_at"].replace("Z", "+00:00"))


def runs_since(runs: list[dict], cutoff: datetime) -> list[dict]:
    """Runs created at or after cutoff, order preserved."""
    return [run for run in runs if _created_at(run) >= cutoff]


def parse_filter(value: str) -> list[str] | None:
    """'*' means no filter; otherwise a comma-separated list."""
    if value.strip() == "*":
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


def check_workflow_files(workflows: list[str] | None) -> None:
    """Workflow filters are matched by file name, so they must be YAML names."""
    bad = [wf for wf in workflows or [] if not wf.endswith(WORKFLOW_SUFFIXES)]
    if bad:
        raise ValueError(
            "Workflow filters must be YAML filenames ending in .yml or .yaml: " + ", ".join(bad)
        )


def filters_from_config(config) -> tuple[list[str] | None, list[str] | None]:
    """Workflow files and branches named by the enabled configured workflows."""
    enabled = config.enabled_workflows()
    if not enabled:
        return None, None
    workflows = sorted({wf.workflow_file for wf in enabled})
    branches = sorted({wf.branch for wf in enabled if wf.branch})
    return workflows, branches or None


def collect_failed_runs(
    repo: str,
    lookback_days: int = 7,
    workflows: list[str] | None = None,
    branches: list[str] | None = None,
    limit: int = DEFAULT_RUN_LIMIT,
) -> list[dict]:
    """Failed runs inside the look-back window, newest first."""
    check_workflow_files(workflows)
    cutoff = lookback_cutoff(lookback_days)
    logger.info(
        "Fetching failed runs from %s since %s (last %d days)...",
        repo, cutoff.date().isoformat(), lookback_days,
    )
    runs = search_failed_runs(repo, limit, workflows, branches)
    recent = runs_since(runs, cutoff)
    logger.info("Found %d failed run(s) in range (%d total)", len(recent), len(runs))
    return recent
