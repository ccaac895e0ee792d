"""Tests for triagectl.fetch -- run selection, filters, validation."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from triagectl.config import Config, WorkflowConfig
from triagectl.fetch import (
    check_workflow_files,
    collect_failed_runs,
    filters_from_config,
    lookback_cutoff,
    parse_filter,
    runs_since,
)

JAN_1 = datetime(2025, 1, 1, tzinfo=UTC)


def _ts(days_ago):
    return (datetime.now(UTC) - timedelta(days=days_ago)).strftime("%Y-%m-%dT%H:%M:%SZ")


# ---------------------------------------------------------------------------
# lookback_cutoff / runs_since
# ---------------------------------------------------------------------------

class TestLookbackCutoff:
    def test_midnight_of_start_day(self):
        now = datetime(2025, 1, 8, 15, 30, tzinfo=UTC)
        assert lookback_cutoff(7, now) == JAN_1

    def test_zero_days_is_today(self):
        now = datetime(2025, 1, 8, 15, 30, tzinfo=UTC)
        assert lookback_cutoff(0, now) == datetime(2025, 1, 8, tzinfo=UTC)


class TestRunsSince:
    def test_empty_list(self):
        assert runs_since([], JAN_1) == []

    def test_all_excluded(self):
        runs = [
            {"created_at": "2024-12-01T10:00:00Z"},
            {"created_at": "2024-12-15T10:00:00Z"},
        ]
        assert runs_since(runs, JAN_1) == []

    def test_boundary_inclusive(self):
        assert len(runs_since([{"created_at": "2025-01-01T00:00:00Z"}], JAN_1)) == 1

    def test_mixed_keeps_order(self):
        runs = [
            {"id": 1, "created_at": "2025-01-05T10:00:00Z"},
            {"id": 2, "created_at": "2024-12-31T23:59:59Z"},
            {"id": 3, "created_at": "2025-01-01T00:00:01Z"},
        ]
        assert [r["id"] for r in runs_since(runs, JAN_1)] == [1, 3]


# ---------------------------------------------------------------------------
# parse_filter / check_workflow_files
# ---------------------------------------------------------------------------

class TestParseFilter:
    def test_wildcard_returns_none(self):
        assert parse_filter("*") is None

    def test_single_value(self):
        assert parse_filter("main") == ["main"]

    def test_multiple_with_spaces(self):
        assert parse_filter("main, develop, feature") == ["main", "develop", "feature"]

    def test_empty_segments_filtered(self):
        assert parse_filter("main,,develop,") == ["main", "develop"]


class TestCheckWorkflowFiles:
    def test_none_passthrough(self):
        check_workflow_files(None)

    def test_valid_names(self):
        check_workflow_files(["ci.yml", "test.yaml"])

    def test_invalid_named_in_error(self):
        with pytest.raises(ValueError, match="must be YAML filenames.*: invalid-name$"):
            check_workflow_files(["ci.yml", "invalid-name"])


# ---------------------------------------------------------------------------
# filters_from_config
# ---------------------------------------------------------------------------

class TestFiltersFromConfig:
    def test_no_workflows(self):
        assert filters_from_config(Config()) == (None, None)

    def test_enabled_workflows_only(self):
        config = Config(workflows=[
            WorkflowConfig("CI", "ci.yml", branch="main"),
            WorkflowConfig("E2E", "e2e.yml", branch="release"),
            WorkflowConfig("Old", "old.yml", enabled=False),
            WorkflowConfig("CI again", "ci.yml", branch="main"),
        ])
        workflows, branches = filters_from_config(config)
        assert workflows == ["ci.yml", "e2e.yml"]
        assert branches == ["main", "release"]

    def test_blank_branch_means_all(self):
        config = Config(workflows=[WorkflowConfig("CI", "ci.yml", branch="")])
        assert filters_from_config(config) == (["ci.yml"], None)


# ---------------------------------------------------------------------------
# collect_failed_runs (mocked)
# ---------------------------------------------------------------------------

class TestCollectFailedRuns:
    @patch("triagectl.fetch.search_failed_runs")
    def test_window_applied(self, mock_search):
        mock_search.return_value = [
            {"id": 1, "created_at": _ts(1)},
            {"id": 2, "created_at": _ts(30)},
        ]
        runs = collect_failed_runs("org/repo", lookback_days=7)
        assert [r["id"] for r in runs] == [1]
        mock_search.assert_called_once_with("org/repo", 200, None, None)

    @patch("triagectl.fetch.search_failed_runs")
    def test_filters_passed_through(self, mock_search):
        mock_search.return_value = []
        collect_failed_runs("org/repo", 3, ["ci.yml"], ["main"], limit=10)
        mock_search.assert_called_once_with("org/repo", 10, ["ci.yml"], ["main"])

    @patch("triagectl.fetch.search_failed_runs")
    def test_invalid_workflow_rejected_before_api(self, mock_search):
        with pytest.raises(ValueError):
            collect_failed_runs("org/repo", workflows=["CI"])
        mock_search.assert_not_called()
