"""Tests for triagectl.logfiles and triagectl.runlog."""

from collections import Counter

from triagectl.logfiles import job_log_path, tail_lines, write_log
from triagectl.runlog import RESET, RUN_COLORS, run_color, run_prefix, status_summary

# ---------------------------------------------------------------------------
# Log files
# ---------------------------------------------------------------------------

class TestTailLines:
    def test_last_lines(self, tmp_path):
        path = write_log(str(tmp_path), 7, "\n".join(f"line {i}" for i in range(10)) + "\n")
        assert tail_lines(path, 3) == "line 7\nline 8\nline 9"

    def test_more_than_available(self, tmp_path):
        path = write_log(str(tmp_path), 7, "only\n")
        assert tail_lines(path, 50) == "only"

    def test_missing_file(self, tmp_path):
        assert tail_lines(str(tmp_path / "nope.log"), 10) == ""

    def test_zero_lines(self, tmp_path):
        path = write_log(str(tmp_path), 7, "a\nb\n")
        assert tail_lines(path, 0) == ""

    def test_undecodable_bytes(self, tmp_path):
        path = tmp_path / "7-job.log"
        path.write_bytes(b"ok\n\xff\xfe broken\n")
        assert tail_lines(str(path), 1).endswith("broken")


class TestWriteLog:
    def test_creates_directory(self, tmp_path):
        logs_dir = str(tmp_path / "deep" / "files")
        path = write_log(logs_dir, 42, "text")
        assert path == job_log_path(logs_dir, 42)
        assert path.endswith("42-job.log")
        with open(path) as f:
            assert f.read() == "text"


# ---------------------------------------------------------------------------
# Run log formatting
# ---------------------------------------------------------------------------

class TestRunLog:
    def test_color_is_stable(self):
        assert run_color(12345) == run_color("12345")
        assert run_color(12345) in RUN_COLORS

    def test_prefix(self):
        prefix = run_prefix(7)
        assert prefix.startswith("\033[")
        assert prefix.endswith("[run 7]")
        assert RESET == "\033[0m"

    def test_status_summary(self):
        counts = Counter({"pattern_success": 3, "llm_success": 1})
        assert status_summary(counts) == "pattern_success=3, llm_success=1"

    def test_status_summary_empty(self):
        assert status_summary(Counter()) == "no jobs"
