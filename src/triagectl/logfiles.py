"""Local job log files: <logs_dir>/<job_id>-job.log."""

import os
from collections import deque


def job_log_path(logs_dir: str, job_id: int) -> str:
    return os.path.join(logs_dir, f"{job_id}-job.log")


def tail_lines(path: str, line_count: int) -> str:
    """Return the last line_count lines of a text file ("" if missing)."""
    if line_count <= 0 or not os.path.isfile(path):
        return ""
    with open(path, encoding="utf-8", errors="replace") as f:
        lines = deque(f, maxlen=line_count)
    return "".join(lines).rstrip("\n")


def write_log(logs_dir: str, job_id: int, text: str) -> str:
    os.makedirs(logs_dir, exist_ok=True)
    path = job_log_path(logs_dir, job_id)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path
