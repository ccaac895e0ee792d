#!/usr/bin/env python3
"""Per-run log formatting with ANSI colors."""

import zlib
from collections import Counter

RUN_COLORS = [
    "\033[91m", "\033[92m", "\033[93m", "\033[94m", "\033[95m", "\033[96m",
    "\033[31m", "\033[32m", "\033[33m", "\033[34m", "\033[35m", "\033[36m",
]
RESET = "\033[0m"


def run_color(run_id) -> str:
    """Return a deterministic ANSI color for a given run ID."""
    return RUN_COLORS[zlib.crc32(str(run_id).encode()) % len(RUN_COLORS)]


def run_prefix(run_id) -> str:
    return f"{run_color(run_id)}[run {run_id}]"


def status_summary(counts: Counter) -> str:
    """One-line 'status=count' summary, most frequent first."""
    if not counts:
        return "no jobs"
    return ", ".join(f"{status}={n}" for status, n in counts.most_common())
