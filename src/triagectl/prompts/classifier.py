"""Root-cause analysis prompt.

Defines ANALYSIS_RULES (the system turn: categories and the JSON answer
contract) and build_messages(), which renders one failed job into the
provider-agnostic [system, user] conversation.
"""

import json

CATEGORIES = (
    "build",
    "test",
    "deployment",
    "dependency",
    "infrastructure",
    "authentication",
    "timeout",
    "resource",
    "unknown",
)

ANALYSIS_RULES = """\
You are a CI failure analyst.

You are given the evidence for ONE failed GitHub Actions job: its error
annotations, the steps that failed, and an excerpt of the job log. Decide
what caused the failure and how to fix it.

## Categories

Use exactly one of: {categories}.

## Answer format

Respond with a single JSON object and nothing else. No markdown, no prose.

If the evidence is enough to name a root cause:

```
{{
  "type": "root_cause",
  "category": "<one of the categories>",
  "title": "<short, reusable name for this failure class>",
  "description": "<what happened, 1-3 sentences>",
  "confidence": <number between 0 and 1>,
  "suggested_fix": "<concrete next step>",
  "reasoning": "<which evidence points here>"
}}
```

If you cannot tell from the excerpt and more log lines would help:

```
{{
  "type": "need_more_info",
  "reason": "<what is missing>",
  "request": {{"more_lines": <int>, "direction": "before" | "after" | "both"}}
}}
```

## Rules

- Titles name a failure CLASS, not this instance: no run ids, job ids,
  timestamps or commit hashes. Two jobs failing the same way must get the
  same title.
- Confidence reflects the evidence. Below 0.8 means you are guessing.
- A "similar past failure" hint may be attached. It comes from an
  embedding search and can be wrong. Use it only if the evidence agrees.
- Ask for more lines only when the excerpt cuts off before the failure.
""".format(categories=", ".join(CATEGORIES))


def simplify_annotations(annotations: list[dict]) -> list[dict]:
    """Keep message/title/path/line range; drop raw payloads."""
    simplified = []
    for a in annotations:
        item = {
            "message": a.get("message") or "",
            "title": a.get("title") or "",
        }
        if a.get("path"):
            item["path"] = a["path"]
        if a.get("start_line") is not None:
            item["start_line"] = a["start_line"]
            item["end_line"] = a.get("end_line") or a["start_line"]
        simplified.append(item)
    return simplified


def simplify_steps(steps: list[dict]) -> list[dict]:
    return [
        {
            "name": s.get("name", ""),
            "status": s.get("status") or "",
            "conclusion": s.get("conclusion") or "",
        }
        for s in steps
    ]


def build_messages(
    *,
    job_id: int,
    job_name: str,
    workflow_name: str,
    repository: str,
    annotations: list[dict],
    steps: list[dict],
    log_excerpt: str = "",
    log_line_count: int = 0,
    hint: dict | None = None,
    previous_request: dict | None = None,
) -> list[dict]:
    """Render the [system, user] turns for one job."""
    sections = [
        f"Repository: {repository or '(unknown)'}",
        f"Workflow: {workflow_name or '(unknown)'}",
        f"Job: {job_name or '(unknown)'} (id {job_id})",
        "Error annotations:\n"
        + (json.dumps(simplify_annotations(annotations), indent=2) if annotations else "(none)"),
        "Failed steps:\n"
        + (json.dumps(simplify_steps(steps), indent=2) if steps else "(none)"),
    ]

    if log_excerpt and log_excerpt.strip():
        sections.append(f"Log excerpt (last {log_line_count} lines):\n{log_excerpt.rstrip()}")
    else:
        sections.append("Log excerpt: (not available)")

    if hint:
        sections.append(
            "Similar past failure (hint, may be wrong): "
            f"\"{hint['title']}\" [{hint['category']}], "
            f"similarity {hint['similarity']:.2f}, reused {hint['reuse_count']} time(s)."
        )

    if previous_request:
        sections.append(
            "Follow-up: you asked for "
            f"{previous_request.get('more_lines')} more line(s) "
            f"({previous_request.get('direction')}) because: "
            f"{previous_request.get('reason') or 'no reason given'}. "
            "The excerpt above has been expanded accordingly."
        )

    return [
        {"role": "system", "content": ANALYSIS_RULES},
        {"role": "user", "content": "\n\n".join(sections)},
    ]
