"""Pattern-based root cause detection.

Fast, free, and covers the common failure signatures. Rules are checked
in declaration order and the first match wins, so the order below is the
priority order: a 1.0-confidence rate-limit rule is always tried before
the 0.5-confidence exit-code fallback, wherever the text appears.
"""

import re
from dataclasses import dataclass

GENERIC_FAILURE = "generic_failure"

MATCH_CONTEXT_CHARS = 50


@dataclass(frozen=True)
class PatternRule:
    id: int
    category: str
    title: str
    pattern: re.Pattern
    confidence: float
    description: str
    suggested_fix: str


@dataclass(frozen=True)
class PatternMatch:
    rule_id: int
    category: str
    title: str
    description: str
    suggested_fix: str
    confidence: float
    matched_text: str | None = None

    @property
    def is_generic(self) -> bool:
        """A generic match is informative enough to record, not to stop on."""
        return self.category == GENERIC_FAILURE


def _rule(id, category, title, pattern, confidence, description, fix):
    return PatternRule(
        id=id,
        category=category,
        title=title,
        pattern=re.compile(pattern, re.IGNORECASE),
        confidence=confidence,
        description=description,
        suggested_fix=fix,
    )


PATTERNS: tuple[PatternRule, ...] = (
    _rule(
        1, "rate_limit", "GitHub API Rate Limit Exceeded",
        r"API rate limit exceeded", 1.0,
        "The GitHub Actions workflow hit API rate limits.",
        "Wait for the rate limit to reset (usually 1 hour) or use a different "
        "GitHub token with higher limits.",
    ),
    _rule(
        2, "dependency_missing", "Docker Image Not Found",
        r"(artifact.*not found|Error.*unknown.*artifact|image.*not found)", 0.95,
        "A required Docker image or artifact could not be found in the registry.",
        "Verify the Docker image name and tag. Check repository access "
        "permissions and ensure the image was published successfully.",
    ),
    _rule(
        3, "network_timeout", "Network Timeout or Connection Refused",
        r"(timeout|timed out|connection.*refused|ETIMEDOUT|ECONNREFUSED)", 0.9,
        "Network operation timed out or connection was refused.",
        "Retry the job. If persistent, check network connectivity and service "
        "availability.",
    ),
    _rule(
        4, "dependency_missing", "NPM Install Failed",
        r"(npm ERR!|Failed to install dependencies|npm.*ERESOLVE)", 0.9,
        "NPM package installation failed.",
        "Check package.json for errors, verify npm registry availability, and "
        "ensure compatible package versions.",
    ),
    _rule(
        5, "resource_limit", "Out of Memory",
        r"(OOM|out of memory|heap.*out of memory|JavaScript heap out of memory)", 0.95,
        "The process ran out of available memory.",
        "Increase memory allocation for the job or optimize memory usage in "
        "the application.",
    ),
    _rule(
        6, "test_failure", "Test Failure",
        r"(tests? failed|assertion.*failed|expected.*but (got|was|received))", 0.85,
        "One or more tests failed.",
        "Review the test output to identify which tests failed and why. Check "
        "for code changes that might have broken the tests.",
    ),
    _rule(
        7, "authentication_error", "Authentication Failed",
        r"(authentication.*failed|unauthorized|401|403|permission denied|access denied)", 0.9,
        "Authentication or authorization failed.",
        "Verify credentials, tokens, or API keys. Check permissions for the "
        "resource being accessed.",
    ),
    _rule(
        8, "build_error", "Compilation or Build Error",
        r"(compilation failed|build failed|syntax error|cannot find module)", 0.85,
        "Code compilation or build process failed.",
        "Check the error details for syntax errors, missing dependencies, or "
        "configuration issues.",
    ),
    _rule(
        9, "deployment_error", "Deployment Failed",
        r"(deployment failed|deploy.*error|rollback|failed to publish)", 0.85,
        "Deployment process failed.",
        "Check deployment logs for specific errors. Verify target environment "
        "is accessible and healthy.",
    ),
    _rule(
        10, GENERIC_FAILURE, "Process Exited with Error Code",
        r"Process completed with exit code [1-9]", 0.5,
        "Process terminated with a non-zero exit code.",
        "Review the full logs to determine the specific cause of failure.",
    ),
)


def combine_evidence(annotations: list[dict], steps: list[dict]) -> str:
    """Join annotation messages/titles and step names into one blob.

    Annotations come first, then steps, each in input order.
    """
    parts = []
    for annotation in annotations:
        if annotation.get("message"):
            parts.append(annotation["message"])
        if annotation.get("title"):
            parts.append(annotation["title"])
    for step in steps:
        if step.get("name"):
            parts.append(step["name"])
    return "\n".join(parts)


def extract_match(text: str, pattern: re.Pattern) -> str | None:
    """Return the matched region with some surrounding context."""
    m = pattern.search(text)
    if not m:
        return None
    start = max(0, m.start() - MATCH_CONTEXT_CHARS)
    end = min(len(text), m.end() + MATCH_CONTEXT_CHARS)
    return "..." + text[start:end] + "..."


def match_pattern(
    annotations: list[dict],
    steps: list[dict],
    rules: tuple[PatternRule, ...] = PATTERNS,
) -> PatternMatch | None:
    """Return the first rule matching the combined evidence, or None."""
    text = combine_evidence(annotations, steps)
    for rule in rules:
        if rule.pattern.search(text):
            return PatternMatch(
                rule_id=rule.id,
                category=rule.category,
                title=rule.title,
                description=rule.description,
                suggested_fix=rule.suggested_fix,
                confidence=rule.confidence,
                matched_text=extract_match(text, rule.pattern),
            )
    return None


class PatternMatcher:
    """Stateless rule engine over an ordered rule list."""

    def __init__(self, rules: tuple[PatternRule, ...] = PATTERNS):
        self.rules = tuple(rules)

    def match(self, annotations: list[dict], steps: list[dict]) -> PatternMatch | None:
        return match_pattern(annotations, steps, self.rules)

    def get_rule(self, rule_id: int) -> PatternRule | None:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None
