"""Configuration loading.

Settings come from an optional JSON file (camelCase keys), then
environment overrides, then CLI flags applied by the caller. Credentials
are never read from the file.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from triagectl.embeddings import DEFAULT_EMBEDDING_MODEL
from triagectl.store import DEFAULT_DATABASE_URL

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.json"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    """The configuration file is unreadable or has wrong values."""


@dataclass
class LLMConfig:
    enabled: bool = False
    provider: str = "mock"
    model: str = ""
    max_tokens: int = 1000
    temperature: float = 0.1
    timeout: float = 60.0
    confidence_threshold: float = 0.8
    fallback_to_pattern: bool = True


@dataclass
class SemanticSearchConfig:
    enabled: bool = True
    threshold: float = 0.85
    limit: int = 5
    accept_similarity: float = 0.90
    accept_reuse_count: int = 3


@dataclass
class WorkflowConfig:
    name: str
    workflow_file: str
    branch: str = "main"
    fetch_last_runs: int = 50
    enabled: bool = True


@dataclass
class Config:
    repository: str = ""
    database_url: str = DEFAULT_DATABASE_URL
    logs_directory: str = "./files"
    download_logs: bool = True
    initial_log_lines: int = 50
    max_follow_up_attempts: int = 2
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    workflows: list[WorkflowConfig] = field(default_factory=list)
    llm: LLMConfig = field(default_factory=LLMConfig)
    semantic_search: SemanticSearchConfig = field(default_factory=SemanticSearchConfig)

    def enabled_workflows(self) -> list[WorkflowConfig]:
        return [wf for wf in self.workflows if wf.enabled]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _get(data: dict, key: str, default, kind, where: str):
    if key not in data or data[key] is None:
        return default
    value = data[key]
    # bool is an int subclass; keep them apart
    if kind is bool:
        ok = isinstance(value, bool)
    elif kind is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        value = float(value) if ok else value
    elif kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise ConfigError(f"{where}{key}: expected {kind.__name__}, got {value!r}")
    return value


def _fraction(value: float, name: str) -> float:
    if not 0.0 <= value <= 1.0:
        raise ConfigError(f"{name} must be between 0 and 1, got {value}")
    return value


def _parse_llm(data: dict) -> LLMConfig:
    d = LLMConfig()
    w = "llm."
    return LLMConfig(
        enabled=_get(data, "enabled", d.enabled, bool, w),
        provider=_get(data, "provider", d.provider, str, w),
        model=_get(data, "model", d.model, str, w),
        max_tokens=_get(data, "maxTokens", d.max_tokens, int, w),
        temperature=_get(data, "temperature", d.temperature, float, w),
        # milliseconds in the file, seconds in code
        timeout=_get(data, "timeout", d.timeout * 1000, float, w) / 1000,
        confidence_threshold=_fraction(
            _get(data, "confidenceThreshold", d.confidence_threshold, float, w),
            "llm.confidenceThreshold",
        ),
        fallback_to_pattern=_get(data, "fallbackToPattern", d.fallback_to_pattern, bool, w),
    )


def _parse_semantic(data: dict) -> SemanticSearchConfig:
    d = SemanticSearchConfig()
    w = "semanticSearch."
    return SemanticSearchConfig(
        enabled=_get(data, "enabled", d.enabled, bool, w),
        threshold=_fraction(_get(data, "threshold", d.threshold, float, w), "semanticSearch.threshold"),
        limit=_get(data, "limit", d.limit, int, w),
        accept_similarity=_fraction(
            _get(data, "acceptSimilarity", d.accept_similarity, float, w),
            "semanticSearch.acceptSimilarity",
        ),
        accept_reuse_count=_get(data, "acceptReuseCount", d.accept_reuse_count, int, w),
    )


def _parse_workflow(data: dict, index: int) -> WorkflowConfig:
    w = f"workflows[{index}]."
    name = _get(data, "name", None, str, w)
    workflow_file = _get(data, "workflowFileName", None, str, w)
    if not name or not workflow_file:
        raise ConfigError(f"{w[:-1]}: 'name' and 'workflowFileName' are required")
    return WorkflowConfig(
        name=name,
        workflow_file=workflow_file,
        branch=_get(data, "branch", "main", str, w),
        fetch_last_runs=_get(data, "fetchLastRuns", 50, int, w),
        enabled=_get(data, "enabled", True, bool, w),
    )


def parse_config(data: dict) -> Config:
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a JSON object")
    d = Config()
    workflows = data.get("workflows") or []
    if not isinstance(workflows, list):
        raise ConfigError("workflows: expected list")
    llm = data.get("llm") or {}
    semantic = data.get("semanticSearch") or {}
    if not isinstance(llm, dict) or not isinstance(semantic, dict):
        raise ConfigError("llm and semanticSearch must be objects")
    return Config(
        repository=_get(data, "repository", d.repository, str, ""),
        database_url=_get(data, "databaseUrl", d.database_url, str, ""),
        logs_directory=_get(data, "logsDirectory", d.logs_directory, str, ""),
        download_logs=_get(data, "downloadLogs", d.download_logs, bool, ""),
        initial_log_lines=_get(data, "initialLogLines", d.initial_log_lines, int, ""),
        max_follow_up_attempts=_get(data, "maxFollowUpAttempts", d.max_follow_up_attempts, int, ""),
        embedding_model=_get(data, "embeddingModel", d.embedding_model, str, ""),
        workflows=[_parse_workflow(wf, i) for i, wf in enumerate(workflows)],
        llm=_parse_llm(llm),
        semantic_search=_parse_semantic(semantic),
    )


def _env_bool(name: str) -> bool | None:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    value = value.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    logger.warning("Ignoring %s=%r (expected true or false)", name, value)
    return None


def apply_env_overrides(config: Config) -> Config:
    use_llm = _env_bool("USE_LLM_ANALYZER")
    if use_llm is not None:
        config.llm.enabled = use_llm
    db_url = os.environ.get("TRIAGECTL_DATABASE_URL")
    if db_url:
        config.database_url = db_url
    return config


def load_config(path: str | None = None) -> Config:
    """Load config from path (default config.json); missing file means defaults."""
    config_path = Path(path or DEFAULT_CONFIG_PATH)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read {config_path}: {e}") from e
        config = parse_config(data)
        logger.debug("Loaded configuration from %s", config_path)
    else:
        if path:
            raise ConfigError(f"Config file not found: {config_path}")
        config = Config()
    return apply_env_overrides(config)
