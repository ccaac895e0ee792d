"""LLM oracle backends and the provider registry."""

from triagectl.llm.base import (
    LLMOracle,
    OracleError,
    OracleResponse,
    TokenUsage,
    validate_messages,
)
from triagectl.llm.mock import MockOracle

PROVIDERS = ("mock", "claude", "openai")


def create_oracle(llm_config) -> LLMOracle:
    """Build the oracle named by llm_config.provider.

    Raises ValueError for unknown providers or missing credentials.
    """
    provider = llm_config.provider
    kwargs = {
        "max_tokens": llm_config.max_tokens,
        "temperature": llm_config.temperature,
    }
    if llm_config.model:
        kwargs["model"] = llm_config.model

    if provider == "mock":
        return MockOracle(**kwargs)
    if provider == "claude":
        from triagectl.llm.claude import ClaudeOracle
        return ClaudeOracle(**kwargs)
    if provider == "openai":
        from triagectl.llm.openai_provider import OpenAIOracle
        return OpenAIOracle(timeout=llm_config.timeout, **kwargs)
    raise ValueError(
        f"Unknown LLM provider: '{provider}'. Expected one of: {', '.join(PROVIDERS)}"
    )


__all__ = [
    "LLMOracle",
    "MockOracle",
    "OracleError",
    "OracleResponse",
    "PROVIDERS",
    "TokenUsage",
    "create_oracle",
    "validate_messages",
]
