"""Provider-agnostic LLM oracle contract.

An oracle takes a list of {role, content} messages and returns text plus
token usage. Transport problems surface as OracleError, never as content.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

ROLES = ("system", "user", "assistant")


class OracleError(Exception):
    """The backend could not be reached or returned an error."""


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output


@dataclass(frozen=True)
class OracleResponse:
    content: str
    model: str
    provider: str
    tokens: TokenUsage = field(default_factory=TokenUsage)


def validate_messages(messages: list[dict]) -> None:
    if not isinstance(messages, list) or not messages:
        raise ValueError("Messages must be a non-empty list")
    for i, message in enumerate(messages):
        if not isinstance(message, dict):
            raise ValueError(f"Message {i} must be a dict")
        if message.get("role") not in ROLES:
            raise ValueError(f"Message {i} has invalid role: {message.get('role')!r}")
        if not isinstance(message.get("content"), str) or not message["content"]:
            raise ValueError(f"Message {i} has no content")


def estimate_tokens(chars: int) -> int:
    """Rough token count (4 characters per token) for backends that report none."""
    return -(-chars // 4)


class LLMOracle(ABC):
    provider: str = "unknown"

    def __init__(self, model: str, max_tokens: int = 1000, temperature: float = 0.1):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def send(self, messages: list[dict]) -> OracleResponse:
        validate_messages(messages)
        return await self._send(messages)

    @abstractmethod
    async def _send(self, messages: list[dict]) -> OracleResponse:
        ...
