"""Claude backend via the Claude Agent SDK.

Single turn, no tools: the model only reads the conversation and answers.
"""

import logging

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKError,
    ResultMessage,
    TextBlock,
    query,
)

from triagectl.llm.base import LLMOracle, OracleError, OracleResponse, TokenUsage

logger = logging.getLogger(__name__)


def split_conversation(messages: list[dict]) -> tuple[str, str]:
    """Return (system prompt, prompt) for a single-shot SDK query."""
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    turns = [m for m in messages if m["role"] != "system"]
    if len(turns) == 1:
        return system, turns[0]["content"]
    prompt = "\n\n".join(f"[{m['role']}]\n{m['content']}" for m in turns)
    return system, prompt


class ClaudeOracle(LLMOracle):
    provider = "claude"

    def __init__(self, model: str = "sonnet", max_tokens: int = 1000, temperature: float = 0.1):
        super().__init__(model, max_tokens, temperature)

    async def _send(self, messages: list[dict]) -> OracleResponse:
        system, prompt = split_conversation(messages)
        options = ClaudeAgentOptions(
            model=self.model,
            system_prompt=system,
            allowed_tools=[],
            max_turns=1,
        )
        texts: list[str] = []
        usage: dict = {}
        try:
            async for message in query(prompt=prompt, options=options):
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            texts.append(block.text)
                elif isinstance(message, ResultMessage):
                    usage = message.usage or {}
                    if message.is_error:
                        raise OracleError(f"Claude returned an error result: {message.result}")
        except ClaudeSDKError as e:
            raise OracleError(f"Claude request failed: {e}") from e

        content = "".join(texts).strip()
        if not content:
            raise OracleError("Claude returned no text")
        logger.debug("Claude answered with %d chars", len(content))
        return OracleResponse(
            content=content,
            model=self.model,
            provider=self.provider,
            tokens=TokenUsage(
                input=int(usage.get("input_tokens", 0) or 0),
                output=int(usage.get("output_tokens", 0) or 0),
            ),
        )
