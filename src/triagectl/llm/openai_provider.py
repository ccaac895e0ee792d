"""OpenAI-compatible chat-completions backend over aiohttp."""

import os

import aiohttp

from triagectl.llm.base import LLMOracle, OracleError, OracleResponse, TokenUsage

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAIOracle(LLMOracle):
    provider = "openai"

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        max_tokens: int = 1000,
        temperature: float = 0.1,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 60,
    ):
        super().__init__(model, max_tokens, temperature)
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OpenAI API key not found. Set OPENAI_API_KEY environment variable.")
        self.base_url = (base_url or os.environ.get("OPENAI_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout

    async def _send(self, messages: list[dict]) -> OracleResponse:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise OracleError(f"OpenAI API error {response.status}: {error_text[:500]}")
                    data = await response.json()
        except aiohttp.ClientError as e:
            raise OracleError(f"OpenAI request failed: {e}") from e

        choices = data.get("choices") or []
        if not choices:
            raise OracleError("OpenAI API returned no choices")
        content = choices[0].get("message", {}).get("content") or ""
        usage = data.get("usage") or {}
        return OracleResponse(
            content=content,
            model=data.get("model", self.model),
            provider=self.provider,
            tokens=TokenUsage(
                input=usage.get("prompt_tokens", 0),
                output=usage.get("completion_tokens", 0),
            ),
        )
