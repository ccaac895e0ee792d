"""Tests for triagectl.llm -- oracle contract, mock backend, provider registry."""

import asyncio
import json
from unittest.mock import patch

import pytest
from claude_agent_sdk import ClaudeSDKError

from triagectl.config import LLMConfig
from triagectl.llm import MockOracle, OracleError, create_oracle
from triagectl.llm.base import estimate_tokens, validate_messages
from triagectl.llm.claude import ClaudeOracle, split_conversation
from triagectl.llm.openai_provider import OpenAIOracle


def _user(content):
    return [{"role": "system", "content": "rules"}, {"role": "user", "content": content}]


# ---------------------------------------------------------------------------
# Message contract
# ---------------------------------------------------------------------------

class TestValidateMessages:
    def test_valid(self):
        validate_messages(_user("hello"))

    def test_empty(self):
        with pytest.raises(ValueError, match="non-empty"):
            validate_messages([])

    def test_bad_role(self):
        with pytest.raises(ValueError, match="invalid role"):
            validate_messages([{"role": "tool", "content": "x"}])

    def test_empty_content(self):
        with pytest.raises(ValueError, match="no content"):
            validate_messages([{"role": "user", "content": ""}])

    def test_not_a_dict(self):
        with pytest.raises(ValueError, match="must be a dict"):
            validate_messages(["hello"])


class TestEstimateTokens:
    @pytest.mark.parametrize("chars,tokens", [(0, 0), (1, 1), (4, 1), (5, 2), (400, 100)])
    def test_rounds_up(self, chars, tokens):
        assert estimate_tokens(chars) == tokens


# ---------------------------------------------------------------------------
# MockOracle
# ---------------------------------------------------------------------------

class TestMockOracle:
    def _answer(self, content):
        oracle = MockOracle()
        response = asyncio.run(oracle.send(_user(content)))
        return oracle, response, json.loads(response.content)

    def test_npm(self):
        _, response, answer = self._answer("npm ERR! code ERESOLVE")
        assert answer["type"] == "root_cause"
        assert answer["title"] == "NPM package installation failed"
        assert answer["confidence"] == 0.9
        assert response.provider == "mock"
        assert response.model == "mock-v1"

    def test_assertion(self):
        _, _, answer = self._answer("assertion failed in worker")
        assert answer["category"] == "test"
        assert answer["confidence"] == 0.85

    def test_unclear(self):
        _, _, answer = self._answer("the error is unclear")
        assert answer["type"] == "need_more_info"
        assert answer["request"] == {"more_lines": 50, "direction": "before"}

    def test_fallback_below_default_threshold(self):
        _, _, answer = self._answer("segfault in worker")
        assert answer["category"] == "unknown"
        assert answer["confidence"] == 0.75

    def test_records_calls_and_tokens(self):
        oracle, response, _ = self._answer("segfault in worker")
        assert oracle.call_count == 1
        assert oracle.last_messages[1]["content"] == "segfault in worker"
        assert response.tokens.input == estimate_tokens(len("rules") + len("segfault in worker"))
        assert response.tokens.output > 0

    def test_invalid_messages_rejected(self):
        with pytest.raises(ValueError):
            asyncio.run(MockOracle().send([]))


# ---------------------------------------------------------------------------
# create_oracle
# ---------------------------------------------------------------------------

class TestCreateOracle:
    def test_mock_defaults(self):
        oracle = create_oracle(LLMConfig(provider="mock"))
        assert isinstance(oracle, MockOracle)
        assert oracle.model == "mock-v1"
        assert oracle.max_tokens == 1000

    def test_model_override(self):
        oracle = create_oracle(LLMConfig(provider="mock", model="mock-v2", temperature=0.5))
        assert oracle.model == "mock-v2"
        assert oracle.temperature == 0.5

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider: 'gemini'"):
            create_oracle(LLMConfig(provider="gemini"))

    def test_claude(self):
        oracle = create_oracle(LLMConfig(provider="claude"))
        assert isinstance(oracle, ClaudeOracle)
        assert oracle.model == "sonnet"

    def test_openai_requires_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            create_oracle(LLMConfig(provider="openai"))

    def test_openai_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:8080/v1/")
        oracle = create_oracle(LLMConfig(provider="openai", timeout=12.5))
        assert isinstance(oracle, OpenAIOracle)
        assert oracle.model == "gpt-4o-mini"
        assert oracle.timeout == 12.5
        assert oracle.base_url == "http://localhost:8080/v1"


# ---------------------------------------------------------------------------
# ClaudeOracle
# ---------------------------------------------------------------------------

class TestSplitConversation:
    def test_single_user_turn(self):
        assert split_conversation(_user("hello")) == ("rules", "hello")

    def test_multiple_turns(self):
        messages = _user("first") + [
            {"role": "assistant", "content": "answer"},
            {"role": "user", "content": "second"},
        ]
        system, prompt = split_conversation(messages)
        assert system == "rules"
        assert prompt == "[user]\nfirst\n\n[assistant]\nanswer\n\n[user]\nsecond"


def _query_raising(error):
    def fake_query(**kwargs):
        async def stream():
            raise error
            yield
        return stream()
    return fake_query


def _query_empty(**kwargs):
    async def stream():
        return
        yield
    return stream()


class TestClaudeOracle:
    def test_sdk_error_becomes_oracle_error(self):
        with patch("triagectl.llm.claude.query", _query_raising(ClaudeSDKError("cli missing"))):
            with pytest.raises(OracleError, match="Claude request failed: cli missing"):
                asyncio.run(ClaudeOracle().send(_user("hello")))

    def test_no_text(self):
        with patch("triagectl.llm.claude.query", _query_empty):
            with pytest.raises(OracleError, match="no text"):
                asyncio.run(ClaudeOracle().send(_user("hello")))
