"""Typed parsing of LLM analysis answers.

The model must answer with a JSON object tagged by "type": either a
root cause or a request for more log lines. Anything else becomes a
MalformedAnswer carrying the reason, so callers branch on the variant
instead of probing fields.
"""

import json
import re
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class LogRequest(BaseModel):
    more_lines: int = Field(default=100, ge=1)
    direction: Literal["before", "after", "both"] = "before"


class RootCauseAnswer(BaseModel):
    type: Literal["root_cause"]
    category: str = "unknown"
    title: str = "LLM Root Cause"
    description: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    suggested_fix: str = ""
    reasoning: str = ""


class NeedMoreInfoAnswer(BaseModel):
    type: Literal["need_more_info"]
    reason: str = ""
    request: LogRequest = Field(default_factory=LogRequest)


class MalformedAnswer(BaseModel):
    type: Literal["malformed"] = "malformed"
    error: str
    raw: str = ""


AnalysisAnswer = Annotated[
    RootCauseAnswer | NeedMoreInfoAnswer,
    Field(discriminator="type"),
]

_answer_adapter = TypeAdapter(AnalysisAnswer)


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def parse_answer(content: str) -> RootCauseAnswer | NeedMoreInfoAnswer | MalformedAnswer:
    """Validate raw oracle text into one of the answer variants."""
    text = strip_code_fences(content or "")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        return MalformedAnswer(error=f"Invalid JSON: {e.msg}", raw=content or "")
    if not isinstance(data, dict):
        return MalformedAnswer(error="Response is not a JSON object", raw=content)
    try:
        return _answer_adapter.validate_python(data)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ())) or "response"
        return MalformedAnswer(error=f"{where}: {first.get('msg')}", raw=content)
