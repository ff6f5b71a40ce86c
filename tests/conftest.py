"""Shared fixtures: small schemas, scripted model invokers."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from sqlinsight.gateway.types import InvokeOptions
from sqlinsight.parsing.schema import DimensionSchema, FieldSpec, FieldType


def chat_response(content: str | None) -> dict[str, Any]:
    """An OpenAI-style chat-completions envelope."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "model": "gpt-4o-mini",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20},
    }


class ScriptedInvoker:
    """Async invoker returning canned responses, optionally after a delay.

    ``responses`` is either one response used for every call or a list
    consumed in order (the last one repeats).
    """

    def __init__(self, responses: Any, delay: float = 0.0):
        self.responses = responses
        self.delay = delay
        self.calls: list[tuple[list[dict[str, str]], InvokeOptions]] = []

    async def __call__(self, messages: list[dict[str, str]], options: InvokeOptions) -> Any:
        self.calls.append((messages, options))
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.responses, list):
            index = min(len(self.calls) - 1, len(self.responses) - 1)
            response = self.responses[index]
        else:
            response = self.responses
        if isinstance(response, Exception):
            raise response
        return response


def analysis_json(score: float = 80, **extra: Any) -> str:
    payload = {"score": score, "confidence": 0.9, "summary": "ok", "recommendations": []}
    payload.update(extra)
    return json.dumps(payload)


@pytest.fixture
def score_schema() -> DimensionSchema:
    return DimensionSchema(
        name="scored",
        fields=(
            FieldSpec("score", FieldType.NUMBER, 0),
            FieldSpec("issues", FieldType.ARRAY),
        ),
    )


@pytest.fixture
def score_only_schema() -> DimensionSchema:
    return DimensionSchema(name="score_only", fields=(FieldSpec("score", FieldType.NUMBER, 0),))
