"""httpx client for OpenAI-compatible chat-completions endpoints.

Returns the decoded JSON envelope untouched; extracting the text is the
response adapter's job, so any compatible provider (OpenAI, DeepSeek,
local gateways) can be plugged in.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from sqlinsight.core.config import Settings
from sqlinsight.exceptions import ModelInvocationError
from sqlinsight.gateway.types import InvokeOptions

logger = logging.getLogger(__name__)


class ChatCompletionsClient:
    """Model invoker backed by a chat-completions HTTP API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        api_url: str = "https://api.openai.com/v1/chat/completions",
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> ChatCompletionsClient:
        return cls(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            api_url=settings.llm_api_url,
            timeout_seconds=settings.llm_timeout_seconds,
        )

    async def __call__(
        self,
        messages: list[dict[str, str]],
        options: InvokeOptions,
    ) -> dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        start = time.monotonic()

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                resp = await client.post(
                    self.api_url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise ModelInvocationError(
                f"Model request timed out after {self.timeout_seconds}s",
                error_code="timeout",
            ) from e
        except httpx.HTTPError as e:
            raise ModelInvocationError(f"Model request failed: {e}", error_code="transport") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)

        if resp.status_code == 429:
            raise ModelInvocationError("Rate limited by model endpoint", status_code=429, error_code="429")
        if resp.status_code >= 400:
            raise ModelInvocationError(
                f"HTTP {resp.status_code}: {resp.text[:500]}",
                status_code=resp.status_code,
                error_code=str(resp.status_code),
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ModelInvocationError("Model endpoint returned a non-JSON body", error_code="decode") from e

        usage = data.get("usage", {}) if isinstance(data, dict) else {}
        logger.debug(
            "Chat completion: model=%s, latency_ms=%d, prompt_tokens=%s, completion_tokens=%s",
            self.model,
            elapsed_ms,
            usage.get("prompt_tokens", 0),
            usage.get("completion_tokens", 0),
        )
        return data
