"""Tests for the model invocation layer: invoker helpers and the chat-completions client."""

from __future__ import annotations

import json
import threading

import httpx
import pytest

from sqlinsight.core.config import Settings
from sqlinsight.exceptions import ModelInvocationError
from sqlinsight.gateway.client import ChatCompletionsClient
from sqlinsight.gateway.types import InvokeOptions, build_messages, call_invoker

from conftest import chat_response

API_URL = "https://llm.test/v1/chat/completions"


def _client(handler) -> ChatCompletionsClient:
    return ChatCompletionsClient(
        api_key="sk-test",
        model="test-model",
        api_url=API_URL,
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
    )


# ==========================================================================
# Test: invoker helpers
# ==========================================================================


class TestInvokerHelpers:
    def test_build_messages(self):
        assert build_messages("sys", "hi") == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]

    def test_build_messages_without_system(self):
        assert build_messages("", "hi") == [{"role": "user", "content": "hi"}]

    def test_invoke_options_to_dict(self):
        assert InvokeOptions(temperature=0.0, max_tokens=10).to_dict() == {"temperature": 0.0, "max_tokens": 10}

    @pytest.mark.asyncio
    async def test_call_invoker_sync(self):
        def invoker(messages, options):
            return f"{len(messages)}:{options.max_tokens}"

        assert await call_invoker(invoker, build_messages("s", "u"), InvokeOptions(max_tokens=7)) == "2:7"

    @pytest.mark.asyncio
    async def test_call_invoker_runs_sync_invoker_off_loop_thread(self):
        def invoker(messages, options):
            return threading.get_ident()

        assert await call_invoker(invoker, [], InvokeOptions()) != threading.get_ident()

    @pytest.mark.asyncio
    async def test_call_invoker_sync_returning_awaitable(self):
        async def respond():
            return "late"

        assert await call_invoker(lambda messages, options: respond(), [], InvokeOptions()) == "late"

    @pytest.mark.asyncio
    async def test_call_invoker_async(self):
        async def invoker(messages, options):
            return messages[-1]["content"]

        assert await call_invoker(invoker, build_messages("", "u"), InvokeOptions()) == "u"

    @pytest.mark.asyncio
    async def test_call_invoker_sync_error_propagates(self):
        def invoker(messages, options):
            raise ModelInvocationError("boom")

        with pytest.raises(ModelInvocationError):
            await call_invoker(invoker, [], InvokeOptions())


# ==========================================================================
# Test: ChatCompletionsClient (mocked HTTP)
# ==========================================================================


class TestChatCompletionsClient:
    @pytest.mark.asyncio
    async def test_success_returns_envelope(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=chat_response('{"score": 1}'))

        client = _client(handler)
        data = await client(build_messages("sys", "user"), InvokeOptions(temperature=0.2, max_tokens=100))

        assert data["choices"][0]["message"]["content"] == '{"score": 1}'
        assert seen["url"] == API_URL
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "test-model"
        assert seen["body"]["temperature"] == 0.2
        assert seen["body"]["max_tokens"] == 100
        assert seen["body"]["messages"][1] == {"role": "user", "content": "user"}

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        client = _client(lambda request: httpx.Response(429, text="slow down"))
        with pytest.raises(ModelInvocationError) as exc_info:
            await client([], InvokeOptions())
        assert exc_info.value.status_code == 429
        assert exc_info.value.error_code == "429"

    @pytest.mark.asyncio
    async def test_server_error(self):
        client = _client(lambda request: httpx.Response(500, text="Internal Server Error"))
        with pytest.raises(ModelInvocationError) as exc_info:
            await client([], InvokeOptions())
        assert exc_info.value.status_code == 500
        assert "HTTP 500" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ModelInvocationError) as exc_info:
            await _client(handler)([], InvokeOptions())
        assert exc_info.value.error_code == "timeout"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ModelInvocationError) as exc_info:
            await _client(handler)([], InvokeOptions())
        assert exc_info.value.error_code == "transport"

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        client = _client(lambda request: httpx.Response(200, text="<html>gateway</html>"))
        with pytest.raises(ModelInvocationError) as exc_info:
            await client([], InvokeOptions())
        assert exc_info.value.error_code == "decode"

    def test_from_settings(self):
        settings = Settings(llm_api_key="sk-env", llm_model="deepseek-chat", llm_api_url=API_URL, llm_timeout_seconds=12)
        client = ChatCompletionsClient.from_settings(settings)
        assert client.api_key == "sk-env"
        assert client.model == "deepseek-chat"
        assert client.api_url == API_URL
        assert client.timeout_seconds == 12
