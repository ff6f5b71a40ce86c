"""Types shared between the analysis core and model invokers."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol


@dataclass
class InvokeOptions:
    """Generation settings passed with every model call.

    Analysis calls use low temperature and a bounded token budget so the
    model stays close to the requested JSON structure.
    """

    temperature: float = 0.1
    max_tokens: int = 4000

    def to_dict(self) -> dict[str, Any]:
        return {"temperature": self.temperature, "max_tokens": self.max_tokens}


class ModelInvoker(Protocol):
    """Callable that sends chat messages to a model and returns its raw response.

    The returned value is provider-shaped (an SDK object, a decoded JSON
    envelope, or plain text). Implementations may be coroutine functions or
    plain callables; plain callables are run in a worker thread.
    """

    def __call__(
        self,
        messages: list[dict[str, str]],
        options: InvokeOptions,
    ) -> Awaitable[Any] | Any: ...


def build_messages(system_prompt: str, user_prompt: str) -> list[dict[str, str]]:
    """Build a chat message list from a system/user prompt pair."""
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_prompt})
    return messages


def _is_async_callable(invoker: Any) -> bool:
    return inspect.iscoroutinefunction(invoker) or inspect.iscoroutinefunction(getattr(invoker, "__call__", None))


async def call_invoker(
    invoker: ModelInvoker,
    messages: list[dict[str, str]],
    options: InvokeOptions,
) -> Any:
    """Call an invoker without blocking the event loop.

    Coroutine invokers are awaited directly. Plain callables run in a worker
    thread, so a blocking client neither serialises concurrent dimensions
    nor defeats the caller's timeout; an awaitable they return is awaited.
    Errors propagate to the caller either way.
    """
    if _is_async_callable(invoker):
        return await invoker(messages, options)
    result = await asyncio.to_thread(invoker, messages, options)
    if inspect.isawaitable(result):
        result = await result
    return result
