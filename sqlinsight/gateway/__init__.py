"""Model invocation layer.

The analysis core only depends on the ``ModelInvoker`` protocol defined in
``types``; ``client`` ships an httpx-based invoker for OpenAI-compatible
chat-completions endpoints.
"""
