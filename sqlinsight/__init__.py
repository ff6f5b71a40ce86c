"""sqlinsight: resilient structured-output SQL analysis with language models.

Layers, bottom up:
  - parsing: response adapter, content preprocessor, intelligent parser
  - tools: one model-backed analysis tool per dimension
  - orchestrator: concurrent multi-dimension runs with timeouts and retries
  - gateway: model invocation protocol and an httpx chat-completions client
"""

__version__ = "0.1.0"
