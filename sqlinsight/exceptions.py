"""Exception types raised by sqlinsight.

Request-path failures are converted into result values (``ParseResult``,
``ToolResult``, ``OrchestrationResult``); these exceptions cover invokers,
configuration mistakes and the opt-in fatal check on orchestration results.
"""


class SqlInsightError(Exception):
    """Base class for all sqlinsight errors."""


class ModelInvocationError(SqlInsightError):
    """Raised by a model invoker when the model call cannot produce a response."""

    def __init__(self, message: str, status_code: int = 0, error_code: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class SchemaDefinitionError(SqlInsightError):
    """Raised when a declarative schema mapping is malformed."""


class NoDimensionsEnabledError(SqlInsightError):
    """Raised when an analysis was requested with every dimension disabled."""
