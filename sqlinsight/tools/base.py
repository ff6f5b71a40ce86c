"""Analysis tool: one model-backed analysis per dimension.

A tool renders its dimension's prompt, invokes the model, and pushes the
raw response through adapter -> preprocessor -> parser. Whatever goes
wrong inside, ``execute`` returns a complete ``ToolResult`` whose data has
every schema field, so the orchestrator never has to handle exceptions
from a tool.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlinsight.gateway.types import InvokeOptions, ModelInvoker, build_messages, call_invoker
from sqlinsight.parsing.adapter import ResponseAdapter
from sqlinsight.parsing.parser import FALLBACK_CONFIDENCE, IntelligentParser, ParseOptions
from sqlinsight.parsing.preprocessor import ContentPreprocessor
from sqlinsight.parsing.schema import DimensionSchema

logger = logging.getLogger(__name__)

MAX_SUBJECT_LENGTH = 50000


@dataclass
class DimensionParams:
    """Input to a tool: the SQL under analysis and the dialect it targets."""

    subject: str
    variant: str = "generic"
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one dimension's analysis. ``data`` is never None."""

    dimension: str
    success: bool
    data: dict[str, Any]
    confidence: float
    error: str | None = None
    strategy_used: str = ""
    elapsed_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "dimension": self.dimension,
            "success": self.success,
            "data": self.data,
            "confidence": self.confidence,
            "error": self.error,
            "strategy_used": self.strategy_used,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass
class DimensionConfig:
    """Everything that makes one dimension different from another."""

    name: str
    schema: DimensionSchema
    system_template: str
    user_template: str
    description: str = ""
    temperature: float = 0.1
    max_tokens: int = 4000
    # Dimension-specific cleanup applied after schema conformance
    normalizer: Callable[[dict[str, Any]], dict[str, Any]] | None = None


class ToolInputError(ValueError):
    """Raised internally when tool parameters are unusable."""


class AnalysisTool:
    """Runs one dimension's analysis against a model invoker."""

    def __init__(
        self,
        config: DimensionConfig,
        invoker: ModelInvoker,
        *,
        adapter: ResponseAdapter | None = None,
        preprocessor: ContentPreprocessor | None = None,
        parser: IntelligentParser | None = None,
        parse_options: ParseOptions | None = None,
    ):
        self.config = config
        self.invoker = invoker
        self.adapter = adapter or ResponseAdapter()
        self.preprocessor = preprocessor or ContentPreprocessor()
        self.parser = parser or IntelligentParser(adapter=self.adapter, preprocessor=self.preprocessor)
        self.parse_options = parse_options

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def schema(self) -> DimensionSchema:
        return self.config.schema

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.config.name,
            "description": self.config.description,
            "fields": [
                {"name": spec.name, "type": spec.type.value, "required": spec.required}
                for spec in self.config.schema.fields
            ],
        }

    def validate_params(self, params: DimensionParams) -> None:
        if not isinstance(params.subject, str) or not params.subject.strip():
            raise ToolInputError("subject must be a non-empty string")
        if len(params.subject) > MAX_SUBJECT_LENGTH:
            raise ToolInputError(f"subject exceeds {MAX_SUBJECT_LENGTH} characters")
        if not isinstance(params.variant, str):
            raise ToolInputError("variant must be a string")

    def render_prompt(self, params: DimensionParams) -> tuple[str, str]:
        """Render the (system, user) prompt pair for ``params``."""
        variables = {"subject": params.subject, "variant": params.variant or "generic", **params.extra}
        return (
            self.config.system_template.format(**variables),
            self.config.user_template.format(**variables),
        )

    def default_result(self, error: str, elapsed_ms: int = 0, confidence: float = 0.0) -> ToolResult:
        """Schema-shaped failure result."""
        return ToolResult(
            dimension=self.name,
            success=False,
            data=self.schema.defaults(),
            confidence=confidence,
            error=error,
            strategy_used="",
            elapsed_ms=elapsed_ms,
        )

    async def execute(self, params: DimensionParams) -> ToolResult:
        """Run the analysis. Never raises."""
        start = time.monotonic()
        try:
            return await self._execute(params, start)
        except Exception as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.warning(
                "Tool %s failed after %dms: %s",
                self.name,
                elapsed_ms,
                e,
                extra={"dimension": self.name},
            )
            return self.default_result(f"{type(e).__name__}: {e}", elapsed_ms)

    async def _execute(self, params: DimensionParams, start: float) -> ToolResult:
        self.validate_params(params)
        system_prompt, user_prompt = self.render_prompt(params)
        messages = build_messages(system_prompt, user_prompt)

        raw = await call_invoker(
            self.invoker,
            messages,
            InvokeOptions(temperature=self.config.temperature, max_tokens=self.config.max_tokens),
        )

        adapted = self.adapter.adapt(raw)
        processed = self.preprocessor.process(adapted)
        options = dataclasses.replace(self.parse_options or ParseOptions(), original_text=adapted.content)
        parsed = await self.parser.parse(processed, self.schema, options)

        data = self.schema.conform(parsed.data)
        if self.config.normalizer is not None:
            data = self.config.normalizer(data)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Tool %s done: strategy=%s, confidence=%.2f, elapsed_ms=%d",
            self.name,
            parsed.strategy_used,
            parsed.confidence,
            elapsed_ms,
            extra={"dimension": self.name, "strategy": parsed.strategy_used},
        )

        if not parsed.success:
            return ToolResult(
                dimension=self.name,
                success=False,
                data=data,
                confidence=FALLBACK_CONFIDENCE,
                error="response could not be parsed; schema defaults used",
                strategy_used=parsed.strategy_used,
                elapsed_ms=elapsed_ms,
            )
        return ToolResult(
            dimension=self.name,
            success=True,
            data=data,
            confidence=parsed.confidence,
            strategy_used=parsed.strategy_used,
            elapsed_ms=elapsed_ms,
        )
