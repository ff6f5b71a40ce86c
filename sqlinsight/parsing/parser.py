"""Intelligent Parser: pipeline step 3.

Turns cleaned content into schema-checked data. Never raises; the worst
case is a fallback object built from the schema's defaults.

Order of attempts:
  1. Parse strategies (see ``strategies``), first non-empty object wins
  2. Rule-based structural repair, then a direct parse of the result
  3. Model-assisted repair, when a repair invoker is configured
  4. Fallback from schema defaults (success=False, confidence 0.1)

After any success the data is validated against the schema. Missing or
mistyped fields lower the confidence but never force a fallback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlinsight.gateway.types import InvokeOptions, ModelInvoker, build_messages, call_invoker
from sqlinsight.parsing.adapter import ResponseAdapter
from sqlinsight.parsing.cache import ParseCache
from sqlinsight.parsing.preprocessor import (
    ContentPreprocessor,
    extract_object,
    strip_code_fences,
    strip_comments,
    strip_declaration,
)
from sqlinsight.parsing.schema import DimensionSchema
from sqlinsight.parsing.strategies import DEFAULT_STRATEGIES, ParseStrategy, direct_parse, locate_field
from sqlinsight.parsing.syntax import structural_repair
from sqlinsight.parsing.types import FALLBACK_STRATEGY, ParseResult, ProcessedContent, ValidationReport

logger = logging.getLogger(__name__)

RULE_REPAIR_STRATEGY = "rule_repair"
MODEL_REPAIR_STRATEGY = "model_repair"

RULE_REPAIR_CONFIDENCE = 0.5
MODEL_REPAIR_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.1

# Share of the base confidence lost when every declared field has an issue
VALIDATION_PENALTY = 0.5

MAX_REPAIR_INPUT_CHARS = 12000

# ---------------------------------------------------------------------------
# Model repair prompt
# ---------------------------------------------------------------------------

_REPAIR_SYSTEM_PROMPT = (
    "You are a JSON repair expert. You receive text that was meant to be a JSON "
    "object but is malformed, truncated or wrapped in prose. Return only the "
    "repaired JSON object: no markdown, no code fences, no commentary. Keep the "
    "original structure and values wherever they can be recovered."
)

_REPAIR_USER_TEMPLATE = """Repair the following output into a single valid JSON object.

The object must follow the "{schema_name}" result format with these fields:
{fields}

Use sensible empty values for fields that cannot be recovered.

Text to repair:
{content}"""


@dataclass
class ParseOptions:
    """Per-call parser switches."""

    allow_model_repair: bool = True
    use_cache: bool = True
    original_text: str | None = None  # pre-cleaning text handed to model repair


class IntelligentParser:
    """Multi-strategy parser with repair and guaranteed fallback."""

    def __init__(
        self,
        strategies: tuple[ParseStrategy, ...] = DEFAULT_STRATEGIES,
        repair_invoker: ModelInvoker | None = None,
        cache: ParseCache | None = None,
        adapter: ResponseAdapter | None = None,
        preprocessor: ContentPreprocessor | None = None,
        repair_options: InvokeOptions | None = None,
    ):
        self.strategies = strategies
        self.repair_invoker = repair_invoker
        self.cache = cache
        self.adapter = adapter or ResponseAdapter()
        self.preprocessor = preprocessor or ContentPreprocessor()
        self.repair_options = repair_options or InvokeOptions(temperature=0.0, max_tokens=4000)

    async def parse(
        self,
        processed: ProcessedContent | str,
        schema: DimensionSchema,
        options: ParseOptions | None = None,
    ) -> ParseResult:
        """Parse cleaned content against ``schema``.

        Args:
            processed: Preprocessor output, or already-clean text.
            schema: Result schema to validate against and draw defaults from.
            options: Per-call switches (model repair, cache use).

        Returns:
            ParseResult; ``success`` is False only for the defaults fallback.
        """
        opts = options or ParseOptions()
        content = processed.content if isinstance(processed, ProcessedContent) else (processed or "")

        try:
            return await self._parse(content, schema, opts)
        except Exception as e:
            logger.exception("Parser failed unexpectedly for schema %s", schema.name)
            return self.build_fallback(schema, (f"parser error: {e}",))

    async def _parse(self, content: str, schema: DimensionSchema, opts: ParseOptions) -> ParseResult:
        cache_key = None
        if self.cache is not None and opts.use_cache:
            cache_key = ParseCache.make_key(content, schema)
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Parse cache hit for schema %s", schema.name)
                return cached

        diagnostics: list[str] = []

        result = self.parse_local(content, schema, diagnostics)
        if result is None and opts.allow_model_repair and self.repair_invoker is not None:
            data = await self.model_repair(opts.original_text or content, schema, diagnostics)
            if data is not None:
                result = self._finish(data, MODEL_REPAIR_STRATEGY, MODEL_REPAIR_CONFIDENCE, schema, diagnostics)

        if result is None:
            diagnostics.append("warning: every parse strategy and repair failed, using schema defaults")
            logger.warning(
                "Falling back to defaults for schema %s (%d chars of content)",
                schema.name,
                len(content),
                extra={"strategy": FALLBACK_STRATEGY},
            )
            return self.build_fallback(schema, tuple(diagnostics))

        if cache_key is not None:
            self.cache.set(cache_key, result)
        return result

    # -- local steps --------------------------------------------------------

    def parse_local(
        self,
        content: str,
        schema: DimensionSchema,
        diagnostics: list[str] | None = None,
    ) -> ParseResult | None:
        """Strategies then rule-based repair; None when both fail."""
        diagnostics = diagnostics if diagnostics is not None else []

        for strategy in self.strategies:
            try:
                data = strategy.func(content, schema)
            except Exception as e:
                diagnostics.append(f"{strategy.name}: error {e}")
                continue
            if data is None:
                diagnostics.append(f"{strategy.name}: no object")
                continue
            logger.debug(
                "Parsed with %s for schema %s",
                strategy.name,
                schema.name,
                extra={"strategy": strategy.name},
            )
            return self._finish(data, strategy.name, strategy.confidence, schema, diagnostics)

        data, report = self.rule_repair(content, schema, diagnostics)
        if data is not None:
            return self._finish(data, RULE_REPAIR_STRATEGY, RULE_REPAIR_CONFIDENCE, schema, diagnostics, report)
        return None

    def rule_repair(
        self,
        content: str,
        schema: DimensionSchema,
        diagnostics: list[str],
    ) -> tuple[dict[str, Any] | None, ValidationReport | None]:
        """Structural repair plus default injection for fields that cannot be located.

        Returns:
            (data, validation report taken before defaults were injected).
        """
        try:
            text = strip_declaration(strip_comments(strip_code_fences(content)))
            data = None
            if "{" in text:
                data = direct_parse(structural_repair(extract_object(text)), schema)

            if data is None:
                data = {}
            for spec in schema.fields:
                if spec.name not in data:
                    found, value = locate_field(text, spec)
                    if found:
                        data[spec.name] = value

            if not data:
                diagnostics.append(f"{RULE_REPAIR_STRATEGY}: nothing recoverable")
                return None, None

            report = schema.validate(data)
            injected = [spec.name for spec in schema.fields if spec.name not in data]
            for name in injected:
                data[name] = schema.get_field(name).default_value()
            if injected:
                diagnostics.append(f"{RULE_REPAIR_STRATEGY}: injected defaults for {', '.join(injected)}")
            return data, report
        except Exception as e:
            diagnostics.append(f"{RULE_REPAIR_STRATEGY}: error {e}")
            return None, None

    # -- model repair -------------------------------------------------------

    async def model_repair(
        self,
        text: str,
        schema: DimensionSchema,
        diagnostics: list[str],
    ) -> dict[str, Any] | None:
        """Ask the model to rewrite ``text`` as valid JSON, then parse it directly."""
        if self.repair_invoker is None:
            return None

        messages = build_messages(
            _REPAIR_SYSTEM_PROMPT,
            _REPAIR_USER_TEMPLATE.format(
                schema_name=schema.name,
                fields=schema.describe(),
                content=text[:MAX_REPAIR_INPUT_CHARS],
            ),
        )
        try:
            raw = await call_invoker(self.repair_invoker, messages, self.repair_options)
        except Exception as e:
            logger.warning("Model repair call failed for schema %s: %s", schema.name, e)
            diagnostics.append(f"{MODEL_REPAIR_STRATEGY}: invocation failed ({e})")
            return None

        cleaned = self.preprocessor.process(self.adapter.adapt(raw))
        data = direct_parse(cleaned.content, schema)
        if data is None:
            diagnostics.append(f"{MODEL_REPAIR_STRATEGY}: response was not valid JSON")
        return data

    # -- results ------------------------------------------------------------

    def _finish(
        self,
        data: dict[str, Any],
        strategy: str,
        base_confidence: float,
        schema: DimensionSchema,
        diagnostics: list[str],
        report: ValidationReport | None = None,
    ) -> ParseResult:
        report = report or schema.validate(data)
        if report.missing_fields:
            diagnostics.append(f"validation: missing {', '.join(report.missing_fields)}")
        if report.invalid_fields:
            diagnostics.append(f"validation: invalid {', '.join(report.invalid_fields)}")
        return ParseResult(
            success=True,
            data=data,
            strategy_used=strategy,
            confidence=adjust_confidence(base_confidence, report, schema),
            validation=report,
            diagnostics=tuple(diagnostics),
        )

    @staticmethod
    def build_fallback(schema: DimensionSchema, diagnostics: tuple[str, ...] = ()) -> ParseResult:
        data = schema.defaults()
        return ParseResult(
            success=False,
            data=data,
            strategy_used=FALLBACK_STRATEGY,
            confidence=FALLBACK_CONFIDENCE,
            validation=ValidationReport(missing_fields=tuple(spec.name for spec in schema.required_fields)),
            diagnostics=diagnostics,
        )


def adjust_confidence(base: float, report: ValidationReport, schema: DimensionSchema) -> float:
    """Scale a strategy's confidence down by the share of fields with issues."""
    if report.is_valid or not schema.fields:
        return base
    ratio = min(1.0, report.issue_count / len(schema.fields))
    return round(base * (1 - VALIDATION_PENALTY * ratio), 3)
