"""Tests for the Intelligent Parser: strategy cascade, repair and fallback."""

from __future__ import annotations

import pytest

from sqlinsight.parsing.adapter import ResponseAdapter
from sqlinsight.parsing.cache import ParseCache
from sqlinsight.parsing.parser import (
    FALLBACK_CONFIDENCE,
    MODEL_REPAIR_CONFIDENCE,
    RULE_REPAIR_CONFIDENCE,
    IntelligentParser,
    ParseOptions,
    adjust_confidence,
)
from sqlinsight.parsing.preprocessor import ContentPreprocessor
from sqlinsight.parsing.schema import DimensionSchema, FieldSpec, FieldType
from sqlinsight.parsing.strategies import (
    DEFAULT_STRATEGIES,
    ParseStrategy,
    field_reconstruction,
    substring_extraction,
)
from sqlinsight.parsing.types import ValidationReport

from conftest import ScriptedInvoker, chat_response


@pytest.fixture
def parser() -> IntelligentParser:
    return IntelligentParser()


# ==========================================================================
# Test: end-to-end scenarios
# ==========================================================================


class TestScenarios:
    @pytest.mark.asyncio
    async def test_fenced_json_through_full_pipeline(self, parser, score_only_schema):
        adapted = ResponseAdapter().adapt({"content": '```json\n{"score":85}\n```'})
        processed = ContentPreprocessor().process(adapted)
        assert processed.content == '{"score":85}'

        result = await parser.parse(processed, score_only_schema)
        assert result.success
        assert result.confidence >= 0.9
        assert result.data["score"] == 85

    @pytest.mark.asyncio
    async def test_prose_brace_before_answer(self, parser, score_only_schema):
        processed = ContentPreprocessor().process('Bind values as {param} placeholders. Result: {"score": 85}')
        result = await parser.parse(processed, score_only_schema)
        assert result.success
        assert result.strategy_used == "direct_parse"
        assert result.data == {"score": 85}

    @pytest.mark.asyncio
    async def test_trailing_comma_uses_repaired_syntax(self, parser, score_only_schema):
        result = await parser.parse('{"score": 85,}', score_only_schema)
        assert result.success
        assert result.strategy_used == "repaired_syntax_parse"
        assert result.confidence == 0.9
        assert result.data == {"score": 85}
        assert result.diagnostics[0] == "direct_parse: no object"

    @pytest.mark.asyncio
    async def test_unparseable_text_falls_back_to_defaults(self, parser, score_schema):
        result = await parser.parse("not json at all", score_schema)
        assert not result.success
        assert result.strategy_used == "fallback"
        assert result.is_fallback
        assert result.data == {"score": 0, "issues": []}
        assert result.confidence == FALLBACK_CONFIDENCE
        assert any(d.startswith("warning:") for d in result.diagnostics)


# ==========================================================================
# Test: strategy cascade
# ==========================================================================


class TestStrategies:
    @pytest.mark.asyncio
    async def test_valid_json_uses_direct_parse(self, parser, score_schema):
        result = await parser.parse('{"score": 70, "issues": ["a"]}', score_schema)
        assert result.strategy_used == "direct_parse"
        assert result.confidence == 1.0
        assert result.validation.is_valid

    @pytest.mark.asyncio
    async def test_truncated_json_uses_tolerant_parse(self, parser, score_schema):
        result = await parser.parse('{"score": 70, "issues": ["full table scan", "missing ind', score_schema)
        assert result.strategy_used == "tolerant_parse"
        assert result.confidence == 0.7
        assert result.data == {"score": 70, "issues": ["full table scan", "missing ind"]}

    @pytest.mark.asyncio
    async def test_empty_content_skips_to_fallback(self, parser, score_schema):
        result = await parser.parse("   ", score_schema)
        assert result.is_fallback

    @pytest.mark.asyncio
    async def test_strategy_order_is_respected(self, score_only_schema):
        calls = []

        def failing(name):
            def func(content, schema):
                calls.append(name)
                return None

            return func

        def succeeding(content, schema):
            calls.append("third")
            return {"score": 1}

        parser = IntelligentParser(
            strategies=(
                ParseStrategy("first", 1.0, failing("first")),
                ParseStrategy("second", 0.9, failing("second")),
                ParseStrategy("third", 0.7, succeeding),
                ParseStrategy("fourth", 0.6, failing("fourth")),
            )
        )
        result = await parser.parse("anything", score_only_schema)
        assert calls == ["first", "second", "third"]
        assert result.strategy_used == "third"

    @pytest.mark.asyncio
    async def test_raising_strategy_is_skipped(self, score_only_schema):
        def broken(content, schema):
            raise RuntimeError("bad strategy")

        parser = IntelligentParser(strategies=(ParseStrategy("broken", 1.0, broken),) + DEFAULT_STRATEGIES)
        result = await parser.parse('{"score": 3}', score_only_schema)
        assert result.strategy_used == "direct_parse"
        assert "broken: error bad strategy" in result.diagnostics

    def test_substring_extraction_with_one_level_nesting(self, score_schema):
        text = 'noise {"score": 40, "issues": [], "meta": {"k": 1}} noise {"other": 2}'
        assert substring_extraction(text, score_schema) == {"score": 40, "issues": [], "meta": {"k": 1}}

    def test_substring_extraction_repairs_candidates(self, score_schema):
        assert substring_extraction("x {score: 5,} y", score_schema) == {"score": 5}

    def test_field_reconstruction_from_loose_text(self, score_schema):
        text = 'The "score": 62 and issues: ["slow join"] were found'
        assert field_reconstruction(text, score_schema) == {"score": 62, "issues": ["slow join"]}

    def test_field_reconstruction_prose_number(self, score_schema):
        assert field_reconstruction("Overall score is 45 out of 100.", score_schema) == {"score": 45}

    def test_field_reconstruction_ignores_partial_names(self, score_only_schema):
        assert field_reconstruction("subscore: 10", score_only_schema) is None


# ==========================================================================
# Test: validation
# ==========================================================================


class TestValidation:
    @pytest.mark.asyncio
    async def test_validation_issues_lower_confidence_without_fallback(self, parser, score_schema):
        result = await parser.parse('{"score": "high"}', score_schema)
        assert result.success
        assert result.strategy_used == "direct_parse"
        assert result.validation.missing_fields == ("issues",)
        assert result.validation.invalid_fields == ("score",)
        assert result.confidence == 0.5

    def test_adjust_confidence(self, score_schema):
        report = ValidationReport(missing_fields=("issues",))
        assert adjust_confidence(1.0, report, score_schema) == 0.75
        assert adjust_confidence(0.9, ValidationReport(), score_schema) == 0.9


# ==========================================================================
# Test: repair
# ==========================================================================


class TestRepair:
    @pytest.mark.asyncio
    async def test_rule_repair_injects_defaults(self, parser):
        schema = DimensionSchema(
            name="r",
            fields=(
                FieldSpec("score", FieldType.NUMBER, 0),
                FieldSpec("summary", FieldType.STRING, required=False),
            ),
        )
        result = await parser.parse("summary: slow query", schema)
        assert result.success
        assert result.strategy_used == "rule_repair"
        assert result.data == {"summary": "slow query", "score": 0}
        assert result.validation.missing_fields == ("score",)
        assert result.confidence == round(RULE_REPAIR_CONFIDENCE * 0.75, 3)

    @pytest.mark.asyncio
    async def test_model_repair_recovers(self, score_schema):
        invoker = ScriptedInvoker(chat_response('```json\n{"score": 77, "issues": []}\n```'))
        parser = IntelligentParser(repair_invoker=invoker)
        result = await parser.parse("not json at all", score_schema)
        assert result.success
        assert result.strategy_used == "model_repair"
        assert result.confidence == MODEL_REPAIR_CONFIDENCE
        assert result.data == {"score": 77, "issues": []}

        messages, options = invoker.calls[0]
        assert messages[0]["role"] == "system"
        assert "not json at all" in messages[1]["content"]
        assert "- score (number, required)" in messages[1]["content"]
        assert options.temperature == 0.0

    @pytest.mark.asyncio
    async def test_model_repair_uses_original_text(self, score_schema):
        invoker = ScriptedInvoker('{"score": 1, "issues": []}')
        parser = IntelligentParser(repair_invoker=invoker)
        await parser.parse("cleaned", score_schema, ParseOptions(original_text="the original words"))
        assert "the original words" in invoker.calls[0][0][1]["content"]

    @pytest.mark.asyncio
    async def test_model_repair_failure_falls_back(self, score_schema):
        invoker = ScriptedInvoker(RuntimeError("model down"))
        parser = IntelligentParser(repair_invoker=invoker)
        result = await parser.parse("not json at all", score_schema)
        assert result.is_fallback
        assert any("model_repair: invocation failed" in d for d in result.diagnostics)

    @pytest.mark.asyncio
    async def test_model_repair_can_be_disabled(self, score_schema):
        invoker = ScriptedInvoker('{"score": 1, "issues": []}')
        parser = IntelligentParser(repair_invoker=invoker)
        result = await parser.parse("not json at all", score_schema, ParseOptions(allow_model_repair=False))
        assert result.is_fallback
        assert invoker.calls == []

    @pytest.mark.asyncio
    async def test_sync_repair_invoker(self, score_schema):
        parser = IntelligentParser(repair_invoker=lambda messages, options: '{"score": 9, "issues": []}')
        result = await parser.parse("not json at all", score_schema)
        assert result.data == {"score": 9, "issues": []}


# ==========================================================================
# Test: cache
# ==========================================================================


class TestParserCache:
    @pytest.mark.asyncio
    async def test_second_parse_hits_cache(self, score_schema):
        cache = ParseCache()
        parser = IntelligentParser(cache=cache)
        first = await parser.parse('{"score": 5, "issues": []}', score_schema)
        second = await parser.parse('{"score": 5, "issues": []}', score_schema)
        assert not first.from_cache
        assert second.from_cache
        assert second.data == first.data
        assert cache.stats().hits == 1

    @pytest.mark.asyncio
    async def test_fallbacks_are_not_cached(self, score_schema):
        cache = ParseCache()
        parser = IntelligentParser(cache=cache)
        await parser.parse("not json at all", score_schema)
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_cache_bypass(self, score_schema):
        cache = ParseCache()
        parser = IntelligentParser(cache=cache)
        await parser.parse('{"score": 5}', score_schema, ParseOptions(use_cache=False))
        assert len(cache) == 0
