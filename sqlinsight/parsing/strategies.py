"""Parse strategies, tried in order by the IntelligentParser.

Each strategy is a pure function ``(content, schema) -> dict | None`` that
returns a non-empty object on success and None otherwise. They are ordered
from strictest to most permissive, and each carries the confidence assigned
to a result it produces.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, NamedTuple

from sqlinsight.parsing.schema import DimensionSchema, FieldSpec, FieldType
from sqlinsight.parsing.syntax import apply_syntax_repairs, find_balanced_end
from sqlinsight.parsing.tolerant import NOTHING, parse_tolerant, read_value_at

StrategyFunc = Callable[[str, DimensionSchema], "dict[str, Any] | None"]


class ParseStrategy(NamedTuple):
    name: str
    confidence: float
    func: StrategyFunc


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError, RecursionError):
        return None
    if isinstance(value, dict) and value:
        return value
    return None


# ---------------------------------------------------------------------------
# 1. Direct parse
# ---------------------------------------------------------------------------


def direct_parse(content: str, schema: DimensionSchema) -> dict[str, Any] | None:
    if not content or not content.strip():
        return None
    return _loads_object(content)


# ---------------------------------------------------------------------------
# 2. Repaired-syntax parse
# ---------------------------------------------------------------------------


def repaired_syntax_parse(content: str, schema: DimensionSchema) -> dict[str, Any] | None:
    if not content.strip():
        return None
    return _loads_object(apply_syntax_repairs(content))


# ---------------------------------------------------------------------------
# 3. Tolerant partial parse
# ---------------------------------------------------------------------------


def tolerant_parse(content: str, schema: DimensionSchema) -> dict[str, Any] | None:
    return parse_tolerant(content)


# ---------------------------------------------------------------------------
# 4. Balanced-substring extraction
# ---------------------------------------------------------------------------

# One level of nesting, then anything between the outermost braces
_NESTED_OBJECT = re.compile(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}")
_GREEDY_OBJECT = re.compile(r"\{[\s\S]*\}")

MAX_BALANCED_CANDIDATES = 50


def _balanced_candidates(text: str):
    starts = 0
    index = text.find("{")
    while index != -1 and starts < MAX_BALANCED_CANDIDATES:
        end = find_balanced_end(text, index)
        if end is not None:
            yield text[index : end + 1]
        starts += 1
        index = text.find("{", index + 1)


def _substring_candidates(text: str):
    yield from _balanced_candidates(text)
    for m in _NESTED_OBJECT.finditer(text):
        yield m.group(0)
    m = _GREEDY_OBJECT.search(text)
    if m:
        yield m.group(0)


def substring_extraction(content: str, schema: DimensionSchema) -> dict[str, Any] | None:
    seen: set[str] = set()
    for candidate in _substring_candidates(content):
        if candidate in seen:
            continue
        seen.add(candidate)
        parsed = _loads_object(candidate) or _loads_object(apply_syntax_repairs(candidate))
        if parsed is not None:
            return parsed
    return None


# ---------------------------------------------------------------------------
# 5. Field-level reconstruction
# ---------------------------------------------------------------------------


def _field_anchor(name: str) -> re.Pattern[str]:
    return re.compile(r"""(?<![\w$])["']?%s["']?\s*[:=]\s*""" % re.escape(name), re.IGNORECASE)


def _prose_number(name: str) -> re.Pattern[str]:
    # "score is 85", "score of 72/100"
    return re.compile(r"(?<![\w$])%s\b[^0-9\n{}\[\]]{0,20}?(-?\d+(?:\.\d+)?)" % re.escape(name), re.IGNORECASE)


def locate_field(content: str, spec: FieldSpec) -> tuple[bool, Any]:
    """Search ``content`` for a value of ``spec`` anchored on its name.

    Returns:
        (found, value). The value is already coerced to the field type.
    """
    for m in _field_anchor(spec.name).finditer(content):
        value, _ = read_value_at(content, m.end())
        if value is NOTHING or value is None:
            continue
        ok, coerced = spec.coerce(value)
        if ok:
            return True, coerced

    if spec.type in (FieldType.NUMBER, FieldType.INTEGER):
        m = _prose_number(spec.name).search(content)
        if m:
            ok, coerced = spec.coerce(m.group(1))
            if ok:
                return True, coerced
    return False, None


def locate_fields(content: str, schema: DimensionSchema) -> dict[str, Any]:
    """Every schema field that can be found in ``content``, required fields first."""
    found: dict[str, Any] = {}
    for spec in schema.required_fields + schema.optional_fields:
        ok, value = locate_field(content, spec)
        if ok:
            found[spec.name] = value
    return found


def field_reconstruction(content: str, schema: DimensionSchema) -> dict[str, Any] | None:
    if not content.strip():
        return None
    found = locate_fields(content, schema)
    if not found:
        return None
    required = {spec.name for spec in schema.required_fields}
    if required and not required.intersection(found):
        return None
    return found


DEFAULT_STRATEGIES: tuple[ParseStrategy, ...] = (
    ParseStrategy("direct_parse", 1.0, direct_parse),
    ParseStrategy("repaired_syntax_parse", 0.9, repaired_syntax_parse),
    ParseStrategy("tolerant_parse", 0.7, tolerant_parse),
    ParseStrategy("substring_extraction", 0.6, substring_extraction),
    ParseStrategy("field_reconstruction", 0.4, field_reconstruction),
)
