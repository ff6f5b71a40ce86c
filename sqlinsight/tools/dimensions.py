"""Built-in SQL analysis dimensions: performance, security, standards.

Each dimension declares its result schema, its prompt pair and a
normalizer that tidies the model's answer after schema conformance
(score ranges, severity casing, list items without a description).
"""

from __future__ import annotations

from typing import Any

from sqlinsight.parsing.schema import DimensionSchema, FieldSpec, FieldType
from sqlinsight.tools.base import DimensionConfig

SEVERITIES = ("critical", "high", "medium", "low", "info")

# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

PERFORMANCE_SCHEMA = DimensionSchema(
    name="performance",
    fields=(
        FieldSpec("score", FieldType.NUMBER, 0, description="0-100, higher is faster"),
        FieldSpec("confidence", FieldType.NUMBER, 0.0, description="0-1 self-assessed certainty"),
        FieldSpec("summary", FieldType.STRING),
        FieldSpec("issues", FieldType.ARRAY, description="items with type, severity, description"),
        FieldSpec("recommendations", FieldType.ARRAY),
        FieldSpec("execution_plan", FieldType.OBJECT, required=False),
        FieldSpec("optimizations", FieldType.ARRAY, required=False),
        FieldSpec("metrics", FieldType.OBJECT, required=False),
    ),
)

SECURITY_SCHEMA = DimensionSchema(
    name="security",
    fields=(
        FieldSpec("score", FieldType.NUMBER, 0, description="0-100, higher is safer"),
        FieldSpec("confidence", FieldType.NUMBER, 0.0),
        FieldSpec("summary", FieldType.STRING),
        FieldSpec("threat_level", FieldType.STRING, "unknown", description="critical|high|medium|low|none"),
        FieldSpec("vulnerabilities", FieldType.ARRAY, description="items with type, severity, description"),
        FieldSpec("recommendations", FieldType.ARRAY),
        FieldSpec("attack_surface", FieldType.OBJECT, required=False),
        FieldSpec("compliance", FieldType.OBJECT, required=False),
        FieldSpec("best_practices", FieldType.ARRAY, required=False),
    ),
)

STANDARDS_SCHEMA = DimensionSchema(
    name="standards",
    fields=(
        FieldSpec("score", FieldType.NUMBER, 0, description="0-100 overall code quality"),
        FieldSpec("confidence", FieldType.NUMBER, 0.0),
        FieldSpec("summary", FieldType.STRING),
        FieldSpec("quality_level", FieldType.STRING, "unknown", description="excellent|good|fair|poor"),
        FieldSpec("violations", FieldType.ARRAY, description="items with rule, severity, description"),
        FieldSpec("recommendations", FieldType.ARRAY),
        FieldSpec("fixed_sql", FieldType.STRING, required=False),
        FieldSpec("fix_summary", FieldType.STRING, required=False),
        FieldSpec("complexity_metrics", FieldType.OBJECT, required=False),
    ),
)

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_RESPONSE_RULES = """Respond with a single JSON object only. No markdown, no code fences, no text before or after it.
Use double quotes for all keys and strings. Scores are numbers from 0 to 100, confidence is a number from 0 to 1.
Severity values are one of: critical, high, medium, low, info."""

_USER_TEMPLATE = """Database: {variant}

SQL to analyze:
```sql
{subject}
```"""

_PERFORMANCE_SYSTEM = (
    """You are a database performance expert reviewing {variant} SQL.
Estimate how the statement executes: index usage, scan types, join strategies, sorting and
grouping costs, and anything that will not scale with table size.

Return this structure:
{{"score": 0-100, "confidence": 0-1, "summary": "one sentence",
 "issues": [{{"type": "...", "severity": "...", "description": "...", "location": "..."}}],
 "recommendations": [{{"action": "...", "description": "...", "expected_improvement": "..."}}],
 "execution_plan": {{"estimated_cost": "...", "operations": []}},
 "optimizations": [{{"original": "...", "optimized": "...", "reason": "..."}}],
 "metrics": {{}}}}

"""
    + _RESPONSE_RULES
)

_SECURITY_SYSTEM = (
    """You are a database security auditor reviewing {variant} SQL.
Look for injection vectors, dynamic SQL, excessive privileges, sensitive data exposure,
unsafe functions and missing access restrictions.

Return this structure:
{{"score": 0-100, "confidence": 0-1, "summary": "one sentence",
 "threat_level": "critical|high|medium|low|none",
 "vulnerabilities": [{{"type": "...", "severity": "...", "description": "...", "remediation": "..."}}],
 "recommendations": [{{"action": "...", "description": "..."}}],
 "attack_surface": {{}}, "compliance": {{}}, "best_practices": []}}

"""
    + _RESPONSE_RULES
)

_STANDARDS_SYSTEM = (
    """You are a SQL code reviewer checking {variant} SQL against common style and
correctness standards: naming, SELECT *, implicit joins, ambiguous columns, formatting,
NULL handling and portability.

Return this structure:
{{"score": 0-100, "confidence": 0-1, "summary": "one sentence",
 "quality_level": "excellent|good|fair|poor",
 "violations": [{{"rule": "...", "severity": "...", "description": "...", "suggestion": "..."}}],
 "recommendations": [{{"action": "...", "description": "..."}}],
 "fixed_sql": "the corrected statement", "fix_summary": "...", "complexity_metrics": {{}}}}

"""
    + _RESPONSE_RULES
)

# ---------------------------------------------------------------------------
# Normalizers
# ---------------------------------------------------------------------------


def _clamp(value: Any, low: float, high: float) -> float:
    return max(low, min(high, value))


def _normalize_findings(items: list[Any]) -> list[Any]:
    """Keep findings that say something; canonicalise their severity."""
    normalized: list[Any] = []
    for item in items:
        if isinstance(item, str):
            if item.strip():
                normalized.append({"severity": "medium", "description": item.strip()})
            continue
        if not isinstance(item, dict) or not item.get("description"):
            continue
        item = dict(item)
        severity = str(item.get("severity", "medium")).strip().lower()
        item["severity"] = severity if severity in SEVERITIES else "medium"
        normalized.append(item)
    return normalized


def _normalize_common(data: dict[str, Any], findings_key: str) -> dict[str, Any]:
    data = dict(data)
    data["score"] = _clamp(data["score"], 0, 100)
    data["confidence"] = _clamp(data["confidence"], 0.0, 1.0)
    data[findings_key] = _normalize_findings(data[findings_key])
    return data


def normalize_performance(data: dict[str, Any]) -> dict[str, Any]:
    return _normalize_common(data, "issues")


def normalize_security(data: dict[str, Any]) -> dict[str, Any]:
    data = _normalize_common(data, "vulnerabilities")
    data["threat_level"] = data["threat_level"].strip().lower() or "unknown"
    return data


def normalize_standards(data: dict[str, Any]) -> dict[str, Any]:
    data = _normalize_common(data, "violations")
    data["quality_level"] = data["quality_level"].strip().lower() or "unknown"
    return data


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

PERFORMANCE = DimensionConfig(
    name="performance",
    schema=PERFORMANCE_SCHEMA,
    system_template=_PERFORMANCE_SYSTEM,
    user_template=_USER_TEMPLATE,
    description="Execution cost, index usage and scalability of a SQL statement",
    normalizer=normalize_performance,
)

SECURITY = DimensionConfig(
    name="security",
    schema=SECURITY_SCHEMA,
    system_template=_SECURITY_SYSTEM,
    user_template=_USER_TEMPLATE,
    description="Injection risks, privilege and data-exposure issues in a SQL statement",
    normalizer=normalize_security,
)

STANDARDS = DimensionConfig(
    name="standards",
    schema=STANDARDS_SCHEMA,
    system_template=_STANDARDS_SYSTEM,
    user_template=_USER_TEMPLATE,
    description="Style, correctness and portability of a SQL statement, with a fixed version",
    normalizer=normalize_standards,
)

DIMENSION_CONFIGS: dict[str, DimensionConfig] = {
    config.name: config for config in (PERFORMANCE, SECURITY, STANDARDS)
}
