"""Core types and DTOs for the response resilience pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ShapeKind(str, Enum):
    """Envelope shape a raw model response was recognised as."""

    CHOICE_COMPLETION = "choice_completion"  # choices[0].message.content
    NESTED_WRAPPER = "nested_wrapper"  # kwargs.content next to a top-level content
    TYPED_BLOCKS = "typed_blocks"  # content: [{"type": "text", "text": ...}]
    PLAIN_TEXT = "plain_text"
    OPAQUE = "opaque"  # stringified unknown object


class FormatKind(str, Enum):
    MARKDOWN = "markdown"
    JSON = "json"
    PLAIN = "plain"


# ---------------------------------------------------------------------------
# Adapter output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AdaptedResponse:
    """Plain-text content extracted from a raw response envelope."""

    content: str = ""
    shape_kind: ShapeKind = ShapeKind.OPAQUE
    extraction_path: str = ""
    confidence: float = 0.0
    debug: dict[str, Any] = field(default_factory=dict)

    @property
    def metadata(self) -> dict[str, Any]:
        return {
            "shape_kind": self.shape_kind.value,
            "extraction_path": self.extraction_path,
            "confidence": self.confidence,
        }


# ---------------------------------------------------------------------------
# Preprocessor output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContentFormat:
    """Format signals detected before cleaning."""

    kind: FormatKind = FormatKind.PLAIN
    has_code_block: bool = False
    has_json_object: bool = False
    has_comments: bool = False
    has_assignment_prefix: bool = False
    line_count: int = 0


@dataclass(frozen=True)
class ProcessedContent:
    """Cleaned text plus a record of which cleaning rules fired."""

    content: str = ""
    format: ContentFormat = field(default_factory=ContentFormat)
    applied_rules: tuple[str, ...] = ()
    skipped_rules: tuple[str, ...] = ()  # rules that raised and were bypassed
    input_length: int = 0
    output_length: int = 0
    elapsed_ms: float = 0.0

    @property
    def length_ratio(self) -> float:
        if self.input_length == 0:
            return 1.0
        return round(self.output_length / self.input_length, 4)


# ---------------------------------------------------------------------------
# Parser output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationReport:
    """Schema validation outcome. Recorded, never raised."""

    missing_fields: tuple[str, ...] = ()
    invalid_fields: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.missing_fields and not self.invalid_fields

    @property
    def issue_count(self) -> int:
        return len(self.missing_fields) + len(self.invalid_fields)


FALLBACK_STRATEGY = "fallback"


@dataclass(frozen=True)
class ParseResult:
    """Outcome of parsing one piece of content against a schema."""

    success: bool
    data: dict[str, Any] | None
    strategy_used: str
    confidence: float
    validation: ValidationReport = field(default_factory=ValidationReport)
    diagnostics: tuple[str, ...] = ()
    from_cache: bool = False

    @property
    def is_fallback(self) -> bool:
        return self.strategy_used == FALLBACK_STRATEGY
