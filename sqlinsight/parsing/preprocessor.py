"""Content Preprocessor: pipeline step 2.

Cleans adapted response text before parsing with an ordered list of
independently toggleable rules:
  1. strip_code_fences: leading/trailing ``` markers, or the body of an
     embedded fenced block
  2. strip_comments: //, /* */, <!-- --> and # comments outside strings
  3. strip_declaration: ``const result = {...}`` style assignment prefixes
  4. extract_object: the first balanced ``{...}`` that parses as JSON
  5. normalize_whitespace: line endings, blank lines, outer whitespace
  6. repair_syntax: trailing commas, unquoted keys

A rule that raises is skipped and its input passes through unchanged.
Cleaning is idempotent: processing already-cleaned text is a no-op.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable

from sqlinsight.parsing.syntax import apply_syntax_repairs, find_balanced_end, split_string_literals
from sqlinsight.parsing.types import AdaptedResponse, ContentFormat, FormatKind, ProcessedContent

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------
_FENCE_OPEN = re.compile(r"^\s*```[\w+-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?[ \t]*```\s*$")
_FENCED_BLOCK = re.compile(r"```[\w+-]*[ \t]*\n(.*?)```", re.DOTALL)

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_MARKUP_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_LINE_COMMENT = re.compile(r"(?:^|(?<=\s))(?://|#)[^\n]*", re.MULTILINE)

_DECLARATION = re.compile(r"^\s*(?:(?:const|let|var)\s+)?[A-Za-z_$][\w$.]*\s*=\s*(?=[{\[])")

_BLANK_LINES = re.compile(r"\n\s*\n")
_TRAILING_LINE_SPACE = re.compile(r"[ \t]+\n")

MAX_OBJECT_CANDIDATES = 50
# Rule passes repeat until the text stops changing, at most this many times
MAX_CLEANING_PASSES = 5


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


@dataclass
class PreprocessOptions:
    """Per-rule toggles. Every rule is enabled by default."""

    strip_code_fences: bool = True
    strip_comments: bool = True
    strip_declaration: bool = True
    extract_object: bool = True
    normalize_whitespace: bool = True
    repair_syntax: bool = True

    def enabled(self, rule_name: str) -> bool:
        return getattr(self, rule_name, False)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def strip_code_fences(text: str) -> str:
    if _FENCE_OPEN.match(text):
        return _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text, count=1), count=1)
    for block in _FENCED_BLOCK.finditer(text):
        if "{" in block.group(1):
            return block.group(1)
    return text


def _strip_code_comments(segment: str) -> str:
    segment = _BLOCK_COMMENT.sub("", segment)
    segment = _MARKUP_COMMENT.sub("", segment)
    return _LINE_COMMENT.sub("", segment)


def strip_comments(text: str) -> str:
    return "".join(seg if is_string else _strip_code_comments(seg) for is_string, seg in split_string_literals(text))


def strip_declaration(text: str) -> str:
    return _DECLARATION.sub("", text, count=1)


def _is_json_object(candidate: str) -> bool:
    for text in (candidate, apply_syntax_repairs(candidate)):
        try:
            json.loads(text)
        except ValueError:
            continue
        return True
    return False


def extract_object(text: str) -> str:
    """Cut ``text`` down to its JSON object.

    Balanced ``{...}`` candidates are tried left to right and the first one
    that parses (as-is or after light syntax repair) wins. Prose braces such
    as ``{param}`` are skipped. When no candidate parses, the span from the
    first ``{`` to the last ``}`` is kept so later parse strategies still see
    every candidate. An unterminated object is kept through the end of the text.
    """
    start = text.find("{")
    if start == -1:
        return text

    pos = start
    for _ in range(MAX_OBJECT_CANDIDATES):
        end = find_balanced_end(text, pos)
        if end is None:
            # unterminated (truncated) object runs to the end of the text
            return text[pos:]
        candidate = text[pos : end + 1]
        if _is_json_object(candidate):
            return candidate
        pos = text.find("{", end + 1)
        if pos == -1:
            break

    return text[start : text.rfind("}") + 1]


def normalize_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _TRAILING_LINE_SPACE.sub("\n", text)
    text = _BLANK_LINES.sub("\n", text)
    return text.strip()


def repair_syntax(text: str) -> str:
    return apply_syntax_repairs(text)


CLEANING_RULES: tuple[tuple[str, Callable[[str], str]], ...] = (
    ("strip_code_fences", strip_code_fences),
    ("strip_comments", strip_comments),
    ("strip_declaration", strip_declaration),
    ("extract_object", extract_object),
    ("normalize_whitespace", normalize_whitespace),
    ("repair_syntax", repair_syntax),
)


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


def detect_format(text: str) -> ContentFormat:
    has_code_block = "```" in text
    first, last = text.find("{"), text.rfind("}")
    has_json_object = first != -1 and last > first
    code_only = "".join(seg for is_string, seg in split_string_literals(text) if not is_string)
    has_comments = bool(
        _BLOCK_COMMENT.search(code_only)
        or _MARKUP_COMMENT.search(code_only)
        or re.search(r"(?m)(?:^|\s)(?://|#)", code_only)
    )
    has_assignment_prefix = bool(_DECLARATION.match(text))

    if has_code_block:
        kind = FormatKind.MARKDOWN
    elif has_json_object:
        kind = FormatKind.JSON
    else:
        kind = FormatKind.PLAIN

    return ContentFormat(
        kind=kind,
        has_code_block=has_code_block,
        has_json_object=has_json_object,
        has_comments=has_comments,
        has_assignment_prefix=has_assignment_prefix,
        line_count=text.count("\n") + 1 if text else 0,
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ContentPreprocessor:
    """Runs the cleaning rules in order over adapted content."""

    def __init__(
        self,
        options: PreprocessOptions | None = None,
        rules: tuple[tuple[str, Callable[[str], str]], ...] = CLEANING_RULES,
    ):
        self.options = options or PreprocessOptions()
        self.rules = rules

    def process(
        self,
        adapted: AdaptedResponse | str,
        options: PreprocessOptions | None = None,
    ) -> ProcessedContent:
        """Clean content and record which rules changed it.

        Args:
            adapted: Adapter output, or raw text.
            options: Rule toggles for this call; defaults to the instance options.

        Returns:
            ProcessedContent with the cleaned text and rule bookkeeping.
        """
        start = time.monotonic()
        opts = options or self.options
        text = adapted.content if isinstance(adapted, AdaptedResponse) else (adapted or "")

        fmt = detect_format(text)
        applied: list[str] = []
        skipped: list[str] = []
        cleaned = text

        for _ in range(MAX_CLEANING_PASSES):
            before = cleaned
            for name, rule in self.rules:
                if not opts.enabled(name):
                    continue
                try:
                    result = rule(cleaned)
                except Exception as e:
                    if name not in skipped:
                        logger.warning("Cleaning rule %s failed, skipping: %s", name, e)
                        skipped.append(name)
                    continue
                if result != cleaned:
                    if name not in applied:
                        applied.append(name)
                    cleaned = result
            if cleaned == before:
                break

        elapsed_ms = round((time.monotonic() - start) * 1000, 3)
        logger.debug(
            "Preprocessed content: format=%s, rules=%s, chars %d -> %d",
            fmt.kind.value,
            ",".join(applied) or "-",
            len(text),
            len(cleaned),
        )
        return ProcessedContent(
            content=cleaned,
            format=fmt,
            applied_rules=tuple(applied),
            skipped_rules=tuple(skipped),
            input_length=len(text),
            output_length=len(cleaned),
            elapsed_ms=elapsed_ms,
        )
