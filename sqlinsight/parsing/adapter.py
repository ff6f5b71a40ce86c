"""Response Adapter: pipeline step 1.

Normalizes heterogeneous model-client response envelopes into plain text.

Recognised shapes, probed most specific first:
  - Completion-choice: choices[0].message.content (OpenAI-style clients)
  - Nested wrapper: kwargs.content / message.content next to a top-level
    content field (LangChain-style message objects); the nested field wins
    when the top-level one is empty
  - Typed blocks: content = [{"type": "text", "text": ...}] (Anthropic-style)
  - Fallback: plain strings as-is, anything else stringified

Both mappings and attribute-style SDK objects are accepted. The adapter
never raises.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from sqlinsight.parsing.types import AdaptedResponse, ShapeKind

logger = logging.getLogger(__name__)

MATCH_CONFIDENCE = 1.0
EMPTY_MATCH_CONFIDENCE = 0.2
PLAIN_TEXT_CONFIDENCE = 0.5
STRINGIFIED_CONFIDENCE = 0.3

_MISSING = object()

# Nested content locations of wrapper-style message objects, in priority order
_NESTED_CONTENT_PATHS = (
    ("kwargs", "content"),
    ("lc_kwargs", "content"),
    ("message", "content"),
)
# Secondary location, read only when the top-level content is empty
_ADDITIONAL_CONTENT_PATH = ("additional_kwargs", "content")


def _get(obj: Any, key: str | int) -> Any:
    """Read a key, index or attribute; returns _MISSING when absent."""
    if obj is None:
        return _MISSING
    if isinstance(key, int):
        if isinstance(obj, (list, tuple)) and -len(obj) <= key < len(obj):
            return obj[key]
        return _MISSING
    if isinstance(obj, Mapping):
        return obj.get(key, _MISSING)
    if isinstance(obj, (str, bytes, list, tuple)):
        return _MISSING
    return getattr(obj, key, _MISSING)


def _get_path(obj: Any, path: tuple[str | int, ...]) -> Any:
    for key in path:
        obj = _get(obj, key)
        if obj is _MISSING:
            return _MISSING
    return obj


def _path_label(path: tuple[str | int, ...]) -> str:
    label = ""
    for key in path:
        label += f"[{key}]" if isinstance(key, int) else (f".{key}" if label else key)
    return label


# ---------------------------------------------------------------------------
# Shape probes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Extraction:
    content: str
    path: str


@dataclass(frozen=True)
class ShapeProbe:
    """One recognised envelope shape: a match test plus its extractor."""

    kind: ShapeKind
    matches: Callable[[Any], bool]
    extract: Callable[[Any], Extraction]


def _as_text(value: Any) -> str:
    if value is None or value is _MISSING:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (list, tuple)):
        texts = [_get(block, "text") for block in value if _get(block, "type") == "text"]
        if texts:
            return "".join(t for t in texts if isinstance(t, str))
    return _stringify(value)


def _matches_choice(raw: Any) -> bool:
    choices = _get(raw, "choices")
    if not isinstance(choices, (list, tuple)) or not choices:
        return False
    first = choices[0]
    return _get_path(first, ("message", "content")) is not _MISSING or _get(first, "text") is not _MISSING


def _extract_choice(raw: Any) -> Extraction:
    for path in (("choices", 0, "message", "content"), ("choices", 0, "text")):
        value = _get_path(raw, path)
        if value is not _MISSING:
            return Extraction(_as_text(value), _path_label(path))
    return Extraction("", "choices")


def _matches_nested(raw: Any) -> bool:
    if isinstance(raw, (str, bytes)):
        return False
    if any(_get_path(raw, path) is not _MISSING for path in _NESTED_CONTENT_PATHS + (_ADDITIONAL_CONTENT_PATH,)):
        return True
    return isinstance(_get(raw, "content"), str) or isinstance(_get(raw, "text"), str)


def _extract_nested(raw: Any) -> Extraction:
    top_level = _get(raw, "content")
    top_path = "content"
    if not isinstance(top_level, str):
        top_level = _get(raw, "text")
        top_path = "text"

    for path in _NESTED_CONTENT_PATHS:
        nested = _get_path(raw, path)
        if nested is _MISSING or nested is None:
            continue
        nested_text = _as_text(nested)
        # The inner field takes priority whenever it has content, and always
        # when the sibling top-level field is empty.
        if nested_text or not (isinstance(top_level, str) and top_level):
            return Extraction(nested_text, _path_label(path))

    if isinstance(top_level, str) and top_level:
        return Extraction(top_level, top_path)
    additional = _as_text(_get_path(raw, _ADDITIONAL_CONTENT_PATH))
    if additional:
        return Extraction(additional, _path_label(_ADDITIONAL_CONTENT_PATH))
    if isinstance(top_level, str):
        return Extraction(top_level, top_path)
    return Extraction("", "content")


def _matches_typed_blocks(raw: Any) -> bool:
    content = _get(raw, "content")
    if isinstance(content, (list, tuple)) and content:
        return any(_get(block, "type") is not _MISSING for block in content)
    return isinstance(_get(raw, "completion"), str)


def _extract_typed_blocks(raw: Any) -> Extraction:
    content = _get(raw, "content")
    if isinstance(content, (list, tuple)):
        for index, block in enumerate(content):
            if _get(block, "type") == "text":
                text = _get(block, "text")
                return Extraction(_as_text(text), f"content[{index}].text")
    completion = _get(raw, "completion")
    if isinstance(completion, str):
        return Extraction(completion, "completion")
    return Extraction("", "content")


SHAPE_PROBES: tuple[ShapeProbe, ...] = (
    ShapeProbe(ShapeKind.CHOICE_COMPLETION, _matches_choice, _extract_choice),
    ShapeProbe(ShapeKind.NESTED_WRAPPER, _matches_nested, _extract_nested),
    ShapeProbe(ShapeKind.TYPED_BLOCKS, _matches_typed_blocks, _extract_typed_blocks),
)


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------


def _stringify(value: Any) -> str:
    if isinstance(value, (Mapping, list, tuple)):
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            pass
    try:
        return str(value)
    except Exception:
        return f"<{type(value).__name__}>"


def _debug_info(raw: Any) -> dict[str, Any]:
    info: dict[str, Any] = {"raw_type": type(raw).__name__}
    if isinstance(raw, Mapping):
        info["keys"] = [str(k) for k in list(raw.keys())[:20]]
    elif raw is not None and not isinstance(raw, (str, bytes, list, tuple)) and hasattr(raw, "__dict__"):
        info["keys"] = [k for k in vars(raw) if not k.startswith("_")][:20]
    return info


class ResponseAdapter:
    """Extracts plain text from any raw model response."""

    def __init__(self, probes: tuple[ShapeProbe, ...] = SHAPE_PROBES):
        self.probes = probes

    def adapt(self, raw: Any, *, collect_debug: bool = True) -> AdaptedResponse:
        debug: dict[str, Any] = {}
        if collect_debug:
            try:
                debug = _debug_info(raw)
            except Exception as e:
                debug = {"raw_type": type(raw).__name__, "debug_error": str(e)}

        if raw is None:
            return AdaptedResponse(
                content="",
                shape_kind=ShapeKind.OPAQUE,
                extraction_path="",
                confidence=0.0,
                debug=debug,
            )
        if isinstance(raw, str):
            return AdaptedResponse(
                content=raw,
                shape_kind=ShapeKind.PLAIN_TEXT,
                extraction_path="",
                confidence=PLAIN_TEXT_CONFIDENCE,
                debug=debug,
            )
        if isinstance(raw, bytes):
            return AdaptedResponse(
                content=raw.decode("utf-8", errors="replace"),
                shape_kind=ShapeKind.PLAIN_TEXT,
                extraction_path="",
                confidence=PLAIN_TEXT_CONFIDENCE,
                debug=debug,
            )

        for probe in self.probes:
            try:
                if not probe.matches(raw):
                    continue
                extraction = probe.extract(raw)
            except Exception as e:
                logger.debug("Shape probe %s failed: %s", probe.kind.value, e)
                continue

            confidence = MATCH_CONFIDENCE if extraction.content.strip() else EMPTY_MATCH_CONFIDENCE
            logger.debug(
                "Adapted response: shape=%s, path=%s, chars=%d",
                probe.kind.value,
                extraction.path,
                len(extraction.content),
                extra={"shape_kind": probe.kind.value},
            )
            return AdaptedResponse(
                content=extraction.content,
                shape_kind=probe.kind,
                extraction_path=extraction.path,
                confidence=confidence,
                debug=debug,
            )

        logger.info("Unrecognised response shape %s, stringifying", type(raw).__name__)
        return AdaptedResponse(
            content=_stringify(raw),
            shape_kind=ShapeKind.OPAQUE,
            extraction_path="",
            confidence=STRINGIFIED_CONFIDENCE,
            debug=debug,
        )
