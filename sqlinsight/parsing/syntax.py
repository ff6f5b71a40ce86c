"""String-aware JSON syntax repairs.

Every rewrite here only touches text outside double-quoted string literals,
so values such as ``"http://x"`` or ``"a, b: c"`` survive untouched. The
helpers are shared by the preprocessor (light repairs), the parser's second
strategy and the rule-based repair pass (structural repairs).
"""

from __future__ import annotations

import re

_TRAILING_COMMA = re.compile(r",(?:\s*,)*(\s*[}\]])")
_UNQUOTED_KEY = re.compile(r"([{,]\s*)([A-Za-z_$][\w$-]*)(\s*:)")
_PY_LITERALS = (
    (re.compile(r"\bTrue\b"), "true"),
    (re.compile(r"\bFalse\b"), "false"),
    (re.compile(r"\bNone\b"), "null"),
)
_DANGLING_SEPARATOR = re.compile(r"[,\s]+$")
_DANGLING_COLON = re.compile(r":\s*$")

_VALID_ESCAPES = set('"\\/bfnrt')
_HEX = set("0123456789abcdefABCDEF")

_CLOSERS = {"{": "}", "[": "]"}


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


def split_string_literals(text: str) -> list[tuple[bool, str]]:
    """Split text into ``(is_string, segment)`` pieces.

    String segments include their quotes. An unterminated literal runs to
    the end of the text.
    """
    segments: list[tuple[bool, str]] = []
    n = len(text)
    start = 0
    i = 0
    while i < n:
        if text[i] != '"':
            i += 1
            continue
        if i > start:
            segments.append((False, text[start:i]))
        j = i + 1
        while j < n:
            if text[j] == "\\":
                j += 2
                continue
            if text[j] == '"':
                break
            j += 1
        end = min(j + 1, n)
        segments.append((True, text[i:end]))
        i = start = end
    if start < n:
        segments.append((False, text[start:]))
    return segments


def _map_code(text: str, func) -> str:
    return "".join(seg if is_string else func(seg) for is_string, seg in split_string_literals(text))


def scan_structure(text: str) -> tuple[bool, list[str]]:
    """Scan text and report whether it ends inside a string, plus the open-bracket stack."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in ("}", "]") and stack and _CLOSERS[stack[-1]] == ch:
            stack.pop()
    return in_string, stack


def find_balanced_end(text: str, start: int) -> int | None:
    """Index of the bracket closing the one at ``start``, or None if it never closes."""
    opener = text[start]
    closer = _CLOSERS.get(opener)
    if closer is None:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return i
    return None


# ---------------------------------------------------------------------------
# Light repairs
# ---------------------------------------------------------------------------


def remove_trailing_commas(text: str) -> str:
    return _map_code(text, lambda seg: _TRAILING_COMMA.sub(r"\1", seg))


def quote_unquoted_keys(text: str) -> str:
    return _map_code(text, lambda seg: _UNQUOTED_KEY.sub(r'\1"\2"\3', seg))


def apply_syntax_repairs(text: str) -> str:
    """Trailing-comma removal and key quoting."""
    return remove_trailing_commas(quote_unquoted_keys(text))


# ---------------------------------------------------------------------------
# Structural repairs
# ---------------------------------------------------------------------------


def convert_single_quotes(text: str) -> str:
    """Rewrite single-quoted string literals as double-quoted ones."""
    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '"':
            end = i + 1
            while end < n and text[end] != '"':
                end += 2 if text[end] == "\\" else 1
            out.append(text[i : end + 1])
            i = end + 1
            continue
        if ch != "'":
            out.append(ch)
            i += 1
            continue
        j = i + 1
        body: list[str] = []
        while j < n and text[j] != "'":
            if text[j] == "\\" and j + 1 < n:
                nxt = text[j + 1]
                body.append("'" if nxt == "'" else text[j : j + 2])
                j += 2
                continue
            body.append('\\"' if text[j] == '"' else text[j])
            j += 1
        out.append('"' + "".join(body) + '"')
        i = j + 1
    return "".join(out)


def replace_python_literals(text: str) -> str:
    def _sub(seg: str) -> str:
        for pattern, replacement in _PY_LITERALS:
            seg = pattern.sub(replacement, seg)
        return seg

    return _map_code(text, _sub)


def _clean_string_literal(literal: str) -> str:
    out: list[str] = []
    i = 0
    n = len(literal)
    while i < n:
        ch = literal[i]
        if ch == "\\":
            nxt = literal[i + 1] if i + 1 < n else ""
            if nxt in _VALID_ESCAPES and nxt:
                out.append(literal[i : i + 2])
                i += 2
                continue
            if nxt == "u" and len(literal) >= i + 6 and all(c in _HEX for c in literal[i + 2 : i + 6]):
                out.append(literal[i : i + 6])
                i += 6
                continue
            out.append("\\\\")
            i += 1
            continue
        if ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\t":
            out.append("\\t")
        elif ord(ch) >= 0x20:
            out.append(ch)
        i += 1
    return "".join(out)


def fix_string_escapes(text: str) -> str:
    """Escape raw control characters and invalid backslash escapes inside strings."""
    return "".join(_clean_string_literal(seg) if is_string else seg for is_string, seg in split_string_literals(text))


def close_open_structures(text: str) -> str:
    """Close an unterminated string, drop dangling separators and append missing closers."""
    in_string, stack = scan_structure(text)
    if in_string:
        if text.endswith("\\"):
            text = text[:-1]
        text += '"'
    if stack:
        if _DANGLING_COLON.search(text):
            text = _DANGLING_COLON.sub(": null", text)
        text = _DANGLING_SEPARATOR.sub("", text)
        text += "".join(_CLOSERS[opener] for opener in reversed(stack))
    return text


def structural_repair(text: str) -> str:
    """Full rule-based repair used once every parse strategy has failed."""
    text = convert_single_quotes(text)
    text = replace_python_literals(text)
    text = fix_string_escapes(text)
    text = close_open_structures(text)
    return apply_syntax_repairs(text)
