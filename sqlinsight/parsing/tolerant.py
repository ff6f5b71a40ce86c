"""Forgiving JSON reader for truncated or hand-written model output.

Reads as much structure as it can instead of failing on the first error:
  - open strings, objects and arrays are closed at end of input
  - single-quoted strings, unquoted keys and ``=`` separators are accepted
  - missing and trailing commas are tolerated
  - Python / JS literals (True, None, undefined, NaN) are understood
  - a key whose value was cut off is dropped
"""

from __future__ import annotations

import re
from typing import Any

_NUMBER = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_BARE_KEY = re.compile(r"[A-Za-z_$][\w$-]*")
_BARE_WORD_END = set(",}]\n")
_WHITESPACE = set(" \t\r\n")

_LITERALS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "none": None,
    "undefined": None,
    "nan": None,
}

_ESCAPES = {
    '"': '"',
    "'": "'",
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}

MAX_DEPTH = 200


class _Nothing:
    """Marker for 'no value could be read here'."""


NOTHING = _Nothing()


class TolerantReader:
    """Single-use recursive-descent reader over ``text`` starting at ``pos``."""

    def __init__(self, text: str, pos: int = 0):
        self.text = text
        self.pos = pos
        self.truncated = False

    # -- helpers ------------------------------------------------------------

    def _eof(self) -> bool:
        return self.pos >= len(self.text)

    def _skip_whitespace(self) -> None:
        while not self._eof() and self.text[self.pos] in _WHITESPACE:
            self.pos += 1

    def _skip_separators(self) -> None:
        while not self._eof() and (self.text[self.pos] in _WHITESPACE or self.text[self.pos] == ","):
            self.pos += 1

    # -- values -------------------------------------------------------------

    def read_value(self, depth: int = 0) -> Any:
        self._skip_whitespace()
        if self._eof():
            self.truncated = True
            return NOTHING
        if depth > MAX_DEPTH:
            return NOTHING

        ch = self.text[self.pos]
        if ch == "{":
            return self._read_object(depth)
        if ch == "[":
            return self._read_array(depth)
        if ch in ('"', "'"):
            return self._read_string(ch)
        if ch.isdigit() or ch in "-+.":
            return self._read_number()
        if ch.isalpha() or ch in "_$":
            return self._read_bare_word()
        return NOTHING

    def _read_object(self, depth: int) -> dict[str, Any]:
        self.pos += 1  # consume "{"
        result: dict[str, Any] = {}
        while True:
            self._skip_separators()
            if self._eof():
                self.truncated = True
                return result
            ch = self.text[self.pos]
            if ch == "}":
                self.pos += 1
                return result
            if ch == "]":
                self.pos += 1
                continue

            quoted = ch in ('"', "'")
            key = self._read_key()
            if key is None:
                self.pos += 1
                continue

            self._skip_whitespace()
            if self._eof():
                self.truncated = True
                return result
            if self.text[self.pos] in ":=":
                self.pos += 1
            elif not quoted or self.text[self.pos] in ",}":
                continue

            value = self.read_value(depth + 1)
            if value is NOTHING:
                if self.truncated:
                    return result
                continue
            result[key] = value

    def _read_array(self, depth: int) -> list[Any]:
        self.pos += 1  # consume "["
        items: list[Any] = []
        while True:
            self._skip_separators()
            if self._eof():
                self.truncated = True
                return items
            ch = self.text[self.pos]
            if ch == "]":
                self.pos += 1
                return items
            if ch == "}":
                self.pos += 1
                continue
            value = self.read_value(depth + 1)
            if value is NOTHING:
                if self.truncated:
                    return items
                self.pos += 1
                continue
            items.append(value)

    def _read_key(self) -> str | None:
        ch = self.text[self.pos]
        if ch in ('"', "'"):
            return self._read_string(ch)
        m = _BARE_KEY.match(self.text, self.pos)
        if not m:
            return None
        self.pos = m.end()
        return m.group(0)

    def _read_string(self, quote: str) -> str:
        self.pos += 1  # consume opening quote
        chars: list[str] = []
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch == quote:
                self.pos += 1
                return "".join(chars)
            if ch == "\\" and self.pos + 1 < len(text):
                nxt = text[self.pos + 1]
                if nxt == "u":
                    code = text[self.pos + 2 : self.pos + 6]
                    try:
                        chars.append(chr(int(code, 16)))
                        self.pos += 6
                        continue
                    except ValueError:
                        pass
                chars.append(_ESCAPES.get(nxt, nxt))
                self.pos += 2
                continue
            chars.append(ch)
            self.pos += 1
        self.truncated = True
        return "".join(chars)

    def _read_number(self) -> Any:
        m = _NUMBER.match(self.text, self.pos)
        if not m:
            self.pos += 1
            return NOTHING
        self.pos = m.end()
        literal = m.group(0).lstrip("+")
        if re.fullmatch(r"-?\d+", literal):
            return int(literal)
        try:
            return float(literal)
        except ValueError:
            return NOTHING

    def _read_bare_word(self) -> Any:
        start = self.pos
        while not self._eof() and self.text[self.pos] not in _BARE_WORD_END:
            self.pos += 1
        word = self.text[start : self.pos].strip()
        lowered = word.lower()
        if lowered in _LITERALS:
            return _LITERALS[lowered]
        return word


def read_value_at(text: str, pos: int) -> tuple[Any, int]:
    """Read one value starting at ``pos``; returns ``(value, end_pos)``, value may be NOTHING."""
    reader = TolerantReader(text, pos)
    value = reader.read_value()
    return value, reader.pos


def parse_tolerant(text: str) -> dict[str, Any] | None:
    """Parse the first object in ``text``, closing whatever was left open.

    Returns None when there is no object or nothing could be read from it.
    """
    start = text.find("{")
    if start == -1:
        return None
    value = TolerantReader(text, start).read_value()
    if isinstance(value, dict) and value:
        return value
    return None
