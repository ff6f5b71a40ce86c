"""Declarative result schemas for analysis dimensions.

A schema lists the fields a dimension's result must carry, their runtime
types and their defaults. It is used to:
  - validate parsed data (missing / invalid fields are recorded, never raised)
  - conform parsed data (coerce near-miss values, fill gaps from defaults)
  - synthesise the fallback object when nothing could be parsed
  - identify the schema in parse-cache keys (``fingerprint``)
"""

from __future__ import annotations

import copy
import hashlib
import json
import math
import re
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Any, Mapping

from sqlinsight.exceptions import SchemaDefinitionError
from sqlinsight.parsing.types import ValidationReport


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


_ZERO_VALUES: dict[FieldType, Any] = {
    FieldType.STRING: "",
    FieldType.NUMBER: 0,
    FieldType.INTEGER: 0,
    FieldType.BOOLEAN: False,
    FieldType.ARRAY: [],
    FieldType.OBJECT: {},
}

_NUMERIC_STRING = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*%?\s*$")
_TRUE_STRINGS = {"true", "yes", "1"}
_FALSE_STRINGS = {"false", "no", "0"}


def matches_type(value: Any, field_type: FieldType) -> bool:
    """Check a runtime value against a schema type.

    bool is not a number, and neither are NaN or infinities.
    """
    if field_type == FieldType.STRING:
        return isinstance(value, str)
    if field_type == FieldType.NUMBER:
        if isinstance(value, bool):
            return False
        return isinstance(value, int) or (isinstance(value, float) and math.isfinite(value))
    if field_type == FieldType.INTEGER:
        if isinstance(value, bool):
            return False
        return isinstance(value, int) or (isinstance(value, float) and value.is_integer())
    if field_type == FieldType.BOOLEAN:
        return isinstance(value, bool)
    if field_type == FieldType.ARRAY:
        return isinstance(value, list)
    if field_type == FieldType.OBJECT:
        return isinstance(value, dict)
    return False


@dataclass(frozen=True)
class FieldSpec:
    """One declared result field.

    ``default=None`` means the type's zero value ("", 0, False, [], {}).
    """

    name: str
    type: FieldType
    default: Any = None
    required: bool = True
    description: str = ""

    def default_value(self) -> Any:
        if self.default is None:
            return copy.deepcopy(_ZERO_VALUES[self.type])
        return copy.deepcopy(self.default)

    def coerce(self, value: Any) -> tuple[bool, Any]:
        """Try to turn a near-miss value into this field's type.

        Returns:
            (ok, value). ``ok`` is False when no sensible coercion exists.
        """
        if matches_type(value, self.type):
            if self.type == FieldType.INTEGER and isinstance(value, float):
                return True, int(value)
            return True, copy.deepcopy(value)

        if self.type in (FieldType.NUMBER, FieldType.INTEGER) and isinstance(value, str):
            m = _NUMERIC_STRING.match(value)
            if m:
                number = float(m.group(1))
                if self.type == FieldType.INTEGER:
                    return (True, int(number)) if number.is_integer() else (False, None)
                return True, int(number) if number.is_integer() and "." not in m.group(1) else number
        elif self.type == FieldType.BOOLEAN:
            if isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS | _FALSE_STRINGS:
                return True, value.strip().lower() in _TRUE_STRINGS
            if isinstance(value, int) and not isinstance(value, bool) and value in (0, 1):
                return True, bool(value)
        elif self.type == FieldType.STRING:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return True, str(value)
        return False, None


@dataclass(frozen=True)
class DimensionSchema:
    """Ordered collection of field declarations for one dimension."""

    name: str
    fields: tuple[FieldSpec, ...]

    def __post_init__(self) -> None:
        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise SchemaDefinitionError(f"Schema {self.name!r} declares duplicate fields")

    # -- lookups ------------------------------------------------------------

    @property
    def required_fields(self) -> tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if f.required)

    @property
    def optional_fields(self) -> tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if not f.required)

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def get_field(self, name: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    @cached_property
    def fingerprint(self) -> str:
        """Stable identity of this declaration, used in parse-cache keys."""
        declaration = {
            "name": self.name,
            "fields": [[f.name, f.type.value, f.required, f.default] for f in self.fields],
        }
        encoded = json.dumps(declaration, sort_keys=True, default=str, ensure_ascii=False)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    # -- data operations ----------------------------------------------------

    def defaults(self) -> dict[str, Any]:
        """A fresh object built entirely from declared defaults."""
        return {f.name: f.default_value() for f in self.fields}

    def validate(self, data: Mapping[str, Any]) -> ValidationReport:
        missing: list[str] = []
        invalid: list[str] = []
        for spec in self.fields:
            value = data.get(spec.name)
            if value is None:
                if spec.required:
                    missing.append(spec.name)
                continue
            if not matches_type(value, spec.type):
                invalid.append(spec.name)
        return ValidationReport(missing_fields=tuple(missing), invalid_fields=tuple(invalid))

    def conform(self, data: Mapping[str, Any] | None) -> dict[str, Any]:
        """Return a copy of ``data`` with every declared field present and well-typed.

        Near-miss values are coerced; anything else falls back to the field
        default. Undeclared keys are kept as-is after the declared ones.
        """
        data = data or {}
        result: dict[str, Any] = {}
        for spec in self.fields:
            if data.get(spec.name) is None:
                result[spec.name] = spec.default_value()
                continue
            ok, value = spec.coerce(data[spec.name])
            result[spec.name] = value if ok else spec.default_value()
        for key, value in data.items():
            if key not in result:
                result[key] = copy.deepcopy(value)
        return result

    def describe(self) -> str:
        """Human-readable field listing for prompts."""
        lines = []
        for spec in self.fields:
            marker = "required" if spec.required else "optional"
            line = f"- {spec.name} ({spec.type.value}, {marker})"
            if spec.description:
                line += f": {spec.description}"
            lines.append(line)
        return "\n".join(lines)

    # -- construction -------------------------------------------------------

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> DimensionSchema:
        """Build a schema from a declarative mapping.

        Accepted form::

            {"name": "performance",
             "fields": {"score": {"type": "number", "default": 0},
                        "summary": "string",
                        "notes": {"type": "array", "required": False}}}
        """
        name = mapping.get("name")
        raw_fields = mapping.get("fields")
        if not isinstance(name, str) or not name:
            raise SchemaDefinitionError("Schema mapping needs a non-empty 'name'")
        if not isinstance(raw_fields, Mapping) or not raw_fields:
            raise SchemaDefinitionError(f"Schema {name!r} needs a non-empty 'fields' mapping")

        specs: list[FieldSpec] = []
        for field_name, declaration in raw_fields.items():
            if isinstance(declaration, str):
                declaration = {"type": declaration}
            if not isinstance(declaration, Mapping):
                raise SchemaDefinitionError(f"Field {field_name!r} must be a type name or a mapping")
            try:
                field_type = FieldType(declaration.get("type", ""))
            except ValueError as e:
                raise SchemaDefinitionError(
                    f"Field {field_name!r} has unknown type {declaration.get('type')!r}"
                ) from e
            default = declaration.get("default")
            if default is not None and not matches_type(default, field_type):
                raise SchemaDefinitionError(f"Default for {field_name!r} is not a {field_type.value}")
            specs.append(
                FieldSpec(
                    name=field_name,
                    type=field_type,
                    default=default,
                    required=bool(declaration.get("required", True)),
                    description=str(declaration.get("description", "")),
                )
            )
        return cls(name=name, fields=tuple(specs))
