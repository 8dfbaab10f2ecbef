"""
SATS algebraic values and their JSON wire encoding.

Each value variant maps to exactly one wire shape:

- ``SumValue``: object with a single key, the tag, whose value is the payload
- ``ProductValue``: positional array
- ``BuiltinValue``: the bare JSON scalar

Decoding here is untyped: the shape of the JSON alone selects the variant.
This is the wire-compatible baseline; ``sats.typed`` provides strict,
schema-directed decoding on top of it.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Union

from ..exceptions import DecodeError
from .algebraic import split_tag

_SCALAR_TYPES = (bool, int, float, str)


@dataclass(frozen=True)
class SumValue:
    """
    Instance of a sum type.

    Attributes:
        tag: Name of the active variant
        value: Payload of the active variant
    """

    tag: str
    value: "AlgebraicValue"

    def to_json(self) -> dict[str, Any]:
        return {self.tag: self.value.to_json()}

    @classmethod
    def from_json(cls, data: Any) -> "SumValue":
        """
        Decode ``{"tag": payload}``.

        Raises:
            AmbiguousSumTagError: If the object has zero or several keys
        """
        tag, payload = split_tag(data, "Sum value")
        return cls(tag, value_from_json(payload))

    def to_python(self) -> tuple[str, Any]:
        return (self.tag, self.value.to_python())


@dataclass(frozen=True)
class ProductValue:
    """
    Instance of a product type.

    Attributes:
        elements: Element values in positional order
    """

    elements: tuple["AlgebraicValue", ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "elements", tuple(self.elements))

    def __len__(self) -> int:
        return len(self.elements)

    def __getitem__(self, index: int) -> "AlgebraicValue":
        return self.elements[index]

    def __iter__(self) -> Iterator["AlgebraicValue"]:
        return iter(self.elements)

    def to_json(self) -> list[Any]:
        return [element.to_json() for element in self.elements]

    @classmethod
    def from_json(cls, data: Any, expected_len: int | None = None) -> "ProductValue":
        """
        Decode a positional array.

        Args:
            data: Decoded JSON value
            expected_len: Element count of the product type, when known

        Raises:
            DecodeError: If data is not an array or its length disagrees
        """
        if not isinstance(data, list):
            raise DecodeError("Product value must be a JSON array", data)
        if expected_len is not None and len(data) != expected_len:
            raise DecodeError(f"Product value has {len(data)} elements, expected {expected_len}", data)
        return cls(tuple(value_from_json(item) for item in data))

    def to_python(self) -> tuple[Any, ...]:
        return tuple(element.to_python() for element in self.elements)


@dataclass(frozen=True)
class BuiltinValue:
    """
    Instance of a builtin type.

    ``value`` is a scalar (bool, int, float, str). Values decoded in strict
    mode may also hold a tuple of element values (Array) or a tuple of
    ``(key, value)`` pairs (Map, wire form ``[[k, v], ...]``).
    """

    value: Any

    def __post_init__(self) -> None:
        if isinstance(self.value, _SCALAR_TYPES):
            return
        if isinstance(self.value, (list, tuple)):
            items = []
            for item in self.value:
                if isinstance(item, tuple) and len(item) == 2 and all(is_algebraic_value(v) for v in item):
                    items.append(item)
                elif is_algebraic_value(item):
                    items.append(item)
                else:
                    raise ValueError(f"Invalid builtin container item: {item!r}")
            object.__setattr__(self, "value", tuple(items))
            return
        raise ValueError(f"Invalid builtin value: {self.value!r}")

    @property
    def is_scalar(self) -> bool:
        return isinstance(self.value, _SCALAR_TYPES)

    def to_json(self) -> Any:
        if self.is_scalar:
            return self.value
        return [
            [item[0].to_json(), item[1].to_json()] if isinstance(item, tuple) else item.to_json()
            for item in self.value
        ]

    @classmethod
    def from_json(cls, data: Any) -> "BuiltinValue":
        if not isinstance(data, _SCALAR_TYPES):
            raise DecodeError("Builtin value must be a JSON scalar", data)
        return cls(data)

    def to_python(self) -> Any:
        if self.is_scalar:
            return self.value
        return tuple(
            (item[0].to_python(), item[1].to_python()) if isinstance(item, tuple) else item.to_python()
            for item in self.value
        )


AlgebraicValue = Union[SumValue, ProductValue, BuiltinValue]

ALGEBRAIC_VALUE_CLASSES = (SumValue, ProductValue, BuiltinValue)


def is_algebraic_value(obj: Any) -> bool:
    return isinstance(obj, ALGEBRAIC_VALUE_CLASSES)


def value_from_json(data: Any) -> AlgebraicValue:
    """
    Decode a value from parsed JSON, selecting the variant by shape.

    Raises:
        DecodeError: For JSON null or a malformed sum object
    """
    if isinstance(data, dict):
        return SumValue.from_json(data)
    if isinstance(data, list):
        return ProductValue.from_json(data)
    if data is None:
        raise DecodeError("null is not a valid algebraic value")
    return BuiltinValue.from_json(data)


def encode_value(value: AlgebraicValue) -> str:
    """Serialize a value to compact JSON text."""
    return json.dumps(value.to_json(), separators=(",", ":"))


def decode_value(raw: str | bytes) -> AlgebraicValue:
    """
    Parse JSON text into a value.

    Raises:
        DecodeError: If the text is not valid JSON or not a valid value
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"Invalid JSON in algebraic value ({e})", raw) from e
    return value_from_json(data)
