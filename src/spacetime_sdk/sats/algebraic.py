"""
SATS algebraic types.

An algebraic type is exactly one of four variants:

- ``SumType``: a tagged union of variants
- ``ProductType``: an ordered sequence of (optionally named) elements
- ``BuiltinType``: a primitive, or an ``Array``/``Map`` of other types
- ``TypeRef``: an index into a ``Typespace``

JSON form, as found in schema documents::

    {"Sum": {"variants": [{"algebraic_type": ..., "name": {"some": "a"}}]}}
    {"Product": {"elements": [{"algebraic_type": ..., "name": {"none": []}}]}}
    {"Builtin": {"I32": []}}
    {"Builtin": {"Array": <type>}}
    {"Builtin": {"Map": {"key_ty": <type>, "ty": <type>}}}
    {"Ref": 3}

Decoding also accepts the flattened builtin form (``{"I32": []}``) that
servers emit, and plain string or null names.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, ClassVar, Union

from pydantic import GetCoreSchemaHandler
from pydantic_core import CoreSchema, core_schema

from ..exceptions import AmbiguousSumTagError, DecodeError


class TypeKind(StrEnum):
    """Discriminant of an algebraic type."""

    SUM = "Sum"
    PRODUCT = "Product"
    BUILTIN = "Builtin"
    REF = "Ref"


class BuiltinKind(StrEnum):
    """Primitive and container builtin types."""

    BOOL = "Bool"
    I8 = "I8"
    U8 = "U8"
    I16 = "I16"
    U16 = "U16"
    I32 = "I32"
    U32 = "U32"
    I64 = "I64"
    U64 = "U64"
    I128 = "I128"
    U128 = "U128"
    F32 = "F32"
    F64 = "F64"
    STRING = "String"
    ARRAY = "Array"
    MAP = "Map"


_BUILTIN_NAMES = frozenset(kind.value for kind in BuiltinKind)

INTEGER_RANGES: dict[BuiltinKind, tuple[int, int]] = {
    BuiltinKind.I8: (-(2**7), 2**7 - 1),
    BuiltinKind.U8: (0, 2**8 - 1),
    BuiltinKind.I16: (-(2**15), 2**15 - 1),
    BuiltinKind.U16: (0, 2**16 - 1),
    BuiltinKind.I32: (-(2**31), 2**31 - 1),
    BuiltinKind.U32: (0, 2**32 - 1),
    BuiltinKind.I64: (-(2**63), 2**63 - 1),
    BuiltinKind.U64: (0, 2**64 - 1),
    BuiltinKind.I128: (-(2**127), 2**127 - 1),
    BuiltinKind.U128: (0, 2**128 - 1),
}

FLOAT_KINDS = frozenset({BuiltinKind.F32, BuiltinKind.F64})


def split_tag(data: Any, what: str) -> tuple[str, Any]:
    """
    Split a single-key tagged object into its tag and payload.

    Args:
        data: Decoded JSON value expected to look like ``{"Tag": payload}``
        what: Name of the construct, used in error messages

    Raises:
        DecodeError: If data is not an object
        AmbiguousSumTagError: If the object has zero or several keys
    """
    if not isinstance(data, dict):
        raise DecodeError(f"{what} must be a JSON object", data)
    if len(data) != 1:
        raise AmbiguousSumTagError(list(data), data)
    ((tag, payload),) = data.items()
    return tag, payload


def _name_to_json(name: str | None) -> dict[str, Any]:
    if name is None:
        return {"none": []}
    return {"some": name}


def _name_from_json(data: Any) -> str | None:
    if data is None or isinstance(data, str):
        return data
    tag, payload = split_tag(data, "optional name")
    if tag == "none":
        return None
    if tag == "some" and isinstance(payload, str):
        return payload
    raise DecodeError("Invalid optional name", data)


class _SatsJSONType:
    """Pydantic support: validate from and serialize to the SATS JSON form."""

    type_kind: ClassVar[TypeKind]

    @classmethod
    def __get_pydantic_core_schema__(
        cls,
        source_type: Any,
        handler: GetCoreSchemaHandler,
    ) -> CoreSchema:
        """Build a plain validator around ``from_json``."""
        return core_schema.no_info_plain_validator_function(
            cls._coerce,
            serialization=core_schema.plain_serializer_function_ser_schema(lambda value: value.to_json()),
        )

    @classmethod
    def _coerce(cls, value: Any) -> Any:
        if isinstance(value, cls):
            return value
        return cls.from_json(value)

    @classmethod
    def from_json(cls, data: Any) -> Any:
        """Decode a type of this variant from its JSON form."""
        decoded = algebraic_type_from_json(data)
        if not isinstance(decoded, cls):
            raise DecodeError(f"Expected a {cls.type_kind} type, got {decoded.type_kind}", data)
        return decoded

    def body_json(self) -> Any:
        raise NotImplementedError

    def to_json(self) -> dict[str, Any]:
        """Encode as a single-key object keyed by the type variant."""
        return {self.type_kind.value: self.body_json()}


@dataclass(frozen=True)
class TypeRef(_SatsJSONType):
    """
    Indirect reference to a type stored in a typespace.

    Attributes:
        index: Position of the referenced type in its typespace
    """

    index: int

    type_kind: ClassVar[TypeKind] = TypeKind.REF

    def __post_init__(self) -> None:
        if not isinstance(self.index, int) or isinstance(self.index, bool) or self.index < 0:
            raise ValueError(f"Type reference index must be a non-negative int, got {self.index!r}")

    def body_json(self) -> int:
        return self.index

    @classmethod
    def from_body(cls, body: Any) -> "TypeRef":
        if not isinstance(body, int) or isinstance(body, bool) or body < 0:
            raise DecodeError("Type reference must be a non-negative integer", body)
        return cls(body)


@dataclass(frozen=True)
class BuiltinType(_SatsJSONType):
    """
    Primitive builtin type, or an Array/Map over other types.

    Attributes:
        kind: Which builtin this is
        element: Element type (Array only)
        key: Key type (Map only)
        value: Value type (Map only)
    """

    kind: BuiltinKind
    element: "AlgebraicType | None" = None
    key: "AlgebraicType | None" = None
    value: "AlgebraicType | None" = None

    type_kind: ClassVar[TypeKind] = TypeKind.BUILTIN

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", BuiltinKind(self.kind))
        if self.kind is BuiltinKind.ARRAY:
            if self.element is None or self.key is not None or self.value is not None:
                raise ValueError("Array builtin requires exactly an element type")
        elif self.kind is BuiltinKind.MAP:
            if self.key is None or self.value is None or self.element is not None:
                raise ValueError("Map builtin requires exactly a key and a value type")
        elif self.element is not None or self.key is not None or self.value is not None:
            raise ValueError(f"{self.kind} builtin takes no type parameters")

    @classmethod
    def array(cls, element: "AlgebraicType") -> "BuiltinType":
        """Create an array type with the given element type."""
        return cls(BuiltinKind.ARRAY, element=element)

    @classmethod
    def map(cls, key: "AlgebraicType", value: "AlgebraicType") -> "BuiltinType":
        """Create a map type with the given key and value types."""
        return cls(BuiltinKind.MAP, key=key, value=value)

    @property
    def is_integer(self) -> bool:
        return self.kind in INTEGER_RANGES

    @property
    def is_float(self) -> bool:
        return self.kind in FLOAT_KINDS

    @property
    def integer_range(self) -> tuple[int, int] | None:
        """Inclusive (min, max) bounds for integer kinds, else None."""
        return INTEGER_RANGES.get(self.kind)

    def body_json(self) -> dict[str, Any]:
        if self.kind is BuiltinKind.ARRAY:
            assert self.element is not None
            return {"Array": self.element.to_json()}
        if self.kind is BuiltinKind.MAP:
            assert self.key is not None and self.value is not None
            return {"Map": {"key_ty": self.key.to_json(), "ty": self.value.to_json()}}
        return {self.kind.value: []}

    @classmethod
    def from_body(cls, body: Any) -> "BuiltinType":
        tag, payload = split_tag(body, "builtin type")
        if tag not in _BUILTIN_NAMES:
            raise DecodeError(f"Unknown builtin type '{tag}'", body)
        kind = BuiltinKind(tag)
        if kind is BuiltinKind.ARRAY:
            return cls.array(algebraic_type_from_json(payload))
        if kind is BuiltinKind.MAP:
            if not isinstance(payload, dict) or "key_ty" not in payload or "ty" not in payload:
                raise DecodeError("Map type requires 'key_ty' and 'ty'", body)
            return cls.map(algebraic_type_from_json(payload["key_ty"]), algebraic_type_from_json(payload["ty"]))
        return cls(kind)


@dataclass(frozen=True)
class _Member:
    algebraic_type: "AlgebraicType"
    name: str | None = None

    def to_json(self) -> dict[str, Any]:
        return {"algebraic_type": self.algebraic_type.to_json(), "name": _name_to_json(self.name)}

    @classmethod
    def from_json(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "algebraic_type" not in data:
            raise DecodeError(f"{cls.__name__} must be an object with 'algebraic_type'", data)
        return cls(algebraic_type_from_json(data["algebraic_type"]), _name_from_json(data.get("name")))


@dataclass(frozen=True)
class SumTypeVariant(_Member):
    """A variant of a sum type; its position is its tag index."""


@dataclass(frozen=True)
class ProductTypeElement(_Member):
    """An element of a product type; its position is significant."""


@dataclass(frozen=True)
class SumType(_SatsJSONType):
    """
    Tagged union type.

    Attributes:
        variants: Variants in tag order
    """

    variants: tuple[SumTypeVariant, ...] = ()

    type_kind: ClassVar[TypeKind] = TypeKind.SUM

    def __post_init__(self) -> None:
        object.__setattr__(self, "variants", tuple(self.variants))

    @classmethod
    def of(cls, *variants: tuple[str | None, "AlgebraicType"]) -> "SumType":
        """Create a sum type from (name, type) pairs."""
        return cls(tuple(SumTypeVariant(ty, name) for name, ty in variants))

    @classmethod
    def option(cls, some_type: "AlgebraicType") -> "SumType":
        """Create the ``some(T) | none()`` option type."""
        return cls.of(("some", some_type), ("none", ProductType()))

    @property
    def is_option(self) -> bool:
        return tuple(v.name for v in self.variants) == ("some", "none")

    def variant_index(self, tag: str) -> int | None:
        """
        Find a variant by tag.

        Named variants match by name; unnamed variants match by their
        position written as a decimal string.
        """
        for index, variant in enumerate(self.variants):
            if variant.name == tag:
                return index
        if tag.isascii() and tag.isdecimal():
            index = int(tag)
            if index < len(self.variants) and self.variants[index].name is None:
                return index
        return None

    def variant(self, tag: str) -> SumTypeVariant | None:
        index = self.variant_index(tag)
        return None if index is None else self.variants[index]

    def body_json(self) -> dict[str, Any]:
        return {"variants": [v.to_json() for v in self.variants]}

    @classmethod
    def from_body(cls, body: Any) -> "SumType":
        if not isinstance(body, dict) or not isinstance(body.get("variants"), list):
            raise DecodeError("Sum type requires a 'variants' list", body)
        return cls(tuple(SumTypeVariant.from_json(v) for v in body["variants"]))

    @classmethod
    def from_json(cls, data: Any) -> "SumType":
        if isinstance(data, dict) and "variants" in data:
            return cls.from_body(data)
        return super().from_json(data)


@dataclass(frozen=True)
class ProductType(_SatsJSONType):
    """
    Ordered product (struct or tuple) type.

    Attributes:
        elements: Elements in positional order
    """

    elements: tuple[ProductTypeElement, ...] = ()

    type_kind: ClassVar[TypeKind] = TypeKind.PRODUCT

    def __post_init__(self) -> None:
        object.__setattr__(self, "elements", tuple(self.elements))

    @classmethod
    def named(cls, *fields: tuple[str | None, "AlgebraicType"]) -> "ProductType":
        """Create a product type from (name, type) pairs."""
        return cls(tuple(ProductTypeElement(ty, name) for name, ty in fields))

    @property
    def element_names(self) -> tuple[str | None, ...]:
        return tuple(e.name for e in self.elements)

    def __len__(self) -> int:
        return len(self.elements)

    def body_json(self) -> dict[str, Any]:
        return {"elements": [e.to_json() for e in self.elements]}

    @classmethod
    def from_body(cls, body: Any) -> "ProductType":
        if not isinstance(body, dict) or not isinstance(body.get("elements"), list):
            raise DecodeError("Product type requires an 'elements' list", body)
        return cls(tuple(ProductTypeElement.from_json(e) for e in body["elements"]))

    @classmethod
    def from_json(cls, data: Any) -> "ProductType":
        # Reducer parameter lists are sent without the Product wrapper
        if isinstance(data, dict) and "elements" in data:
            return cls.from_body(data)
        return super().from_json(data)


AlgebraicType = Union[SumType, ProductType, BuiltinType, TypeRef]

ALGEBRAIC_TYPE_CLASSES = (SumType, ProductType, BuiltinType, TypeRef)


def algebraic_type_from_json(data: Any) -> AlgebraicType:
    """
    Decode any algebraic type from its JSON form.

    Raises:
        DecodeError: If the object names an unknown variant or is malformed
        AmbiguousSumTagError: If the object does not have exactly one key
    """
    tag, body = split_tag(data, "algebraic type")
    if tag == TypeKind.SUM:
        return SumType.from_body(body)
    if tag == TypeKind.PRODUCT:
        return ProductType.from_body(body)
    if tag == TypeKind.BUILTIN:
        return BuiltinType.from_body(body)
    if tag == TypeKind.REF:
        return TypeRef.from_body(body)
    if tag in _BUILTIN_NAMES:
        return BuiltinType.from_body(data)
    raise DecodeError(f"Unknown algebraic type variant '{tag}'", data)


BOOL = BuiltinType(BuiltinKind.BOOL)
I8 = BuiltinType(BuiltinKind.I8)
U8 = BuiltinType(BuiltinKind.U8)
I16 = BuiltinType(BuiltinKind.I16)
U16 = BuiltinType(BuiltinKind.U16)
I32 = BuiltinType(BuiltinKind.I32)
U32 = BuiltinType(BuiltinKind.U32)
I64 = BuiltinType(BuiltinKind.I64)
U64 = BuiltinType(BuiltinKind.U64)
F32 = BuiltinType(BuiltinKind.F32)
F64 = BuiltinType(BuiltinKind.F64)
STRING = BuiltinType(BuiltinKind.STRING)
