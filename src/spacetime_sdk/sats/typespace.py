"""
Typespace: append-only registry of algebraic types.

A ``TypeRef(i)`` addresses the i-th type added. Insertion order is the
addressing scheme, so types are never removed or reordered.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from pydantic import GetCoreSchemaHandler
from pydantic_core import CoreSchema, core_schema

from ..exceptions import DecodeError, UnknownTypeRefError
from .algebraic import AlgebraicType, TypeRef, algebraic_type_from_json


class Typespace:
    """
    Ordered collection of types referenced by index.

    Usage:
        ts = Typespace()
        ref = ts.add_type(ProductType.named(("id", U64), ("name", STRING)))
        row_type = ts.get_type(ref)
    """

    def __init__(self, types: Iterable[AlgebraicType] = ()):
        self._types: list[AlgebraicType] = list(types)

    def add_type(self, ty: AlgebraicType) -> TypeRef:
        """Append a type and return the reference addressing it."""
        self._types.append(ty)
        return TypeRef(len(self._types) - 1)

    def get_type(self, ref: TypeRef | int) -> AlgebraicType | None:
        """
        Look up a type by reference.

        Returns:
            The referenced type, or None when the index is out of range
            (including negative indices)
        """
        index = ref.index if isinstance(ref, TypeRef) else ref
        if not isinstance(index, int) or isinstance(index, bool):
            return None
        if index < 0 or index >= len(self._types):
            return None
        return self._types[index]

    def resolve(self, ty: AlgebraicType) -> AlgebraicType:
        """
        Follow ``Ref`` indirections until a non-reference type is reached.

        Raises:
            UnknownTypeRefError: If a reference has no entry, or references
                only form a cycle
        """
        seen: set[int] = set()
        while isinstance(ty, TypeRef):
            if ty.index in seen:
                raise UnknownTypeRefError(ty.index)
            seen.add(ty.index)
            target = self.get_type(ty)
            if target is None:
                raise UnknownTypeRefError(ty.index)
            ty = target
        return ty

    @property
    def types(self) -> tuple[AlgebraicType, ...]:
        return tuple(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def __iter__(self) -> Iterator[AlgebraicType]:
        return iter(tuple(self._types))

    def __contains__(self, ref: object) -> bool:
        if isinstance(ref, (TypeRef, int)):
            return self.get_type(ref) is not None
        return False

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Typespace):
            return NotImplemented
        return self._types == other._types

    def __repr__(self) -> str:
        return f"Typespace({self._types!r})"

    def to_json(self) -> dict[str, Any]:
        return {"types": [ty.to_json() for ty in self._types]}

    @classmethod
    def from_json(cls, data: Any) -> "Typespace":
        if not isinstance(data, dict) or not isinstance(data.get("types"), list):
            raise DecodeError("Typespace requires a 'types' list", data)
        return cls(algebraic_type_from_json(item) for item in data["types"])

    @classmethod
    def __get_pydantic_core_schema__(
        cls,
        source_type: Any,
        handler: GetCoreSchemaHandler,
    ) -> CoreSchema:
        """Validate from and serialize to the ``{"types": [...]}`` form."""
        return core_schema.no_info_plain_validator_function(
            lambda value: value if isinstance(value, cls) else cls.from_json(value),
            serialization=core_schema.plain_serializer_function_ser_schema(lambda value: value.to_json()),
        )
