"""
SpacetimeDB SDK SATS Module.

Implements the SpacetimeDB Algebraic Type System: types, values,
the typespace that stores them, and schema-directed encoding.
"""

from .algebraic import (
    ALGEBRAIC_TYPE_CLASSES,
    BOOL,
    F32,
    F64,
    I8,
    I16,
    I32,
    I64,
    STRING,
    U8,
    U16,
    U32,
    U64,
    AlgebraicType,
    BuiltinKind,
    BuiltinType,
    ProductType,
    ProductTypeElement,
    SumType,
    SumTypeVariant,
    TypeKind,
    TypeRef,
    algebraic_type_from_json,
)
from .values import (
    AlgebraicValue,
    BuiltinValue,
    ProductValue,
    SumValue,
    decode_value,
    encode_value,
    value_from_json,
)
from .typespace import Typespace
from .typed import check_value, decode_typed, encode_reducer_args, from_python

__all__ = [
    # Types
    "ALGEBRAIC_TYPE_CLASSES",
    "AlgebraicType",
    "BuiltinKind",
    "BuiltinType",
    "ProductType",
    "ProductTypeElement",
    "SumType",
    "SumTypeVariant",
    "TypeKind",
    "TypeRef",
    "algebraic_type_from_json",
    "BOOL",
    "I8",
    "U8",
    "I16",
    "U16",
    "I32",
    "U32",
    "I64",
    "U64",
    "F32",
    "F64",
    "STRING",
    # Values
    "AlgebraicValue",
    "BuiltinValue",
    "ProductValue",
    "SumValue",
    "decode_value",
    "encode_value",
    "value_from_json",
    # Typespace
    "Typespace",
    # Strict mode
    "check_value",
    "decode_typed",
    "encode_reducer_args",
    "from_python",
]
