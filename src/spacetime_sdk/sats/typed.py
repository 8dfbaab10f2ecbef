"""
Schema-directed (strict) encoding and decoding of algebraic values.

The untyped decoder in ``sats.values`` selects variants from the JSON shape
alone. The functions here walk an ``AlgebraicType`` alongside the data and
reject anything the type does not admit: unknown sum tags, products of the
wrong arity, integers outside their width and booleans posing as integers.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..exceptions import DecodeError, UnknownTypeRefError, UnsupportedTypeError, ValidationError
from .algebraic import AlgebraicType, BuiltinKind, BuiltinType, ProductType, SumType, TypeRef, split_tag
from .typespace import Typespace
from .values import AlgebraicValue, BuiltinValue, ProductValue, SumValue, encode_value, is_algebraic_value

logger = logging.getLogger(__name__)

_UNSUPPORTED_KINDS = frozenset({BuiltinKind.I128, BuiltinKind.U128})


def _resolve(ty: AlgebraicType, typespace: Typespace | None) -> AlgebraicType:
    if not isinstance(ty, TypeRef):
        return ty
    if typespace is None:
        raise UnknownTypeRefError(ty.index)
    return typespace.resolve(ty)


def _child(path: str, key: str | int) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else key


def _require_supported(ty: BuiltinType) -> None:
    if ty.kind in _UNSUPPORTED_KINDS:
        raise UnsupportedTypeError(f"{ty.kind} values are not supported")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _scalar_error(ty: BuiltinType, value: Any) -> str | None:
    """Return why a scalar does not fit a primitive builtin, or None if it does."""
    if ty.kind is BuiltinKind.BOOL:
        return None if isinstance(value, bool) else f"expected Bool, got {type(value).__name__}"
    if ty.kind is BuiltinKind.STRING:
        return None if isinstance(value, str) else f"expected String, got {type(value).__name__}"
    if ty.is_float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return None
        return f"expected {ty.kind}, got {type(value).__name__}"
    bounds = ty.integer_range
    if bounds is not None:
        if not _is_int(value):
            return f"expected {ty.kind}, got {type(value).__name__}"
        low, high = bounds
        if not low <= value <= high:
            return f"{value} is out of range for {ty.kind}"
        return None
    return f"{ty.kind} is not a scalar type"


# ---------------------------------------------------------------------------
# Decoding from JSON
# ---------------------------------------------------------------------------


def decode_typed(data: Any, ty: AlgebraicType, typespace: Typespace | None = None, path: str = "") -> AlgebraicValue:
    """
    Decode parsed JSON as a value of the given type.

    Args:
        data: Decoded JSON value
        ty: Type the value must conform to
        typespace: Typespace used to resolve ``Ref`` types
        path: Location prefix for error messages

    Returns:
        The decoded value

    Raises:
        DecodeError: If the data does not conform to the type
        AmbiguousSumTagError: If a sum object does not have exactly one key
        UnknownTypeRefError: If a reference cannot be resolved
        UnsupportedTypeError: For I128/U128
    """
    ty = _resolve(ty, typespace)
    if data is None:
        raise DecodeError(f"{path or 'value'}: null is not a valid algebraic value")

    if isinstance(ty, SumType):
        tag, payload = split_tag(data, "Sum value")
        variant = ty.variant(tag)
        if variant is None:
            raise DecodeError(f"{path or 'value'}: unknown variant '{tag}'", data)
        return SumValue(tag, decode_typed(payload, variant.algebraic_type, typespace, _child(path, tag)))

    if isinstance(ty, ProductType):
        return _decode_product(data, ty, typespace, path)

    assert isinstance(ty, BuiltinType)
    return _decode_builtin(data, ty, typespace, path)


def _decode_product(data: Any, ty: ProductType, typespace: Typespace | None, path: str) -> ProductValue:
    if isinstance(data, list):
        if len(data) != len(ty):
            raise DecodeError(f"{path or 'value'}: product has {len(data)} elements, expected {len(ty)}", data)
        return ProductValue(
            tuple(
                decode_typed(item, element.algebraic_type, typespace, _child(path, element.name or i))
                for i, (item, element) in enumerate(zip(data, ty.elements))
            )
        )

    if isinstance(data, dict):
        # Rows are commonly emitted as objects keyed by column name
        names = ty.element_names
        if None in names:
            raise DecodeError(f"{path or 'value'}: product with unnamed elements must be an array", data)
        unknown = set(data) - set(names)
        missing = [name for name in names if name not in data]
        if unknown or missing:
            raise DecodeError(
                f"{path or 'value'}: product fields do not match "
                f"(missing {sorted(missing)}, unexpected {sorted(unknown)})",
                data,
            )
        return ProductValue(
            tuple(
                decode_typed(data[element.name], element.algebraic_type, typespace, _child(path, element.name))
                for element in ty.elements
                if element.name is not None
            )
        )

    raise DecodeError(f"{path or 'value'}: product must be a JSON array or object", data)


def _decode_builtin(data: Any, ty: BuiltinType, typespace: Typespace | None, path: str) -> BuiltinValue:
    _require_supported(ty)

    if ty.kind is BuiltinKind.ARRAY:
        if not isinstance(data, list):
            raise DecodeError(f"{path or 'value'}: Array must be a JSON array", data)
        assert ty.element is not None
        return BuiltinValue(
            tuple(decode_typed(item, ty.element, typespace, _child(path, i)) for i, item in enumerate(data))
        )

    if ty.kind is BuiltinKind.MAP:
        assert ty.key is not None and ty.value is not None
        pairs: list[Any] = []
        if isinstance(data, dict):
            if _resolve(ty.key, typespace) != BuiltinType(BuiltinKind.STRING):
                raise DecodeError(f"{path or 'value'}: JSON object maps require String keys", data)
            for key, item in data.items():
                pairs.append((BuiltinValue(key), decode_typed(item, ty.value, typespace, _child(path, key))))
        elif isinstance(data, list):
            for i, entry in enumerate(data):
                if not isinstance(entry, list) or len(entry) != 2:
                    raise DecodeError(f"{_child(path, i)}: Map entry must be a [key, value] pair", entry)
                pairs.append(
                    (
                        decode_typed(entry[0], ty.key, typespace, _child(path, i)),
                        decode_typed(entry[1], ty.value, typespace, _child(path, i)),
                    )
                )
        else:
            raise DecodeError(f"{path or 'value'}: Map must be a list of pairs or an object", data)
        return BuiltinValue(tuple(pairs))

    problem = _scalar_error(ty, data)
    if problem is not None:
        raise DecodeError(f"{path or 'value'}: {problem}", data)
    if ty.is_float:
        return BuiltinValue(float(data))
    return BuiltinValue(data)


# ---------------------------------------------------------------------------
# Validation of constructed values
# ---------------------------------------------------------------------------


def check_value(value: AlgebraicValue, ty: AlgebraicType, typespace: Typespace | None = None, path: str = "") -> None:
    """
    Check that an algebraic value conforms to a type.

    Raises:
        ValidationError: On the first mismatch, with the path to it
        UnknownTypeRefError: If a reference cannot be resolved
        UnsupportedTypeError: For I128/U128
    """
    ty = _resolve(ty, typespace)

    if isinstance(ty, SumType):
        if not isinstance(value, SumValue):
            raise ValidationError(f"expected a sum value, got {type(value).__name__}", path)
        variant = ty.variant(value.tag)
        if variant is None:
            raise ValidationError(f"unknown variant '{value.tag}'", path)
        check_value(value.value, variant.algebraic_type, typespace, _child(path, value.tag))
        return

    if isinstance(ty, ProductType):
        if not isinstance(value, ProductValue):
            raise ValidationError(f"expected a product value, got {type(value).__name__}", path)
        if len(value) != len(ty):
            raise ValidationError(f"product has {len(value)} elements, expected {len(ty)}", path)
        for i, (item, element) in enumerate(zip(value, ty.elements)):
            check_value(item, element.algebraic_type, typespace, _child(path, element.name or i))
        return

    assert isinstance(ty, BuiltinType)
    _require_supported(ty)
    if not isinstance(value, BuiltinValue):
        raise ValidationError(f"expected a builtin value, got {type(value).__name__}", path)

    if ty.kind is BuiltinKind.ARRAY:
        if value.is_scalar or any(isinstance(item, tuple) for item in value.value):
            raise ValidationError("expected an Array value", path)
        assert ty.element is not None
        for i, item in enumerate(value.value):
            check_value(item, ty.element, typespace, _child(path, i))
        return

    if ty.kind is BuiltinKind.MAP:
        if value.is_scalar or not all(isinstance(item, tuple) for item in value.value):
            raise ValidationError("expected a Map value", path)
        assert ty.key is not None and ty.value is not None
        for i, (key, item) in enumerate(value.value):
            check_value(key, ty.key, typespace, _child(path, i))
            check_value(item, ty.value, typespace, _child(path, i))
        return

    if not value.is_scalar:
        raise ValidationError(f"expected {ty.kind}, got a container", path)
    problem = _scalar_error(ty, value.value)
    if problem is not None:
        raise ValidationError(problem, path)


# ---------------------------------------------------------------------------
# Conversion from native Python objects
# ---------------------------------------------------------------------------


def from_python(obj: Any, ty: AlgebraicType, typespace: Typespace | None = None, path: str = "") -> AlgebraicValue:
    """
    Convert a native Python object into a value of the given type.

    Products accept a sequence in element order or a mapping keyed by element
    name. Sums accept a ``(tag, payload)`` pair, a bare tag for variants with
    an empty payload, or ``None`` / the payload itself for option types.
    Existing ``AlgebraicValue`` instances are checked and returned as-is.

    Raises:
        ValidationError: If the object does not fit the type
    """
    if is_algebraic_value(obj):
        check_value(obj, ty, typespace, path)
        return obj

    ty = _resolve(ty, typespace)

    if isinstance(ty, SumType):
        return _sum_from_python(obj, ty, typespace, path)

    if isinstance(ty, ProductType):
        return _product_from_python(obj, ty, typespace, path)

    assert isinstance(ty, BuiltinType)
    _require_supported(ty)

    if ty.kind is BuiltinKind.ARRAY:
        if isinstance(obj, (str, bytes, Mapping)) or not isinstance(obj, (list, tuple)):
            raise ValidationError(f"expected a list for Array, got {type(obj).__name__}", path)
        assert ty.element is not None
        items = (from_python(item, ty.element, typespace, _child(path, i)) for i, item in enumerate(obj))
        return BuiltinValue(tuple(items))

    if ty.kind is BuiltinKind.MAP:
        assert ty.key is not None and ty.value is not None
        items = obj.items() if isinstance(obj, Mapping) else obj
        if not isinstance(obj, (Mapping, list, tuple)):
            raise ValidationError(f"expected a dict for Map, got {type(obj).__name__}", path)
        pairs = []
        for i, entry in enumerate(items):
            if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                raise ValidationError("Map entry must be a (key, value) pair", _child(path, i))
            key, item = entry
            pairs.append(
                (
                    from_python(key, ty.key, typespace, _child(path, i)),
                    from_python(item, ty.value, typespace, _child(path, i)),
                )
            )
        return BuiltinValue(tuple(pairs))

    problem = _scalar_error(ty, obj)
    if problem is not None:
        raise ValidationError(problem, path)
    if ty.is_float:
        return BuiltinValue(float(obj))
    return BuiltinValue(obj)


def _sum_from_python(obj: Any, ty: SumType, typespace: Typespace | None, path: str) -> SumValue:
    if ty.is_option:
        if obj is None:
            return SumValue("none", ProductValue())
        some_type = ty.variants[0].algebraic_type
        return SumValue("some", from_python(obj, some_type, typespace, _child(path, "some")))

    if isinstance(obj, str):
        variant = ty.variant(obj)
        if variant is None:
            raise ValidationError(f"unknown variant '{obj}'", path)
        payload_type = _resolve(variant.algebraic_type, typespace)
        if not isinstance(payload_type, ProductType) or len(payload_type) != 0:
            raise ValidationError(f"variant '{obj}' requires a payload", path)
        return SumValue(obj, ProductValue())

    if isinstance(obj, tuple) and len(obj) == 2 and isinstance(obj[0], str):
        tag, payload = obj
        variant = ty.variant(tag)
        if variant is None:
            raise ValidationError(f"unknown variant '{tag}'", path)
        return SumValue(tag, from_python(payload, variant.algebraic_type, typespace, _child(path, tag)))

    raise ValidationError(f"expected a (tag, payload) pair for a sum, got {type(obj).__name__}", path)


def _product_from_python(obj: Any, ty: ProductType, typespace: Typespace | None, path: str) -> ProductValue:
    if isinstance(obj, Mapping):
        names = ty.element_names
        if None in names:
            raise ValidationError("product with unnamed elements needs a sequence", path)
        unknown = set(obj) - set(names)
        if unknown:
            raise ValidationError(f"unexpected fields {sorted(unknown)}", path)
        missing = [name for name in names if name not in obj]
        if missing:
            raise ValidationError(f"missing fields {missing}", path)
        items = [obj[name] for name in names]
    elif isinstance(obj, (list, tuple)):
        if len(obj) != len(ty):
            raise ValidationError(f"expected {len(ty)} elements, got {len(obj)}", path)
        items = list(obj)
    else:
        raise ValidationError(f"expected a sequence or mapping for a product, got {type(obj).__name__}", path)

    return ProductValue(
        tuple(
            from_python(item, element.algebraic_type, typespace, _child(path, element.name or i))
            for i, (item, element) in enumerate(zip(items, ty.elements))
        )
    )


def encode_reducer_args(params: ProductType, args: Any, typespace: Typespace | None = None) -> str:
    """
    Serialize reducer arguments as a JSON array in declared parameter order.

    Args:
        params: The reducer's parameter product type
        args: Sequence of arguments, or a mapping keyed by parameter name
        typespace: Typespace used to resolve ``Ref`` parameter types

    Returns:
        JSON array text suitable for ``CallReducer.args``

    Raises:
        ValidationError: If the argument count or any argument type is wrong
    """
    value = from_python(args, params, typespace)
    encoded = encode_value(value)
    logger.debug("Encoded %d reducer arguments", len(params))
    return encoded


__all__ = [
    "check_value",
    "decode_typed",
    "encode_reducer_args",
    "from_python",
]
