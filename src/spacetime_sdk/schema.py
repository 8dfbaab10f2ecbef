"""
SpacetimeDB module schema (RawModuleDef, version 9).

Pydantic models for the document returned by the schema endpoint. Tag
objects such as ``{"User": []}`` and options such as ``{"none": []}`` are
unwrapped to enums and ``None`` on validation and re-wrapped on dump, so
``RawModuleDef.model_validate(doc).model_dump()`` reproduces the wire form.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator

from .exceptions import UnknownTypeRefError
from .sats.algebraic import ProductType, split_tag
from .sats.typed import encode_reducer_args
from .sats.typespace import Typespace


class TableType(StrEnum):
    """Whether a table is defined by the module or by the system."""

    USER = "User"
    SYSTEM = "System"


class TableAccess(StrEnum):
    """Visibility of a table to clients."""

    PUBLIC = "Public"
    PRIVATE = "Private"


class ReducerLifecycle(StrEnum):
    """Lifecycle events a reducer can be bound to."""

    INIT = "Init"
    ON_CONNECT = "OnConnect"
    ON_DISCONNECT = "OnDisconnect"


def _unwrap_tag(value: Any) -> Any:
    if isinstance(value, dict):
        tag, _ = split_tag(value, "tag")
        return tag
    return value


def _unwrap_option(value: Any) -> Any:
    if isinstance(value, dict) and len(value) == 1:
        if "none" in value:
            return None
        if "some" in value:
            return value["some"]
    return value


def _wrap_option(value: Any) -> dict[str, Any]:
    if value is None:
        return {"none": []}
    return {"some": value}


class TypeName(BaseModel):
    """Scoped name of a named type."""

    scope: list[str] = Field(default_factory=list)
    name: str

    @property
    def qualified(self) -> str:
        return "::".join([*self.scope, self.name])


class NamedTypeDef(BaseModel):
    """
    Export of a named type.

    Attributes:
        name: Scoped type name
        ty: Index of the type in the module's typespace
        custom_ordering: Whether the type defines its own ordering
    """

    name: TypeName
    ty: int
    custom_ordering: bool = False

    @field_validator("ty", mode="before")
    @classmethod
    def _parse_ref(cls, value: Any) -> Any:
        if isinstance(value, dict) and "Ref" in value:
            return value["Ref"]
        return value


class ScheduleDef(BaseModel):
    """Schedule attached to a scheduled table."""

    reducer_name: str
    scheduled_at_column: int


class TableDef(BaseModel):
    """
    Table definition.

    Attributes:
        name: Table name
        product_type_ref: Typespace index of the row type
        primary_key: Primary key column positions
        indexes: Index definitions, passed through unchanged
        constraints: Constraint definitions, passed through unchanged
        sequences: Sequence definitions, passed through unchanged
        schedule: Schedule, or None for unscheduled tables
        table_type: User or System
        table_access: Public or Private
    """

    name: str
    product_type_ref: int
    primary_key: list[Any] = Field(default_factory=list)
    indexes: list[Any] = Field(default_factory=list)
    constraints: list[Any] = Field(default_factory=list)
    sequences: list[Any] = Field(default_factory=list)
    schedule: ScheduleDef | None = None
    table_type: TableType = TableType.USER
    table_access: TableAccess = TableAccess.PUBLIC

    @field_validator("table_type", "table_access", mode="before")
    @classmethod
    def _parse_tag(cls, value: Any) -> Any:
        return _unwrap_tag(value)

    @field_validator("schedule", mode="before")
    @classmethod
    def _parse_schedule(cls, value: Any) -> Any:
        return _unwrap_option(value)

    @field_serializer("table_type", "table_access")
    def _dump_tag(self, value: StrEnum) -> dict[str, Any]:
        return {value.value: []}

    @field_serializer("schedule")
    def _dump_schedule(self, value: ScheduleDef | None) -> dict[str, Any]:
        return _wrap_option(None if value is None else value.model_dump())

    @property
    def is_public(self) -> bool:
        return self.table_access is TableAccess.PUBLIC

    @classmethod
    def user_table(cls, name: str, product_type_ref: int) -> "TableDef":
        """Create a public, unscheduled user table."""
        return cls(name=name, product_type_ref=product_type_ref)


class ReducerDef(BaseModel):
    """
    Reducer definition.

    Attributes:
        name: Reducer name
        params: Parameter list as a product type
        lifecycle: Lifecycle event the reducer handles, if any
    """

    name: str
    params: ProductType = Field(default_factory=ProductType)
    lifecycle: ReducerLifecycle | None = None

    @field_validator("lifecycle", mode="before")
    @classmethod
    def _parse_lifecycle(cls, value: Any) -> Any:
        return _unwrap_tag(_unwrap_option(value))

    @field_serializer("params")
    def _dump_params(self, value: ProductType) -> dict[str, Any]:
        return value.body_json()

    @field_serializer("lifecycle")
    def _dump_lifecycle(self, value: ReducerLifecycle | None) -> dict[str, Any]:
        return _wrap_option(None if value is None else {value.value: []})

    @classmethod
    def new(cls, name: str, params: ProductType | None = None) -> "ReducerDef":
        """Create a reducer without a lifecycle binding."""
        return cls(name=name, params=params or ProductType())

    @classmethod
    def init(cls, name: str, params: ProductType | None = None) -> "ReducerDef":
        """Create the module's Init lifecycle reducer."""
        return cls(name=name, params=params or ProductType(), lifecycle=ReducerLifecycle.INIT)

    def encode_args(self, args: Any, typespace: Typespace | None = None) -> str:
        """
        Serialize call arguments for this reducer.

        Args:
            args: Sequence in parameter order, or mapping keyed by parameter name
            typespace: Module typespace for resolving referenced parameter types

        Returns:
            JSON array text for ``CallReducer.args``
        """
        return encode_reducer_args(self.params, args, typespace)


class RawModuleDef(BaseModel):
    """
    Complete module definition as served by the schema endpoint.

    Usage:
        module = RawModuleDef.model_validate(document)
        row = module.row_type("users")
        args = module.reducer("add_user").encode_args(["alice"], module.typespace)
    """

    typespace: Typespace = Field(default_factory=Typespace)
    tables: list[TableDef] = Field(default_factory=list)
    reducers: list[ReducerDef] = Field(default_factory=list)
    types: list[NamedTypeDef] = Field(default_factory=list)
    misc_exports: list[Any] = Field(default_factory=list)
    row_level_security: list[Any] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _unwrap_version(cls, data: Any) -> Any:
        """Accept the versioned ``{"V9": {...}}`` envelope."""
        if isinstance(data, dict) and len(data) == 1 and "V9" in data:
            return data["V9"]
        return data

    @model_validator(mode="after")
    def _check_refs(self) -> "RawModuleDef":
        for table in self.tables:
            if self.typespace.get_type(table.product_type_ref) is None:
                raise ValueError(
                    f"Table '{table.name}' references type {table.product_type_ref}, "
                    f"outside a typespace of {len(self.typespace)} types"
                )
        for named in self.types:
            if self.typespace.get_type(named.ty) is None:
                raise ValueError(f"Type '{named.name.qualified}' references missing type {named.ty}")
        return self

    def table(self, name: str) -> TableDef | None:
        """Find a table by name."""
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def reducer(self, name: str) -> ReducerDef | None:
        """Find a reducer by name."""
        for reducer in self.reducers:
            if reducer.name == name:
                return reducer
        return None

    def named_type(self, name: str) -> NamedTypeDef | None:
        """Find a named type by bare or ``scope::name`` qualified name."""
        for named in self.types:
            if named.name.name == name or named.name.qualified == name:
                return named
        return None

    def row_type(self, table: str | TableDef) -> ProductType:
        """
        Resolve the row type of a table.

        Raises:
            KeyError: If no table has that name
            UnknownTypeRefError: If the row type reference cannot be resolved
            TypeError: If the row type is not a product type
        """
        table_def = self.table(table) if isinstance(table, str) else table
        if table_def is None:
            raise KeyError(f"Unknown table '{table}'")
        ty = self.typespace.get_type(table_def.product_type_ref)
        if ty is None:
            raise UnknownTypeRefError(table_def.product_type_ref)
        ty = self.typespace.resolve(ty)
        if not isinstance(ty, ProductType):
            raise TypeError(f"Row type of table '{table_def.name}' is not a product type")
        return ty

    def encode_reducer_args(self, reducer_name: str, args: Any) -> str:
        """
        Serialize call arguments for a reducer declared by this module.

        Raises:
            KeyError: If the module has no reducer with that name
        """
        reducer = self.reducer(reducer_name)
        if reducer is None:
            raise KeyError(f"Unknown reducer '{reducer_name}'")
        return reducer.encode_args(args, self.typespace)


__all__ = [
    "NamedTypeDef",
    "RawModuleDef",
    "ReducerDef",
    "ReducerLifecycle",
    "ScheduleDef",
    "TableAccess",
    "TableDef",
    "TableType",
    "TypeName",
]
