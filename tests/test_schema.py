"""Tests for the module schema models."""

from typing import Any

import pydantic
import pytest

from spacetime_sdk.exceptions import ValidationError
from spacetime_sdk.sats import STRING, U64, ProductType, SumType, TypeRef
from spacetime_sdk.schema import (
    RawModuleDef,
    ReducerDef,
    ReducerLifecycle,
    ScheduleDef,
    TableAccess,
    TableDef,
    TableType,
    TypeName,
)


class TestRawModuleDef:
    """Tests for parsing a full module definition."""

    def test_parse(self, module_def_document: dict[str, Any]) -> None:
        """Test the document parses into typed models."""
        module = RawModuleDef.model_validate(module_def_document)

        assert len(module.typespace) == 3
        assert [t.name for t in module.tables] == ["users", "messages"]
        assert [r.name for r in module.reducers] == ["add_user", "send_message", "init"]
        assert module.types[0].name == TypeName(scope=["chat"], name="Status")
        assert module.types[0].custom_ordering is True

    def test_version_envelope(self, module_def_document: dict[str, Any]) -> None:
        """Test the {"V9": ...} wrapper is accepted."""
        module = RawModuleDef.model_validate({"V9": module_def_document})
        assert module.table("users") is not None

    def test_table_tags_and_schedule(self, module_def_document: dict[str, Any]) -> None:
        """Test tag objects become enums and options become None or models."""
        module = RawModuleDef.model_validate(module_def_document)
        users = module.table("users")
        messages = module.table("messages")

        assert users is not None and messages is not None
        assert users.table_type is TableType.USER
        assert users.table_access is TableAccess.PUBLIC
        assert users.is_public
        assert users.schedule is None
        assert users.primary_key == [0]
        assert messages.table_access is TableAccess.PRIVATE
        assert messages.schedule == ScheduleDef(reducer_name="cleanup", scheduled_at_column=2)

    def test_reducer_lifecycle(self, module_def_document: dict[str, Any]) -> None:
        """Test lifecycle options are unwrapped."""
        module = RawModuleDef.model_validate(module_def_document)
        add_user = module.reducer("add_user")
        init = module.reducer("init")

        assert add_user is not None and init is not None
        assert add_user.lifecycle is None
        assert init.lifecycle is ReducerLifecycle.INIT
        assert add_user.params.element_names == ("name", "status")
        assert add_user.params.elements[1].algebraic_type == TypeRef(2)

    def test_lookups_return_none_for_unknown(self, module_def_document: dict[str, Any]) -> None:
        """Test lookups by unknown names return None."""
        module = RawModuleDef.model_validate(module_def_document)
        assert module.table("missing") is None
        assert module.reducer("missing") is None
        assert module.named_type("Missing") is None

    def test_named_type(self, module_def_document: dict[str, Any]) -> None:
        """Test named types are found by bare or qualified name."""
        module = RawModuleDef.model_validate(module_def_document)
        by_name = module.named_type("Status")
        by_qualified = module.named_type("chat::Status")

        assert by_name is not None and by_name is by_qualified
        assert isinstance(module.typespace.get_type(by_name.ty), SumType)

    def test_row_type(self, module_def_document: dict[str, Any]) -> None:
        """Test a table's row type is resolved to a product."""
        module = RawModuleDef.model_validate(module_def_document)
        row = module.row_type("users")

        assert isinstance(row, ProductType)
        assert row.element_names == ("id", "name", "online")
        assert row.elements[0].algebraic_type == U64
        assert module.row_type(module.tables[1]).elements[1].algebraic_type == STRING

    def test_row_type_unknown_table(self, module_def_document: dict[str, Any]) -> None:
        """Test row_type raises KeyError for unknown tables."""
        module = RawModuleDef.model_validate(module_def_document)
        with pytest.raises(KeyError):
            module.row_type("missing")

    def test_row_type_not_a_product(self, module_def_document: dict[str, Any]) -> None:
        """Test a row type that resolves to a sum is rejected."""
        module_def_document["tables"][0]["product_type_ref"] = 2
        module = RawModuleDef.model_validate(module_def_document)
        with pytest.raises(TypeError):
            module.row_type("users")

    def test_table_ref_outside_typespace(self, module_def_document: dict[str, Any]) -> None:
        """Test a table referencing a missing type fails validation."""
        module_def_document["tables"][0]["product_type_ref"] = 9
        with pytest.raises(pydantic.ValidationError, match="outside a typespace of 3 types"):
            RawModuleDef.model_validate(module_def_document)

    def test_named_type_ref_outside_typespace(self, module_def_document: dict[str, Any]) -> None:
        """Test a named type referencing a missing type fails validation."""
        module_def_document["types"][0]["ty"] = {"Ref": 7}
        with pytest.raises(pydantic.ValidationError, match="missing type 7"):
            RawModuleDef.model_validate(module_def_document)

    def test_invalid_type_in_typespace(self, module_def_document: dict[str, Any]) -> None:
        """Test malformed types surface as validation errors."""
        module_def_document["typespace"]["types"].append({"Tuple": []})
        with pytest.raises(pydantic.ValidationError):
            RawModuleDef.model_validate(module_def_document)

    def test_unknown_table_type(self, module_def_document: dict[str, Any]) -> None:
        """Test unknown table type tags are rejected."""
        module_def_document["tables"][0]["table_type"] = {"Admin": []}
        with pytest.raises(pydantic.ValidationError):
            RawModuleDef.model_validate(module_def_document)

    def test_dump_reproduces_wire_form(self, module_def_document: dict[str, Any]) -> None:
        """Test dumping re-wraps tags and options."""
        module = RawModuleDef.model_validate(module_def_document)
        dumped = module.model_dump()

        assert dumped["tables"][0]["table_type"] == {"User": []}
        assert dumped["tables"][0]["schedule"] == {"none": []}
        assert dumped["tables"][1]["schedule"] == {"some": {"reducer_name": "cleanup", "scheduled_at_column": 2}}
        assert dumped["reducers"][2]["lifecycle"] == {"some": {"Init": []}}
        assert dumped["reducers"][0]["params"]["elements"][1]["algebraic_type"] == {"Ref": 2}
        assert RawModuleDef.model_validate(dumped) == module

    def test_empty_module(self) -> None:
        """Test every collection defaults to empty."""
        module = RawModuleDef()
        assert len(module.typespace) == 0
        assert module.tables == []
        assert module.misc_exports == []


class TestReducerArgs:
    """Tests for reducer argument encoding through the schema."""

    def test_encode_by_module(self, module_def_document: dict[str, Any]) -> None:
        """Test referenced parameter types resolve through the module typespace."""
        module = RawModuleDef.model_validate(module_def_document)
        assert module.encode_reducer_args("add_user", ["alice", "Active"]) == '["alice",{"Active":[]}]'
        assert module.encode_reducer_args("add_user", {"status": ("Banned", "spam"), "name": "bob"}) == (
            '["bob",{"Banned":"spam"}]'
        )

    def test_encode_array_param(self, module_def_document: dict[str, Any]) -> None:
        """Test array parameters encode as JSON arrays."""
        module = RawModuleDef.model_validate(module_def_document)
        assert module.encode_reducer_args("send_message", ["hi", ["a", "b"]]) == '["hi",["a","b"]]'

    def test_unknown_reducer(self, module_def_document: dict[str, Any]) -> None:
        """Test unknown reducers raise KeyError."""
        module = RawModuleDef.model_validate(module_def_document)
        with pytest.raises(KeyError):
            module.encode_reducer_args("remove_user", [])

    def test_invalid_args(self, module_def_document: dict[str, Any]) -> None:
        """Test arguments are validated before encoding."""
        module = RawModuleDef.model_validate(module_def_document)
        with pytest.raises(ValidationError):
            module.encode_reducer_args("add_user", ["alice"])
        with pytest.raises(ValidationError):
            module.encode_reducer_args("add_user", ["alice", "Deleted"])


class TestConstructors:
    """Tests for the convenience constructors."""

    def test_user_table(self) -> None:
        """Test user_table builds a public unscheduled user table."""
        table = TableDef.user_table("scores", 0)
        assert table.table_type is TableType.USER
        assert table.is_public
        assert table.model_dump()["table_access"] == {"Public": []}

    def test_reducer_new(self) -> None:
        """Test a plain reducer has no lifecycle."""
        reducer = ReducerDef.new("add_score", ProductType.named(("points", U64)))
        assert reducer.lifecycle is None
        assert reducer.encode_args([10]) == "[10]"
        assert reducer.model_dump()["lifecycle"] == {"none": []}

    def test_reducer_init(self) -> None:
        """Test the Init lifecycle reducer."""
        reducer = ReducerDef.init("init")
        assert reducer.lifecycle is ReducerLifecycle.INIT
        assert reducer.params == ProductType()
        assert reducer.model_dump() == {
            "name": "init",
            "params": {"elements": []},
            "lifecycle": {"some": {"Init": []}},
        }

    def test_type_name_qualified(self) -> None:
        """Test qualified names join scopes with '::'."""
        assert TypeName(scope=["a", "b"], name="C").qualified == "a::b::C"
        assert TypeName(name="C").qualified == "C"

    def test_module_from_models(self) -> None:
        """Test a module can be assembled from constructed parts."""
        module = RawModuleDef(
            typespace={"types": [ProductType.named(("id", U64)).to_json()]},  # type: ignore[arg-type]
            tables=[TableDef.user_table("things", 0)],
            reducers=[ReducerDef.new("add_thing", ProductType.named(("id", U64)))],
        )
        assert module.row_type("things").element_names == ("id",)
        assert module.encode_reducer_args("add_thing", [1]) == "[1]"
