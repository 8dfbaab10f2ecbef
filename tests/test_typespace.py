"""Tests for the Typespace registry."""

import pytest
from pydantic import BaseModel

from spacetime_sdk.exceptions import DecodeError, UnknownTypeRefError
from spacetime_sdk.sats import I32, STRING, U64, ProductType, SumType, TypeRef, Typespace


class TestTypespace:
    """Tests for adding and looking up types."""

    def test_add_returns_sequential_refs(self) -> None:
        """Test each added type gets the next index."""
        ts = Typespace()
        assert ts.add_type(I32) == TypeRef(0)
        assert ts.add_type(STRING) == TypeRef(1)
        assert len(ts) == 2

    def test_get_type(self) -> None:
        """Test lookup by ref or by int."""
        ts = Typespace([I32, STRING])
        assert ts.get_type(TypeRef(1)) == STRING
        assert ts.get_type(0) == I32

    @pytest.mark.parametrize("index", [2, 100, -1])
    def test_get_type_out_of_range(self, index: int) -> None:
        """Test out-of-range and negative indices return None."""
        ts = Typespace([I32, STRING])
        assert ts.get_type(index) is None

    def test_existing_refs_stay_valid(self) -> None:
        """Test appending never moves earlier types."""
        ts = Typespace()
        first = ts.add_type(U64)
        for _ in range(10):
            ts.add_type(STRING)
        assert ts.get_type(first) == U64

    def test_contains_and_iter(self) -> None:
        """Test membership and iteration order."""
        ts = Typespace([I32, STRING])
        assert TypeRef(1) in ts
        assert 2 not in ts
        assert "I32" not in ts
        assert list(ts) == [I32, STRING]

    def test_equality(self) -> None:
        """Test typespaces compare by content."""
        assert Typespace([I32]) == Typespace([I32])
        assert Typespace([I32]) != Typespace([STRING])


class TestResolve:
    """Tests for following references."""

    def test_resolve_chain(self) -> None:
        """Test ref chains resolve to the final type."""
        ts = Typespace()
        row = ts.add_type(ProductType.named(("id", U64)))
        alias = ts.add_type(row)
        assert ts.resolve(alias) == ProductType.named(("id", U64))

    def test_resolve_non_ref(self) -> None:
        """Test non-reference types resolve to themselves."""
        assert Typespace().resolve(I32) == I32

    def test_resolve_missing(self) -> None:
        """Test a dangling ref raises UnknownTypeRefError."""
        with pytest.raises(UnknownTypeRefError) as exc_info:
            Typespace([I32]).resolve(TypeRef(4))
        assert exc_info.value.index == 4

    def test_resolve_cycle(self) -> None:
        """Test a cycle of pure refs is detected."""
        ts = Typespace([TypeRef(1), TypeRef(0)])
        with pytest.raises(UnknownTypeRefError):
            ts.resolve(TypeRef(0))

    def test_recursive_type_through_sum(self) -> None:
        """Test a recursive type behind a sum resolves one level."""
        ts = Typespace()
        ts.add_type(SumType.option(TypeRef(0)))
        resolved = ts.resolve(TypeRef(0))
        assert isinstance(resolved, SumType)


class TestTypespaceJSON:
    """Tests for the JSON and pydantic forms."""

    def test_json_form(self) -> None:
        """Test encoding and decoding the {"types": [...]} form."""
        ts = Typespace([I32, ProductType.named(("name", STRING))])
        data = ts.to_json()
        assert data["types"][0] == {"Builtin": {"I32": []}}
        assert Typespace.from_json(data) == ts

    def test_from_json_requires_types(self) -> None:
        """Test malformed documents are rejected."""
        with pytest.raises(DecodeError):
            Typespace.from_json({"items": []})

    def test_pydantic_field(self) -> None:
        """Test Typespace works as a pydantic field."""

        class Holder(BaseModel):
            typespace: Typespace

        holder = Holder.model_validate({"typespace": {"types": [{"U64": []}]}})
        assert holder.typespace.get_type(0) == U64
        assert holder.model_dump() == {"typespace": {"types": [{"Builtin": {"U64": []}}]}}
