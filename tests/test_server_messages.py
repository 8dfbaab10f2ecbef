"""Tests for server-to-client protocol messages."""

import json

import pytest

from spacetime_sdk.exceptions import (
    AmbiguousSumTagError,
    DecodeError,
    UnknownMessageVariantError,
    WrongVariantError,
)
from spacetime_sdk.protocol import (
    DatabaseUpdate,
    ServerMessage,
    ServerMessageKind,
    SubscriptionError,
    TableUpdateEntry,
    UpdateStatusKind,
    message_key,
    parse_server_message,
    request_key,
)
from spacetime_sdk.sats import BuiltinValue, ProductType, ProductValue, STRING, U64
from tests import factories


class TestParseServerMessage:
    """Tests for parsing each server message variant."""

    def test_identity_token(self) -> None:
        """Test IdentityToken exposes identity, token and connection id."""
        msg = parse_server_message(json.dumps(factories.identity_token()))
        token = msg.as_identity_token()

        assert msg.kind is ServerMessageKind.IDENTITY_TOKEN
        assert str(token.identity) == factories.IDENTITY_HEX
        assert token.token == "token-abc"
        assert token.connection_id.value == factories.OWN_CONNECTION_ID
        assert msg.correlation_key is None

    def test_initial_subscription(self) -> None:
        """Test InitialSubscription carries the snapshot and request id."""
        envelope = factories.initial_subscription(
            3, factories.database_update(factories.table_update("users", ["[1,\"alice\",true]"]))
        )
        msg = factories.message(envelope)
        initial = msg.as_initial_subscription()

        assert initial.request_id == 3
        assert initial.database_update.table("users").inserts == ['[1,"alice",true]']  # type: ignore[union-attr]
        assert initial.total_host_execution_duration.micros == 90
        assert msg.correlation_key == request_key(3)

    def test_transaction_update_light(self) -> None:
        """Test TransactionUpdateLight carries only rows and request id."""
        msg = factories.message(
            factories.transaction_update_light(5, factories.database_update(factories.table_update("users")))
        )
        light = msg.as_transaction_update_light()
        assert light.request_id == 5
        assert light.update.tables[0].table_name == "users"

    def test_subscribe_applied(self) -> None:
        """Test SubscribeApplied carries query id and rows."""
        msg = factories.message(factories.subscribe_applied(4, 9, rows=['[1,"alice",true]']))
        applied = msg.as_subscribe_applied()

        assert applied.query_id.id == 9
        assert applied.rows is not None
        assert applied.rows.table_name == "users"
        assert applied.rows.table_rows.inserts == ['[1,"alice",true]']
        assert applied.total_host_execution_duration_micros == 80

    def test_unsubscribe_applied(self) -> None:
        """Test UnsubscribeApplied carries the removed rows as deletes."""
        msg = factories.message(factories.unsubscribe_applied(6, 9, rows=['[1,"alice",true]']))
        applied = msg.as_unsubscribe_applied()
        assert applied.rows is not None
        assert applied.rows.table_rows.deletes == ['[1,"alice",true]']

    def test_multi_applied(self) -> None:
        """Test the multi variants carry a database update."""
        update = factories.database_update(factories.table_update("a", ["[1]"]), factories.table_update("b", ["[2]"]))
        applied = factories.message(factories.subscribe_multi_applied(1, 2, update)).as_subscribe_multi_applied()
        removed = factories.message(factories.unsubscribe_multi_applied(3, 2, update)).as_unsubscribe_multi_applied()

        assert [t.table_name for t in applied.update.tables] == ["a", "b"]
        assert removed.query_id.id == 2
        assert removed.correlation_key == request_key(3)

    def test_one_off_query_response(self) -> None:
        """Test OneOffQueryResponse decodes base64 message ids and rows."""
        msg = factories.message(factories.one_off_query_response("AQID", rows=[[1, "alice", True]]))
        response = msg.as_one_off_query_response()

        assert response.message_id == b"\x01\x02\x03"
        assert not response.is_error
        assert response.tables[0].rows == ['[1,"alice",true]']
        assert msg.correlation_key == message_key(b"\x01\x02\x03")

    def test_one_off_query_error(self) -> None:
        """Test a failed one-off query exposes its error."""
        response = factories.message(
            factories.one_off_query_response("AQID", error="no such table")
        ).as_one_off_query_response()
        assert response.is_error
        assert response.error == "no such table"
        assert response.tables == []

    def test_one_off_query_error_as_option(self) -> None:
        """Test errors wrapped as options are unwrapped."""
        envelope = factories.one_off_query_response("AQID")
        envelope["OneOffQueryResponse"]["error"] = {"none": []}
        assert factories.message(envelope).as_one_off_query_response().error is None

    def test_bytes_input(self) -> None:
        """Test UTF-8 bytes are accepted."""
        msg = parse_server_message(json.dumps(factories.identity_token()).encode())
        assert msg.kind is ServerMessageKind.IDENTITY_TOKEN


class TestTransactionUpdate:
    """Tests for TransactionUpdate outcomes."""

    def test_committed(self) -> None:
        """Test committed transactions expose their row changes."""
        status = {"Committed": factories.database_update(factories.table_update("users", ['[1,"alice",true]']))}
        update = factories.message(factories.transaction_update(status=status)).as_transaction_update()

        assert update.is_committed
        assert update.error is None
        assert update.reducer_name == "add_user"
        assert update.request_id == 1
        assert update.caller_connection_id.value == factories.OWN_CONNECTION_ID
        assert update.energy_quanta_used.quanta == 120
        assert [t.table_name for t in update.table_updates()] == ["users"]
        assert update.timestamp.as_datetime().year == 2023

    def test_failed(self) -> None:
        """Test failed transactions expose the error and no rows."""
        update = factories.message(
            factories.transaction_update(status={"Failed": "name taken"})
        ).as_transaction_update()

        assert update.is_failed
        assert update.status.kind is UpdateStatusKind.FAILED
        assert update.error == "name taken"
        assert update.database_update is None
        assert update.table_updates() == []

    def test_out_of_energy(self) -> None:
        """Test the OutOfEnergy outcome."""
        update = factories.message(
            factories.transaction_update(status={"OutOfEnergy": []})
        ).as_transaction_update()
        assert update.is_out_of_energy
        assert update.error is None

    def test_unknown_status(self) -> None:
        """Test unknown statuses are rejected."""
        with pytest.raises(DecodeError, match="TransactionUpdate"):
            factories.message(factories.transaction_update(status={"Pending": []}))

    def test_reducer_args(self) -> None:
        """Test reducer arguments decode untyped."""
        update = factories.message(factories.transaction_update(args='["alice",1]')).as_transaction_update()
        assert update.reducer_call.decoded_args() == ProductValue((BuiltinValue("alice"), BuiltinValue(1)))

    def test_correlation_key(self) -> None:
        """Test transactions correlate by the reducer call's request id."""
        msg = factories.message(factories.transaction_update(request_id=42))
        assert msg.correlation_key == request_key(42)


class TestRowUpdates:
    """Tests for table update payloads."""

    def test_uncompressed_envelope(self) -> None:
        """Test the Uncompressed wrapper is unwrapped."""
        entry = TableUpdateEntry.from_dict({"Uncompressed": {"inserts": ["[1]"], "deletes": []}})
        assert entry.inserts == ["[1]"]

    @pytest.mark.parametrize("tag", ["Brotli", "Gzip"])
    def test_compressed_envelope(self, tag: str) -> None:
        """Test compressed row updates are rejected."""
        with pytest.raises(DecodeError, match=tag):
            TableUpdateEntry.from_dict({tag: "AAAA"})

    def test_rows_as_json_values(self) -> None:
        """Test rows sent as JSON values are re-serialized to compact text."""
        entry = TableUpdateEntry.from_dict({"inserts": [[1, "a"], {"some": 2}], "deletes": None})
        assert entry.inserts == ['[1,"a"]', '{"some":2}']
        assert entry.deletes == []

    def test_decoded_rows(self) -> None:
        """Test rows decode untyped or against a row type."""
        update = DatabaseUpdate.from_dict(factories.database_update(factories.table_update("users", ['[1,"alice"]'])))
        table = update.table("users")
        row_type = ProductType.named(("id", U64), ("name", STRING))

        assert table is not None
        assert table.decoded_inserts() == [ProductValue((BuiltinValue(1), BuiltinValue("alice")))]
        assert table.decoded_inserts(row_type)[0].to_python() == (1, "alice")
        assert update.table("missing") is None

    def test_typed_row_mismatch(self) -> None:
        """Test a row that does not match its type fails to decode."""
        update = DatabaseUpdate.from_dict(factories.database_update(factories.table_update("users", ['["x","alice"]'])))
        with pytest.raises(DecodeError):
            update.tables[0].decoded_inserts(ProductType.named(("id", U64), ("name", STRING)))

    def test_multiple_batches(self) -> None:
        """Test inserts and deletes flatten across batches in order."""
        table = factories.table_update("users", ["[1]"], ["[0]"])
        table["updates"].append({"inserts": ["[2]"], "deletes": []})
        update = DatabaseUpdate.from_dict(factories.database_update(table))
        assert update.tables[0].inserts == ["[1]", "[2]"]
        assert update.tables[0].deletes == ["[0]"]


class TestSubscriptionError:
    """Tests for SubscriptionError's optional fields."""

    def test_plain_ids(self) -> None:
        """Test plain integer ids."""
        envelope = factories.subscription_error("bad query", request_id=2, query_id=9)
        error = factories.message(envelope).as_subscription_error()
        assert error.request_id == 2
        assert error.query_id == 9
        assert error.table_id is None
        assert error.correlation_key == request_key(2)

    def test_option_and_nested_ids(self) -> None:
        """Test option-wrapped and {"id": n} forms are unwrapped."""
        envelope = factories.subscription_error("bad query")
        envelope["SubscriptionError"].update(
            request_id={"some": 2}, query_id={"some": {"id": 9}}, table_id={"none": []}
        )
        error = factories.message(envelope).as_subscription_error()
        assert (error.request_id, error.query_id, error.table_id) == (2, 9, None)

    def test_unsolicited(self) -> None:
        """Test errors without a request id have no correlation key."""
        error = factories.message(factories.subscription_error("table dropped", query_id=9)).as_subscription_error()
        assert error.correlation_key is None

    def test_to_dict_omits_missing_ids(self) -> None:
        """Test absent ids are left out of the payload."""
        assert SubscriptionError(error="x", query_id=1).to_dict() == {
            "total_host_execution_duration_micros": 0,
            "error": "x",
            "query_id": 1,
        }


class TestEnvelopeErrors:
    """Tests for malformed server envelopes."""

    def test_invalid_json(self) -> None:
        """Test invalid JSON raises DecodeError with the fragment."""
        with pytest.raises(DecodeError) as exc_info:
            parse_server_message('{"IdentityToken": ')
        assert exc_info.value.fragment == '{"IdentityToken": '

    def test_not_an_object(self) -> None:
        """Test non-object envelopes are rejected."""
        with pytest.raises(DecodeError):
            parse_server_message("[1, 2]")

    def test_ambiguous(self) -> None:
        """Test envelopes with several keys are rejected."""
        envelope = {**factories.identity_token(), **factories.transaction_update()}
        with pytest.raises(AmbiguousSumTagError) as exc_info:
            parse_server_message(envelope)
        assert sorted(exc_info.value.keys) == ["IdentityToken", "TransactionUpdate"]

    def test_unknown_variant(self) -> None:
        """Test unknown variants are rejected."""
        with pytest.raises(UnknownMessageVariantError) as exc_info:
            parse_server_message({"Heartbeat": {}})
        assert exc_info.value.variant == "Heartbeat"

    def test_bad_payload_names_variant(self) -> None:
        """Test payload errors name the variant."""
        envelope = factories.identity_token()
        del envelope["IdentityToken"]["token"]
        with pytest.raises(DecodeError, match="Invalid IdentityToken payload"):
            parse_server_message(envelope)

    def test_payload_not_an_object(self) -> None:
        """Test non-object payloads are rejected."""
        with pytest.raises(DecodeError, match="TransactionUpdate"):
            parse_server_message({"TransactionUpdate": "nope"})

    def test_nested_ambiguous_sum(self) -> None:
        """Test a nested sum with two tags keeps its own error type."""
        envelope = factories.transaction_update(status={"Committed": factories.database_update(), "Failed": "x"})
        with pytest.raises(AmbiguousSumTagError) as exc_info:
            parse_server_message(json.dumps(envelope))
        assert sorted(exc_info.value.keys) == ["Committed", "Failed"]

    def test_request_id_out_of_range(self) -> None:
        """Test request ids beyond u32 are rejected."""
        with pytest.raises(DecodeError):
            parse_server_message(factories.transaction_update_light(2**32, factories.database_update()))


class TestServerMessageAccessors:
    """Tests for the typed accessors on ServerMessage."""

    def test_wrong_variant(self) -> None:
        """Test accessors reject other variants."""
        msg = factories.message(factories.identity_token())
        with pytest.raises(WrongVariantError) as exc_info:
            msg.as_transaction_update()
        assert exc_info.value.expected == "TransactionUpdate"
        assert exc_info.value.actual == "IdentityToken"

    def test_wrong_variant_is_type_error(self) -> None:
        """Test WrongVariantError can be caught as TypeError."""
        with pytest.raises(TypeError):
            factories.message(factories.identity_token()).as_subscribe_applied()

    def test_wrap(self) -> None:
        """Test wrap takes the kind from the payload."""
        payload = SubscriptionError(error="x")
        msg = ServerMessage.wrap(payload)
        assert msg.kind is ServerMessageKind.SUBSCRIPTION_ERROR
        assert msg.as_subscription_error() is payload

    def test_kind_from_string(self) -> None:
        """Test a plain string kind is coerced to the enum."""
        msg = ServerMessage("SubscriptionError", SubscriptionError(error="x"))  # type: ignore[arg-type]
        assert msg.kind is ServerMessageKind.SUBSCRIPTION_ERROR
        assert msg.as_subscription_error().error == "x"

    def test_to_json_parses_back(self) -> None:
        """Test a message serializes to an envelope that parses to the same message."""
        msg = factories.message(factories.transaction_update(status={"Failed": "boom"}))
        assert parse_server_message(msg.to_json()) == msg


ENVELOPES = {
    ServerMessageKind.INITIAL_SUBSCRIPTION: lambda: factories.initial_subscription(1, factories.database_update()),
    ServerMessageKind.TRANSACTION_UPDATE: lambda: factories.transaction_update(),
    ServerMessageKind.TRANSACTION_UPDATE_LIGHT: lambda: factories.transaction_update_light(
        1, factories.database_update()
    ),
    ServerMessageKind.IDENTITY_TOKEN: lambda: factories.identity_token(),
    ServerMessageKind.ONE_OFF_QUERY_RESPONSE: lambda: factories.one_off_query_response("AQI="),
    ServerMessageKind.SUBSCRIBE_APPLIED: lambda: factories.subscribe_applied(1, 1),
    ServerMessageKind.UNSUBSCRIBE_APPLIED: lambda: factories.unsubscribe_applied(1, 1),
    ServerMessageKind.SUBSCRIPTION_ERROR: lambda: factories.subscription_error("x", request_id=1),
    ServerMessageKind.SUBSCRIBE_MULTI_APPLIED: lambda: factories.subscribe_multi_applied(
        1, 1, factories.database_update()
    ),
    ServerMessageKind.UNSUBSCRIBE_MULTI_APPLIED: lambda: factories.unsubscribe_multi_applied(
        1, 1, factories.database_update()
    ),
}

ACCESSORS = {
    ServerMessageKind.INITIAL_SUBSCRIPTION: "as_initial_subscription",
    ServerMessageKind.TRANSACTION_UPDATE: "as_transaction_update",
    ServerMessageKind.TRANSACTION_UPDATE_LIGHT: "as_transaction_update_light",
    ServerMessageKind.IDENTITY_TOKEN: "as_identity_token",
    ServerMessageKind.ONE_OFF_QUERY_RESPONSE: "as_one_off_query_response",
    ServerMessageKind.SUBSCRIBE_APPLIED: "as_subscribe_applied",
    ServerMessageKind.UNSUBSCRIBE_APPLIED: "as_unsubscribe_applied",
    ServerMessageKind.SUBSCRIPTION_ERROR: "as_subscription_error",
    ServerMessageKind.SUBSCRIBE_MULTI_APPLIED: "as_subscribe_multi_applied",
    ServerMessageKind.UNSUBSCRIBE_MULTI_APPLIED: "as_unsubscribe_multi_applied",
}


class TestVariantClosure:
    """Tests that every message answers exactly one typed accessor."""

    def test_every_kind_covered(self) -> None:
        """Test the tables below list all ten kinds."""
        assert set(ENVELOPES) == set(ServerMessageKind) == set(ACCESSORS)
        assert len(ServerMessageKind) == 10

    @pytest.mark.parametrize("kind", list(ServerMessageKind))
    def test_only_matching_accessor(self, kind: ServerMessageKind) -> None:
        """Test the matching accessor returns the payload and the other nine raise."""
        msg = parse_server_message(ENVELOPES[kind]())

        assert msg.kind is kind
        assert getattr(msg, ACCESSORS[kind])() is msg.payload
        for other, accessor in ACCESSORS.items():
            if other is kind:
                continue
            with pytest.raises(WrongVariantError) as exc_info:
                getattr(msg, accessor)()
            assert exc_info.value.expected == other
            assert exc_info.value.actual == kind
