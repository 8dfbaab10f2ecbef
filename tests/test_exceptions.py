"""Tests for the SDK exception hierarchy."""

import builtins

import pytest

from spacetime_sdk.exceptions import (
    FRAGMENT_LIMIT,
    AmbiguousSumTagError,
    AuthenticationError,
    ConnectionClosedError,
    ConnectionError,
    DecodeError,
    HandshakeError,
    NotConnectedError,
    SpacetimeDBError,
    SubscriptionFailedError,
    TimeoutError,
    UnknownMessageVariantError,
    UnknownTypeRefError,
    UnsupportedProtocolError,
    UnsupportedTypeError,
    ValidationError,
    WrongVariantError,
)


class TestHierarchy:
    """Tests for exception inheritance."""

    @pytest.mark.parametrize(
        "error_type",
        [
            ConnectionError,
            AuthenticationError,
            TimeoutError,
            DecodeError,
            ValidationError,
            UnknownTypeRefError,
            UnsupportedTypeError,
            UnsupportedProtocolError,
            WrongVariantError,
            SubscriptionFailedError,
        ],
    )
    def test_base_class(self, error_type: type[Exception]) -> None:
        """Test every SDK error derives from SpacetimeDBError."""
        assert issubclass(error_type, SpacetimeDBError)

    def test_connection_errors(self) -> None:
        """Test connection failures share ConnectionError."""
        for error_type in (HandshakeError, ConnectionClosedError, NotConnectedError):
            assert issubclass(error_type, ConnectionError)

    def test_decode_errors(self) -> None:
        """Test envelope errors are decode errors and value errors."""
        assert issubclass(AmbiguousSumTagError, DecodeError)
        assert issubclass(UnknownMessageVariantError, DecodeError)
        assert issubclass(DecodeError, ValueError)

    def test_builtin_compatibility(self) -> None:
        """Test errors can be caught by the matching builtin category."""
        assert issubclass(UnsupportedProtocolError, ValueError)
        assert issubclass(UnknownTypeRefError, LookupError)
        assert issubclass(WrongVariantError, TypeError)
        assert not issubclass(ConnectionError, builtins.ConnectionError)
        assert not issubclass(TimeoutError, builtins.TimeoutError)


class TestAttributes:
    """Tests for the data carried by errors."""

    def test_base_error(self) -> None:
        """Test message and code."""
        error = SpacetimeDBError("HTTP error: 500", code=500)
        assert error.message == "HTTP error: 500"
        assert error.code == 500
        assert str(error) == "HTTP error: 500"

    def test_handshake_error(self) -> None:
        """Test the HTTP status is kept as status and code."""
        error = HandshakeError("WebSocket handshake failed with status 401", status=401)
        assert error.status == 401
        assert error.code == 401

    def test_connection_closed_error(self) -> None:
        """Test the close code is kept."""
        error = ConnectionClosedError("Connection closed by server", close_code=4000)
        assert error.close_code == 4000
        assert error.code == 4000

    def test_validation_error_path(self) -> None:
        """Test the value path prefixes the message."""
        error = ValidationError("expected a string", path="args.name")
        assert error.path == "args.name"
        assert str(error) == "args.name: expected a string"
        assert str(ValidationError("expected a string")) == "expected a string"

    def test_subscription_failed_error(self) -> None:
        """Test subscription ids are kept."""
        error = SubscriptionFailedError("no such table", query_id=3, request_id=9)
        assert (error.query_id, error.request_id, error.table_id) == (3, 9, None)

    def test_named_errors(self) -> None:
        """Test errors that name the offending item."""
        assert UnsupportedProtocolError("v1.bsatn.spacetimedb").protocol == "v1.bsatn.spacetimedb"
        assert UnknownTypeRefError(4).index == 4
        assert AmbiguousSumTagError(["a", "b"]).keys == ["a", "b"]
        assert UnknownMessageVariantError("Heartbeat").variant == "Heartbeat"
        wrong = WrongVariantError("TransactionUpdate", "IdentityToken")
        assert str(wrong) == "Message is IdentityToken, not TransactionUpdate"


class TestDecodeErrorFragment:
    """Tests for the raw fragment attached to decode errors."""

    def test_fragment_in_message(self) -> None:
        """Test the fragment is appended to the message."""
        error = DecodeError("Invalid JSON", "{oops")
        assert error.fragment == "{oops"
        assert str(error) == "Invalid JSON: {oops"

    def test_no_fragment(self) -> None:
        """Test errors without data keep the plain message."""
        error = DecodeError("Invalid JSON")
        assert error.fragment is None
        assert str(error) == "Invalid JSON"

    def test_fragment_truncated(self) -> None:
        """Test long fragments are cut to the limit."""
        error = DecodeError("Invalid JSON", "x" * (FRAGMENT_LIMIT + 50))
        assert error.fragment == "x" * FRAGMENT_LIMIT + "..."

    def test_bytes_and_objects(self) -> None:
        """Test bytes are decoded and other objects are shown with repr."""
        assert DecodeError("bad", b"\xffab").fragment == "�ab"
        assert DecodeError("bad", {"a": 1}).fragment == "{'a': 1}"
