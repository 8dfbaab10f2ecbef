"""
SpacetimeDB SDK - A Python client core for SpacetimeDB.

This SDK speaks the SpacetimeDB client protocol directly over WebSocket,
using the JSON sub-protocol, with an HTTP collaborator for schema retrieval.

Supports:
- SATS type and value model with strict, schema-directed encoding
- Module schema (RawModuleDef) parsing and reducer argument encoding
- Client and server protocol messages
- WebSocket connections with request/subscription correlation
- Client-side table cache fed by subscription and transaction updates
"""

from typing import Any

from .config import BINARY_PROTOCOL, JSON_PROTOCOL, SCHEMA_VERSION, ConnectionConfig
from .connection.base import BaseSpacetimeConnection
from .connection.http import HTTPConnection
from .connection.websocket import ConnectionState, WebSocketConnection
from .streaming.dispatcher import MessageDispatcher, MessageStream
from .streaming.subscription import SubscriptionHandle, SubscriptionManager, SubscriptionState
from .streaming.table_view import ClientCache, TableView
from .sats import (
    AlgebraicType,
    AlgebraicValue,
    BuiltinType,
    BuiltinValue,
    ProductType,
    ProductValue,
    SumType,
    SumValue,
    Typespace,
    TypeRef,
    check_value,
    decode_typed,
    decode_value,
    encode_value,
    from_python,
)
from .schema import ReducerDef, RawModuleDef, TableDef, TypeName
from .protocol import (
    CallReducer,
    ClientMessage,
    DatabaseUpdate,
    OneOffQuery,
    ServerMessage,
    ServerMessageKind,
    Subscribe,
    SubscribeMulti,
    SubscribeSingle,
    TableUpdate,
    TransactionUpdate,
    Unsubscribe,
    UnsubscribeMulti,
    parse_client_message,
    parse_server_message,
)
from .exceptions import (
    SpacetimeDBError,
    ConnectionError,
    HandshakeError,
    ConnectionClosedError,
    NotConnectedError,
    UnsupportedProtocolError,
    AuthenticationError,
    TimeoutError,
    DecodeError,
    AmbiguousSumTagError,
    UnknownMessageVariantError,
    ValidationError,
    UnknownTypeRefError,
    UnsupportedTypeError,
    WrongVariantError,
    SubscriptionFailedError,
)

__version__ = "0.1.0"
__all__ = [
    # Configuration
    "BINARY_PROTOCOL",
    "ConnectionConfig",
    "JSON_PROTOCOL",
    "SCHEMA_VERSION",
    # Connections
    "BaseSpacetimeConnection",
    "ConnectionState",
    "HTTPConnection",
    "WebSocketConnection",
    # Streaming
    "ClientCache",
    "MessageDispatcher",
    "MessageStream",
    "SubscriptionHandle",
    "SubscriptionManager",
    "SubscriptionState",
    "TableView",
    # SATS
    "AlgebraicType",
    "AlgebraicValue",
    "BuiltinType",
    "BuiltinValue",
    "ProductType",
    "ProductValue",
    "SumType",
    "SumValue",
    "TypeRef",
    "Typespace",
    "check_value",
    "decode_typed",
    "decode_value",
    "encode_value",
    "from_python",
    # Schema
    "RawModuleDef",
    "ReducerDef",
    "TableDef",
    "TypeName",
    # Protocol
    "CallReducer",
    "ClientMessage",
    "DatabaseUpdate",
    "OneOffQuery",
    "ServerMessage",
    "ServerMessageKind",
    "Subscribe",
    "SubscribeMulti",
    "SubscribeSingle",
    "TableUpdate",
    "TransactionUpdate",
    "Unsubscribe",
    "UnsubscribeMulti",
    "parse_client_message",
    "parse_server_message",
    # Exceptions
    "SpacetimeDBError",
    "ConnectionError",
    "HandshakeError",
    "ConnectionClosedError",
    "NotConnectedError",
    "UnsupportedProtocolError",
    "AuthenticationError",
    "TimeoutError",
    "DecodeError",
    "AmbiguousSumTagError",
    "UnknownMessageVariantError",
    "ValidationError",
    "UnknownTypeRefError",
    "UnsupportedTypeError",
    "WrongVariantError",
    "SubscriptionFailedError",
]


class SpacetimeDB:
    """
    Factory class for creating SpacetimeDB connections.

    Usage:
        # WebSocket connection (subscriptions and reducer calls)
        async with SpacetimeDB.ws("ws://localhost:3000", "quickstart", token=token) as conn:
            async with MessageDispatcher(conn) as dispatcher:
                await dispatcher.request(OneOffQuery(b"q1", "SELECT * FROM users"))

        # HTTP connection (liveness and schema)
        async with SpacetimeDB.http("http://localhost:3000") as http:
            schema = await http.get_schema("quickstart")
    """

    @staticmethod
    def http(url: str, **kwargs: Any) -> HTTPConnection:
        """Create an HTTP connection (stateless)."""
        return HTTPConnection(url, **kwargs)

    @staticmethod
    def ws(url: str, database: str, **kwargs: Any) -> WebSocketConnection:
        """Create a WebSocket connection (stateful)."""
        return WebSocketConnection(url, database, **kwargs)

    @staticmethod
    def from_config(config: ConnectionConfig) -> WebSocketConnection:
        """Create a WebSocket connection from a configuration."""
        return WebSocketConnection.from_config(config)
