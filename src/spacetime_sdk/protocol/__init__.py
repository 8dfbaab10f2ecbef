"""
SpacetimeDB SDK Protocol Module.

Implements the JSON client protocol (``v1.json.spacetimedb``): the closed
sets of client and server messages and the payload types they share.
"""

from .common import (
    ConnectionId,
    CorrelationKey,
    DatabaseUpdate,
    EnergyQuanta,
    Identity,
    OneOffTable,
    QueryId,
    ReducerCallInfo,
    SubscribeRows,
    TableUpdate,
    TableUpdateEntry,
    TimeDuration,
    Timestamp,
    UpdateStatus,
    UpdateStatusKind,
    message_key,
    request_key,
)
from .client_messages import (
    CallReducer,
    CallReducerFlags,
    ClientMessage,
    ClientMessageKind,
    OneOffQuery,
    Subscribe,
    SubscribeMulti,
    SubscribeSingle,
    Unsubscribe,
    UnsubscribeMulti,
    parse_client_message,
)
from .server_messages import (
    IdentityToken,
    InitialSubscription,
    OneOffQueryResponse,
    ServerMessage,
    ServerMessageKind,
    ServerPayload,
    SubscribeApplied,
    SubscribeMultiApplied,
    SubscriptionError,
    TransactionUpdate,
    TransactionUpdateLight,
    UnsubscribeApplied,
    UnsubscribeMultiApplied,
    parse_server_message,
)

__all__ = [
    # Shared payloads
    "ConnectionId",
    "CorrelationKey",
    "DatabaseUpdate",
    "EnergyQuanta",
    "Identity",
    "OneOffTable",
    "QueryId",
    "ReducerCallInfo",
    "SubscribeRows",
    "TableUpdate",
    "TableUpdateEntry",
    "TimeDuration",
    "Timestamp",
    "UpdateStatus",
    "UpdateStatusKind",
    "message_key",
    "request_key",
    # Client messages
    "CallReducer",
    "CallReducerFlags",
    "ClientMessage",
    "ClientMessageKind",
    "OneOffQuery",
    "Subscribe",
    "SubscribeMulti",
    "SubscribeSingle",
    "Unsubscribe",
    "UnsubscribeMulti",
    "parse_client_message",
    # Server messages
    "IdentityToken",
    "InitialSubscription",
    "OneOffQueryResponse",
    "ServerMessage",
    "ServerMessageKind",
    "ServerPayload",
    "SubscribeApplied",
    "SubscribeMultiApplied",
    "SubscriptionError",
    "TransactionUpdate",
    "TransactionUpdateLight",
    "UnsubscribeApplied",
    "UnsubscribeMultiApplied",
    "parse_server_message",
]
