"""
Client-to-server protocol messages.

Each message is sent as a single-key JSON object naming its variant:

    {"CallReducer": {"reducer": "add", "args": "[1]", "request_id": 7, "flags": 0}}
"""

import json
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from typing import Any, ClassVar

from ..exceptions import AmbiguousSumTagError, DecodeError, UnknownMessageVariantError
from ..sats.algebraic import split_tag
from .common import (
    CorrelationKey,
    QueryId,
    as_int,
    as_str,
    as_u32,
    decode_bytes,
    encode_bytes,
    message_key,
    request_key,
    require,
)


class ClientMessageKind(StrEnum):
    """Discriminant of a client message."""

    CALL_REDUCER = "CallReducer"
    SUBSCRIBE = "Subscribe"
    ONE_OFF_QUERY = "OneOffQuery"
    SUBSCRIBE_SINGLE = "SubscribeSingle"
    SUBSCRIBE_MULTI = "SubscribeMulti"
    UNSUBSCRIBE = "Unsubscribe"
    UNSUBSCRIBE_MULTI = "UnsubscribeMulti"


class CallReducerFlags(IntEnum):
    """Controls which updates the caller receives for its own reducer call."""

    FULL_UPDATE = 0
    NO_SUCCESS_NOTIFY = 1


def _query_list(value: Any, what: str) -> list[str]:
    if not isinstance(value, list):
        raise DecodeError(f"{what} must be a list of strings", value)
    return [as_str(item, what) for item in value]


class ClientMessage:
    """
    Base class for client messages.

    Subclasses set ``kind`` and implement ``payload_dict`` / ``from_payload``.
    """

    kind: ClassVar[ClientMessageKind]

    def payload_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_payload(cls, data: Any) -> "ClientMessage":
        raise NotImplementedError

    @property
    def correlation_key(self) -> CorrelationKey:
        """Key under which the server's response can be matched."""
        return request_key(getattr(self, "request_id"))

    def to_dict(self) -> dict[str, Any]:
        """Convert to the single-key envelope."""
        return {self.kind.value: self.payload_dict()}

    def to_json(self) -> str:
        """Serialize to JSON text for a WebSocket text frame."""
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass
class CallReducer(ClientMessage):
    """
    Invoke a reducer.

    Attributes:
        reducer: Reducer name
        args: Arguments as a JSON array literal
        request_id: Client-chosen id echoed back in the transaction update
        flags: Notification flags
    """

    reducer: str
    args: str = "[]"
    request_id: int = 0
    flags: CallReducerFlags = CallReducerFlags.FULL_UPDATE

    kind: ClassVar[ClientMessageKind] = ClientMessageKind.CALL_REDUCER

    def payload_dict(self) -> dict[str, Any]:
        return {
            "reducer": self.reducer,
            "args": self.args,
            "request_id": self.request_id,
            "flags": int(self.flags),
        }

    @classmethod
    def from_payload(cls, data: Any) -> "CallReducer":
        args = require(data, "args", "CallReducer")
        return cls(
            reducer=as_str(require(data, "reducer", "CallReducer"), "reducer"),
            args=args if isinstance(args, str) else json.dumps(args, separators=(",", ":")),
            request_id=as_u32(require(data, "request_id", "CallReducer"), "request_id"),
            flags=CallReducerFlags(as_int(data.get("flags", 0), "flags", 0, 1)),
        )


@dataclass
class Subscribe(ClientMessage):
    """Replace the connection's legacy subscription set."""

    query_strings: list[str] = field(default_factory=list)
    request_id: int = 0

    kind: ClassVar[ClientMessageKind] = ClientMessageKind.SUBSCRIBE

    def payload_dict(self) -> dict[str, Any]:
        return {"query_strings": list(self.query_strings), "request_id": self.request_id}

    @classmethod
    def from_payload(cls, data: Any) -> "Subscribe":
        return cls(
            query_strings=_query_list(require(data, "query_strings", "Subscribe"), "query_strings"),
            request_id=as_u32(require(data, "request_id", "Subscribe"), "request_id"),
        )


@dataclass
class OneOffQuery(ClientMessage):
    """
    Run a query once without subscribing.

    Attributes:
        message_id: Opaque bytes echoed back in the response (base64 on the wire)
        query_string: SQL query
    """

    message_id: bytes
    query_string: str

    kind: ClassVar[ClientMessageKind] = ClientMessageKind.ONE_OFF_QUERY

    @property
    def correlation_key(self) -> CorrelationKey:
        return message_key(self.message_id)

    def payload_dict(self) -> dict[str, Any]:
        return {"message_id": encode_bytes(self.message_id), "query_string": self.query_string}

    @classmethod
    def from_payload(cls, data: Any) -> "OneOffQuery":
        return cls(
            message_id=decode_bytes(require(data, "message_id", "OneOffQuery"), "message_id"),
            query_string=as_str(require(data, "query_string", "OneOffQuery"), "query_string"),
        )


@dataclass
class SubscribeSingle(ClientMessage):
    """Add one query to the subscription set under a client-chosen query id."""

    query: str
    request_id: int = 0
    query_id: QueryId = field(default_factory=lambda: QueryId(0))

    kind: ClassVar[ClientMessageKind] = ClientMessageKind.SUBSCRIBE_SINGLE

    def payload_dict(self) -> dict[str, Any]:
        return {"query": self.query, "request_id": self.request_id, "query_id": self.query_id.to_dict()}

    @classmethod
    def from_payload(cls, data: Any) -> "SubscribeSingle":
        return cls(
            query=as_str(require(data, "query", "SubscribeSingle"), "query"),
            request_id=as_u32(require(data, "request_id", "SubscribeSingle"), "request_id"),
            query_id=QueryId.from_dict(require(data, "query_id", "SubscribeSingle")),
        )


@dataclass
class SubscribeMulti(ClientMessage):
    """Add several queries to the subscription set under one query id."""

    query_strings: list[str] = field(default_factory=list)
    request_id: int = 0
    query_id: QueryId = field(default_factory=lambda: QueryId(0))

    kind: ClassVar[ClientMessageKind] = ClientMessageKind.SUBSCRIBE_MULTI

    def payload_dict(self) -> dict[str, Any]:
        return {
            "query_strings": list(self.query_strings),
            "request_id": self.request_id,
            "query_id": self.query_id.to_dict(),
        }

    @classmethod
    def from_payload(cls, data: Any) -> "SubscribeMulti":
        return cls(
            query_strings=_query_list(require(data, "query_strings", "SubscribeMulti"), "query_strings"),
            request_id=as_u32(require(data, "request_id", "SubscribeMulti"), "request_id"),
            query_id=QueryId.from_dict(require(data, "query_id", "SubscribeMulti")),
        )


@dataclass
class Unsubscribe(ClientMessage):
    """Remove a query added with SubscribeSingle."""

    request_id: int = 0
    query_id: QueryId = field(default_factory=lambda: QueryId(0))

    kind: ClassVar[ClientMessageKind] = ClientMessageKind.UNSUBSCRIBE

    def payload_dict(self) -> dict[str, Any]:
        return {"request_id": self.request_id, "query_id": self.query_id.to_dict()}

    @classmethod
    def from_payload(cls, data: Any) -> "Unsubscribe":
        return cls(
            request_id=as_u32(require(data, "request_id", "Unsubscribe"), "request_id"),
            query_id=QueryId.from_dict(require(data, "query_id", "Unsubscribe")),
        )


@dataclass
class UnsubscribeMulti(ClientMessage):
    """Remove a query set added with SubscribeMulti."""

    request_id: int = 0
    query_id: QueryId = field(default_factory=lambda: QueryId(0))

    kind: ClassVar[ClientMessageKind] = ClientMessageKind.UNSUBSCRIBE_MULTI

    def payload_dict(self) -> dict[str, Any]:
        return {"request_id": self.request_id, "query_id": self.query_id.to_dict()}

    @classmethod
    def from_payload(cls, data: Any) -> "UnsubscribeMulti":
        return cls(
            request_id=as_u32(require(data, "request_id", "UnsubscribeMulti"), "request_id"),
            query_id=QueryId.from_dict(require(data, "query_id", "UnsubscribeMulti")),
        )


CLIENT_MESSAGE_TYPES: dict[str, type[ClientMessage]] = {
    cls.kind.value: cls
    for cls in (
        CallReducer,
        Subscribe,
        OneOffQuery,
        SubscribeSingle,
        SubscribeMulti,
        Unsubscribe,
        UnsubscribeMulti,
    )
}


def parse_client_message(raw: str | bytes | dict[str, Any]) -> ClientMessage:
    """
    Parse a client message envelope.

    Used by servers and test fakes to read what a client sent.

    Raises:
        DecodeError: For invalid JSON or a malformed payload
        AmbiguousSumTagError: If the envelope or a nested sum does not have exactly one key
        UnknownMessageVariantError: If the key names no client message
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError("Invalid JSON in client message", raw) from e
    else:
        data = raw
    variant, payload = split_tag(data, "Client message")
    message_type = CLIENT_MESSAGE_TYPES.get(variant)
    if message_type is None:
        raise UnknownMessageVariantError(variant, data)
    try:
        return message_type.from_payload(payload)
    except AmbiguousSumTagError:
        raise
    except ValueError as e:
        raise DecodeError(f"Invalid {variant} payload ({e})", payload) from e


__all__ = [
    "CLIENT_MESSAGE_TYPES",
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
]
