"""
Server-to-client protocol messages.

Every inbound text frame holds one JSON object with a single key naming the
message variant. ``parse_server_message`` turns it into a ``ServerMessage``
whose ``kind`` selects the payload type; the ``as_<variant>()`` accessors
return the payload only when the kind matches.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar

from ..exceptions import AmbiguousSumTagError, DecodeError, UnknownMessageVariantError, WrongVariantError
from ..sats.algebraic import split_tag
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
    TimeDuration,
    Timestamp,
    UpdateStatus,
    UpdateStatusKind,
    as_str,
    as_u32,
    as_u64,
    decode_bytes,
    encode_bytes,
    message_key,
    request_key,
    require,
    unwrap_option,
)

logger = logging.getLogger(__name__)


class ServerMessageKind(StrEnum):
    """Discriminant of a server message."""

    INITIAL_SUBSCRIPTION = "InitialSubscription"
    TRANSACTION_UPDATE = "TransactionUpdate"
    TRANSACTION_UPDATE_LIGHT = "TransactionUpdateLight"
    IDENTITY_TOKEN = "IdentityToken"
    ONE_OFF_QUERY_RESPONSE = "OneOffQueryResponse"
    SUBSCRIBE_APPLIED = "SubscribeApplied"
    UNSUBSCRIBE_APPLIED = "UnsubscribeApplied"
    SUBSCRIPTION_ERROR = "SubscriptionError"
    SUBSCRIBE_MULTI_APPLIED = "SubscribeMultiApplied"
    UNSUBSCRIBE_MULTI_APPLIED = "UnsubscribeMultiApplied"


def _duration(data: dict[str, Any], key: str) -> TimeDuration:
    value = data.get(key)
    if value is None:
        return TimeDuration(0)
    return TimeDuration.from_dict(value)


def _optional_u32(value: Any, what: str) -> int | None:
    value = unwrap_option(value)
    if value is None:
        return None
    if isinstance(value, dict):
        value = require(value, "id", what)
    return as_u32(value, what)


@dataclass
class InitialSubscription:
    """Snapshot answering a legacy Subscribe."""

    database_update: DatabaseUpdate
    request_id: int
    total_host_execution_duration: TimeDuration = field(default_factory=lambda: TimeDuration(0))

    kind: ClassVar[ServerMessageKind] = ServerMessageKind.INITIAL_SUBSCRIPTION

    @property
    def correlation_key(self) -> CorrelationKey | None:
        return request_key(self.request_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "database_update": self.database_update.to_dict(),
            "request_id": self.request_id,
            "total_host_execution_duration": self.total_host_execution_duration.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "InitialSubscription":
        return cls(
            database_update=DatabaseUpdate.from_dict(require(data, "database_update", cls.kind)),
            request_id=as_u32(require(data, "request_id", cls.kind), "request_id"),
            total_host_execution_duration=_duration(data, "total_host_execution_duration"),
        )


@dataclass
class TransactionUpdate:
    """
    Outcome of a transaction, with the row changes it made when committed.

    Attributes:
        status: Committed, Failed or OutOfEnergy
        timestamp: When the transaction ran
        caller_identity: Identity of the client that called the reducer
        caller_connection_id: Connection that called the reducer
        reducer_call: The reducer call that caused the transaction
        energy_quanta_used: Energy consumed
        total_host_execution_duration: Server-side execution time
    """

    status: UpdateStatus
    timestamp: Timestamp
    caller_identity: Identity
    caller_connection_id: ConnectionId
    reducer_call: ReducerCallInfo
    energy_quanta_used: EnergyQuanta = field(default_factory=lambda: EnergyQuanta(0))
    total_host_execution_duration: TimeDuration = field(default_factory=lambda: TimeDuration(0))

    kind: ClassVar[ServerMessageKind] = ServerMessageKind.TRANSACTION_UPDATE

    @property
    def is_committed(self) -> bool:
        return self.status.kind is UpdateStatusKind.COMMITTED

    @property
    def is_failed(self) -> bool:
        return self.status.kind is UpdateStatusKind.FAILED

    @property
    def is_out_of_energy(self) -> bool:
        return self.status.kind is UpdateStatusKind.OUT_OF_ENERGY

    @property
    def error(self) -> str | None:
        """Failure message, when the transaction failed."""
        return self.status.error if self.is_failed else None

    @property
    def reducer_name(self) -> str:
        return self.reducer_call.reducer_name

    @property
    def request_id(self) -> int:
        return self.reducer_call.request_id

    @property
    def database_update(self) -> DatabaseUpdate | None:
        """Row changes, only present when committed."""
        return self.status.database_update if self.is_committed else None

    def table_updates(self) -> list[TableUpdate]:
        update = self.database_update
        return list(update.tables) if update is not None else []

    @property
    def correlation_key(self) -> CorrelationKey | None:
        return request_key(self.request_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.to_dict(),
            "timestamp": self.timestamp.to_dict(),
            "caller_identity": self.caller_identity.to_dict(),
            "caller_connection_id": self.caller_connection_id.to_dict(),
            "reducer_call": self.reducer_call.to_dict(),
            "energy_quanta_used": self.energy_quanta_used.to_dict(),
            "total_host_execution_duration": self.total_host_execution_duration.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TransactionUpdate":
        energy = data.get("energy_quanta_used") if isinstance(data, dict) else None
        return cls(
            status=UpdateStatus.from_dict(require(data, "status", cls.kind)),
            timestamp=Timestamp.from_dict(require(data, "timestamp", cls.kind)),
            caller_identity=Identity.from_dict(require(data, "caller_identity", cls.kind)),
            caller_connection_id=ConnectionId.from_dict(require(data, "caller_connection_id", cls.kind)),
            reducer_call=ReducerCallInfo.from_dict(require(data, "reducer_call", cls.kind)),
            energy_quanta_used=EnergyQuanta.from_dict(energy) if energy is not None else EnergyQuanta(0),
            total_host_execution_duration=_duration(data, "total_host_execution_duration"),
        )


@dataclass
class TransactionUpdateLight:
    """Row changes of a transaction, without caller metadata."""

    request_id: int
    update: DatabaseUpdate

    kind: ClassVar[ServerMessageKind] = ServerMessageKind.TRANSACTION_UPDATE_LIGHT

    @property
    def correlation_key(self) -> CorrelationKey | None:
        return request_key(self.request_id)

    def to_dict(self) -> dict[str, Any]:
        return {"request_id": self.request_id, "update": self.update.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> "TransactionUpdateLight":
        return cls(
            request_id=as_u32(require(data, "request_id", cls.kind), "request_id"),
            update=DatabaseUpdate.from_dict(require(data, "update", cls.kind)),
        )


@dataclass
class IdentityToken:
    """Identity, token and connection id assigned after the handshake."""

    identity: Identity
    token: str
    connection_id: ConnectionId

    kind: ClassVar[ServerMessageKind] = ServerMessageKind.IDENTITY_TOKEN

    @property
    def correlation_key(self) -> CorrelationKey | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity.to_dict(),
            "token": self.token,
            "connection_id": self.connection_id.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "IdentityToken":
        return cls(
            identity=Identity.from_dict(require(data, "identity", cls.kind)),
            token=as_str(require(data, "token", cls.kind), "token"),
            connection_id=ConnectionId.from_dict(require(data, "connection_id", cls.kind)),
        )


@dataclass
class OneOffQueryResponse:
    """Result of a one-off query."""

    message_id: bytes
    error: str | None = None
    tables: list[OneOffTable] = field(default_factory=list)
    total_host_execution_duration: TimeDuration = field(default_factory=lambda: TimeDuration(0))

    kind: ClassVar[ServerMessageKind] = ServerMessageKind.ONE_OFF_QUERY_RESPONSE

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def correlation_key(self) -> CorrelationKey | None:
        return message_key(self.message_id)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "message_id": encode_bytes(self.message_id),
            "tables": [table.to_dict() for table in self.tables],
            "total_host_execution_duration": self.total_host_execution_duration.to_dict(),
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "OneOffQueryResponse":
        message_id = decode_bytes(require(data, "message_id", cls.kind), "message_id")
        error = unwrap_option(data.get("error"))
        tables = data.get("tables") or []
        if not isinstance(tables, list):
            raise DecodeError("OneOffQueryResponse 'tables' must be a list", data)
        return cls(
            message_id=message_id,
            error=as_str(error, "error") if error is not None else None,
            tables=[OneOffTable.from_dict(table) for table in tables],
            total_host_execution_duration=_duration(data, "total_host_execution_duration"),
        )


@dataclass
class _QueryApplied:
    request_id: int
    query_id: QueryId
    total_host_execution_duration_micros: int = 0

    @property
    def correlation_key(self) -> CorrelationKey | None:
        return request_key(self.request_id)

    def _base_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "total_host_execution_duration_micros": self.total_host_execution_duration_micros,
            "query_id": self.query_id.to_dict(),
        }

    @classmethod
    def _base_fields(cls, data: Any, what: str) -> dict[str, Any]:
        return {
            "request_id": as_u32(require(data, "request_id", what), "request_id"),
            "query_id": QueryId.from_dict(require(data, "query_id", what)),
            "total_host_execution_duration_micros": as_u64(
                data.get("total_host_execution_duration_micros", 0), "total_host_execution_duration_micros"
            ),
        }


@dataclass
class SubscribeApplied(_QueryApplied):
    """Confirms a SubscribeSingle and carries the matching rows."""

    rows: SubscribeRows | None = None

    kind: ClassVar[ServerMessageKind] = ServerMessageKind.SUBSCRIBE_APPLIED

    def to_dict(self) -> dict[str, Any]:
        data = self._base_dict()
        if self.rows is not None:
            data["rows"] = self.rows.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "SubscribeApplied":
        fields = cls._base_fields(data, cls.kind)
        return cls(rows=SubscribeRows.from_dict(require(data, "rows", cls.kind)), **fields)


@dataclass
class UnsubscribeApplied(_QueryApplied):
    """Confirms an Unsubscribe and carries the rows that left the view."""

    rows: SubscribeRows | None = None

    kind: ClassVar[ServerMessageKind] = ServerMessageKind.UNSUBSCRIBE_APPLIED

    def to_dict(self) -> dict[str, Any]:
        data = self._base_dict()
        if self.rows is not None:
            data["rows"] = self.rows.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "UnsubscribeApplied":
        fields = cls._base_fields(data, cls.kind)
        return cls(rows=SubscribeRows.from_dict(require(data, "rows", cls.kind)), **fields)


@dataclass
class SubscribeMultiApplied(_QueryApplied):
    """Confirms a SubscribeMulti and carries the matching rows."""

    update: DatabaseUpdate = field(default_factory=DatabaseUpdate)

    kind: ClassVar[ServerMessageKind] = ServerMessageKind.SUBSCRIBE_MULTI_APPLIED

    def to_dict(self) -> dict[str, Any]:
        data = self._base_dict()
        data["update"] = self.update.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "SubscribeMultiApplied":
        fields = cls._base_fields(data, cls.kind)
        return cls(update=DatabaseUpdate.from_dict(require(data, "update", cls.kind)), **fields)


@dataclass
class UnsubscribeMultiApplied(_QueryApplied):
    """Confirms an UnsubscribeMulti and carries the rows that left the view."""

    update: DatabaseUpdate = field(default_factory=DatabaseUpdate)

    kind: ClassVar[ServerMessageKind] = ServerMessageKind.UNSUBSCRIBE_MULTI_APPLIED

    def to_dict(self) -> dict[str, Any]:
        data = self._base_dict()
        data["update"] = self.update.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "UnsubscribeMultiApplied":
        fields = cls._base_fields(data, cls.kind)
        return cls(update=DatabaseUpdate.from_dict(require(data, "update", cls.kind)), **fields)


@dataclass
class SubscriptionError:
    """
    A subscribe or unsubscribe request failed, or an active subscription broke.

    Attributes:
        error: Error text from the server
        request_id: Present when answering a specific request
        query_id: Present when tied to a query set
        table_id: Present when tied to one table
        total_host_execution_duration_micros: Server-side execution time
    """

    error: str
    request_id: int | None = None
    query_id: int | None = None
    table_id: int | None = None
    total_host_execution_duration_micros: int = 0

    kind: ClassVar[ServerMessageKind] = ServerMessageKind.SUBSCRIPTION_ERROR

    @property
    def correlation_key(self) -> CorrelationKey | None:
        if self.request_id is None:
            return None
        return request_key(self.request_id)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "total_host_execution_duration_micros": self.total_host_execution_duration_micros,
            "error": self.error,
        }
        for key in ("request_id", "query_id", "table_id"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "SubscriptionError":
        return cls(
            error=as_str(require(data, "error", cls.kind), "error"),
            request_id=_optional_u32(data.get("request_id"), "request_id"),
            query_id=_optional_u32(data.get("query_id"), "query_id"),
            table_id=_optional_u32(data.get("table_id"), "table_id"),
            total_host_execution_duration_micros=as_u64(
                data.get("total_host_execution_duration_micros", 0), "total_host_execution_duration_micros"
            ),
        )


ServerPayload = (
    InitialSubscription
    | TransactionUpdate
    | TransactionUpdateLight
    | IdentityToken
    | OneOffQueryResponse
    | SubscribeApplied
    | UnsubscribeApplied
    | SubscriptionError
    | SubscribeMultiApplied
    | UnsubscribeMultiApplied
)

SERVER_PAYLOAD_TYPES: dict[ServerMessageKind, Any] = {
    cls.kind: cls
    for cls in (
        InitialSubscription,
        TransactionUpdate,
        TransactionUpdateLight,
        IdentityToken,
        OneOffQueryResponse,
        SubscribeApplied,
        UnsubscribeApplied,
        SubscriptionError,
        SubscribeMultiApplied,
        UnsubscribeMultiApplied,
    )
}


@dataclass
class ServerMessage:
    """
    A decoded server message.

    Attributes:
        kind: Which variant this is
        payload: The variant's payload
    """

    kind: ServerMessageKind
    payload: ServerPayload

    def __post_init__(self) -> None:
        self.kind = ServerMessageKind(self.kind)

    @classmethod
    def wrap(cls, payload: ServerPayload) -> "ServerMessage":
        """Build a message around a payload, taking the kind from its type."""
        return cls(payload.kind, payload)

    @property
    def correlation_key(self) -> CorrelationKey | None:
        return self.payload.correlation_key

    def _expect(self, kind: ServerMessageKind) -> Any:
        if self.kind is not kind:
            raise WrongVariantError(kind.value, self.kind.value)
        return self.payload

    def as_initial_subscription(self) -> InitialSubscription:
        return self._expect(ServerMessageKind.INITIAL_SUBSCRIPTION)

    def as_transaction_update(self) -> TransactionUpdate:
        return self._expect(ServerMessageKind.TRANSACTION_UPDATE)

    def as_transaction_update_light(self) -> TransactionUpdateLight:
        return self._expect(ServerMessageKind.TRANSACTION_UPDATE_LIGHT)

    def as_identity_token(self) -> IdentityToken:
        return self._expect(ServerMessageKind.IDENTITY_TOKEN)

    def as_one_off_query_response(self) -> OneOffQueryResponse:
        return self._expect(ServerMessageKind.ONE_OFF_QUERY_RESPONSE)

    def as_subscribe_applied(self) -> SubscribeApplied:
        return self._expect(ServerMessageKind.SUBSCRIBE_APPLIED)

    def as_unsubscribe_applied(self) -> UnsubscribeApplied:
        return self._expect(ServerMessageKind.UNSUBSCRIBE_APPLIED)

    def as_subscription_error(self) -> SubscriptionError:
        return self._expect(ServerMessageKind.SUBSCRIPTION_ERROR)

    def as_subscribe_multi_applied(self) -> SubscribeMultiApplied:
        return self._expect(ServerMessageKind.SUBSCRIBE_MULTI_APPLIED)

    def as_unsubscribe_multi_applied(self) -> UnsubscribeMultiApplied:
        return self._expect(ServerMessageKind.UNSUBSCRIBE_MULTI_APPLIED)

    def to_dict(self) -> dict[str, Any]:
        return {self.kind.value: self.payload.to_dict()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def parse_server_message(raw: str | bytes | dict[str, Any]) -> ServerMessage:
    """
    Parse one inbound server message.

    Args:
        raw: JSON text, UTF-8 bytes, or an already decoded object

    Raises:
        DecodeError: For invalid JSON, a non-object, or a malformed payload
        AmbiguousSumTagError: If the envelope or a nested sum does not have exactly one key
        UnknownMessageVariantError: If the key names no server message
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError("Invalid JSON in server message", raw) from e
    else:
        data = raw

    variant, payload = split_tag(data, "Server message")
    try:
        kind = ServerMessageKind(variant)
    except ValueError:
        raise UnknownMessageVariantError(variant, data) from None

    try:
        parsed = SERVER_PAYLOAD_TYPES[kind].from_dict(payload)
    except AmbiguousSumTagError:
        raise
    except ValueError as e:
        raise DecodeError(f"Invalid {variant} payload ({e})", payload) from e

    logger.debug("Parsed %s message", kind.value)
    return ServerMessage(kind, parsed)


__all__ = [
    "IdentityToken",
    "InitialSubscription",
    "OneOffQueryResponse",
    "SERVER_PAYLOAD_TYPES",
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
