"""
Payload types shared by client and server protocol messages.

Every type converts to and from the decoded JSON form with ``from_dict`` /
``to_dict``. Parsing errors raise ``DecodeError``; ``parse_server_message``
re-raises them naming the enclosing message variant.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any

from ..exceptions import DecodeError
from ..sats.algebraic import AlgebraicType, split_tag
from ..sats.typed import decode_typed
from ..sats.typespace import Typespace
from ..sats.values import AlgebraicValue, decode_value

U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Correlation keys pair a namespace with the identifier a response echoes back
CorrelationKey = tuple[str, int | bytes]


def request_key(request_id: int) -> CorrelationKey:
    return ("request_id", request_id)


def message_key(message_id: bytes) -> CorrelationKey:
    return ("message_id", bytes(message_id))


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def require(data: Any, key: str, what: str) -> Any:
    """Fetch a required key from a payload object."""
    if not isinstance(data, dict):
        raise DecodeError(f"{what} must be a JSON object", data)
    if key not in data:
        raise DecodeError(f"{what} is missing '{key}'", data)
    return data[key]


def as_int(value: Any, what: str, low: int | None = None, high: int | None = None) -> int:
    """Check that a value is an integer within optional inclusive bounds."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or isinstance(value, bool):
        raise DecodeError(f"{what} must be an integer", value)
    if (low is not None and value < low) or (high is not None and value > high):
        raise DecodeError(f"{what} is out of range", value)
    return value


def as_u32(value: Any, what: str) -> int:
    return as_int(value, what, 0, U32_MAX)


def as_u64(value: Any, what: str) -> int:
    return as_int(value, what, 0, U64_MAX)


def as_str(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise DecodeError(f"{what} must be a string", value)
    return value


def unwrap_option(value: Any) -> Any:
    """Map ``{"some": x}`` to ``x`` and ``{"none": ...}`` to None; pass others through."""
    if isinstance(value, dict) and len(value) == 1:
        if "some" in value:
            return value["some"]
        if "none" in value:
            return None
    return value


def encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_bytes(value: Any, what: str) -> bytes:
    """Decode a byte string sent as base64 text or as a list of octets."""
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"{what} is not valid base64", value) from e
    if isinstance(value, list) and all(isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255 for b in value):
        return bytes(value)
    raise DecodeError(f"{what} must be base64 text", value)


def row_text(row: Any) -> str:
    """Normalize a row to JSON text; rows that are already text are kept as-is."""
    if isinstance(row, str):
        return row
    return json.dumps(row, separators=(",", ":"))


def _row_list(value: Any, what: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise DecodeError(f"{what} must be a list of rows", value)
    return [row_text(row) for row in value]


def _decode_rows(rows: list[str], row_type: AlgebraicType | None, typespace: Typespace | None) -> list[AlgebraicValue]:
    if row_type is None:
        return [decode_value(row) for row in rows]
    decoded = []
    for row in rows:
        try:
            data = json.loads(row)
        except json.JSONDecodeError as e:
            raise DecodeError("Invalid JSON in row", row) from e
        decoded.append(decode_typed(data, row_type, typespace))
    return decoded


# ---------------------------------------------------------------------------
# Identifiers and scalars
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QueryId:
    """Client-chosen identifier of a subscription query set."""

    id: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id}

    @classmethod
    def from_dict(cls, data: Any) -> "QueryId":
        if isinstance(data, int) and not isinstance(data, bool):
            return cls(as_u32(data, "query_id"))
        return cls(as_u32(require(data, "id", "QueryId"), "query_id.id"))


@dataclass(frozen=True)
class Identity:
    """Long-lived identity of a client, as hex text."""

    value: str

    def __str__(self) -> str:
        return self.value

    def to_dict(self) -> dict[str, Any]:
        return {"__identity__": self.value}

    @classmethod
    def from_dict(cls, data: Any) -> "Identity":
        if isinstance(data, str):
            return cls(data)
        return cls(as_str(require(data, "__identity__", "Identity"), "identity"))


@dataclass(frozen=True)
class ConnectionId:
    """Identifier of a single client connection."""

    value: int

    def to_dict(self) -> dict[str, Any]:
        return {"__connection_id__": self.value}

    @classmethod
    def from_dict(cls, data: Any) -> "ConnectionId":
        if isinstance(data, int) and not isinstance(data, bool):
            return cls(as_int(data, "connection_id", 0))
        return cls(as_int(require(data, "__connection_id__", "ConnectionId"), "connection_id", 0))


@dataclass(frozen=True)
class Timestamp:
    """Microseconds since the Unix epoch."""

    micros: int

    def as_datetime(self) -> datetime:
        return _EPOCH + timedelta(microseconds=self.micros)

    def to_dict(self) -> dict[str, Any]:
        return {"__timestamp_micros_since_unix_epoch__": self.micros}

    @classmethod
    def from_dict(cls, data: Any) -> "Timestamp":
        return cls(as_int(require(data, "__timestamp_micros_since_unix_epoch__", "Timestamp"), "timestamp"))


@dataclass(frozen=True)
class TimeDuration:
    """A duration in microseconds."""

    micros: int

    def as_timedelta(self) -> timedelta:
        return timedelta(microseconds=self.micros)

    def to_dict(self) -> dict[str, Any]:
        return {"__time_duration_micros__": self.micros}

    @classmethod
    def from_dict(cls, data: Any) -> "TimeDuration":
        return cls(as_int(require(data, "__time_duration_micros__", "TimeDuration"), "duration"))


@dataclass(frozen=True)
class EnergyQuanta:
    """Energy consumed by a reducer call."""

    quanta: int

    def to_dict(self) -> dict[str, Any]:
        return {"quanta": self.quanta}

    @classmethod
    def from_dict(cls, data: Any) -> "EnergyQuanta":
        return cls(as_int(require(data, "quanta", "EnergyQuanta"), "quanta", 0))


# ---------------------------------------------------------------------------
# Row updates
# ---------------------------------------------------------------------------


@dataclass
class TableUpdateEntry:
    """
    One batch of row changes.

    Attributes:
        inserts: Inserted rows as JSON text
        deletes: Deleted rows as JSON text
    """

    inserts: list[str] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"inserts": list(self.inserts), "deletes": list(self.deletes)}

    @classmethod
    def from_dict(cls, data: Any) -> "TableUpdateEntry":
        """
        Parse an entry, unwrapping the ``Uncompressed`` envelope.

        Raises:
            DecodeError: For compressed (Brotli, Gzip) or malformed entries
        """
        if isinstance(data, dict) and len(data) == 1:
            (tag,) = data
            if tag == "Uncompressed":
                data = data[tag]
            elif tag in ("Brotli", "Gzip"):
                raise DecodeError(f"{tag} compressed row updates are not supported")
        if not isinstance(data, dict):
            raise DecodeError("TableUpdateEntry must be a JSON object", data)
        return cls(
            inserts=_row_list(data.get("inserts"), "inserts"),
            deletes=_row_list(data.get("deletes"), "deletes"),
        )


@dataclass
class TableUpdate:
    """
    Row changes for one table.

    Attributes:
        table_id: Server-assigned table identifier
        table_name: Table name
        num_rows: Total row count reported by the server
        updates: Batches of inserts and deletes, in order
    """

    table_id: int
    table_name: str
    num_rows: int = 0
    updates: list[TableUpdateEntry] = field(default_factory=list)

    @property
    def inserts(self) -> list[str]:
        return [row for entry in self.updates for row in entry.inserts]

    @property
    def deletes(self) -> list[str]:
        return [row for entry in self.updates for row in entry.deletes]

    def decoded_inserts(
        self, row_type: AlgebraicType | None = None, typespace: Typespace | None = None
    ) -> list[AlgebraicValue]:
        """Decode inserted rows, strictly when a row type is given."""
        return _decode_rows(self.inserts, row_type, typespace)

    def decoded_deletes(
        self, row_type: AlgebraicType | None = None, typespace: Typespace | None = None
    ) -> list[AlgebraicValue]:
        """Decode deleted rows, strictly when a row type is given."""
        return _decode_rows(self.deletes, row_type, typespace)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_id": self.table_id,
            "table_name": self.table_name,
            "num_rows": self.num_rows,
            "updates": [entry.to_dict() for entry in self.updates],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TableUpdate":
        updates = data.get("updates", []) if isinstance(data, dict) else None
        if not isinstance(updates, list):
            raise DecodeError("TableUpdate 'updates' must be a list", data)
        return cls(
            table_id=as_u32(require(data, "table_id", "TableUpdate"), "table_id"),
            table_name=as_str(require(data, "table_name", "TableUpdate"), "table_name"),
            num_rows=as_u64(data.get("num_rows", 0), "num_rows"),
            updates=[TableUpdateEntry.from_dict(entry) for entry in updates],
        )


@dataclass
class DatabaseUpdate:
    """Row changes across tables from one transaction or subscription."""

    tables: list[TableUpdate] = field(default_factory=list)

    def table(self, name: str) -> TableUpdate | None:
        for table in self.tables:
            if table.table_name == name:
                return table
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"tables": [table.to_dict() for table in self.tables]}

    @classmethod
    def from_dict(cls, data: Any) -> "DatabaseUpdate":
        tables = require(data, "tables", "DatabaseUpdate")
        if not isinstance(tables, list):
            raise DecodeError("DatabaseUpdate 'tables' must be a list", data)
        return cls([TableUpdate.from_dict(table) for table in tables])


@dataclass
class SubscribeRows:
    """Rows of the single table matched by a SubscribeSingle query."""

    table_id: int
    table_name: str
    table_rows: TableUpdate

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_id": self.table_id,
            "table_name": self.table_name,
            "table_rows": self.table_rows.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "SubscribeRows":
        return cls(
            table_id=as_u32(require(data, "table_id", "SubscribeRows"), "table_id"),
            table_name=as_str(require(data, "table_name", "SubscribeRows"), "table_name"),
            table_rows=TableUpdate.from_dict(require(data, "table_rows", "SubscribeRows")),
        )


@dataclass
class OneOffTable:
    """Result rows of a one-off query for one table."""

    table_name: str
    rows: list[str] = field(default_factory=list)

    def decoded_rows(
        self, row_type: AlgebraicType | None = None, typespace: Typespace | None = None
    ) -> list[AlgebraicValue]:
        return _decode_rows(self.rows, row_type, typespace)

    def to_dict(self) -> dict[str, Any]:
        return {"table_name": self.table_name, "rows": list(self.rows)}

    @classmethod
    def from_dict(cls, data: Any) -> "OneOffTable":
        return cls(
            table_name=as_str(require(data, "table_name", "OneOffTable"), "table_name"),
            rows=_row_list(require(data, "rows", "OneOffTable"), "rows"),
        )


@dataclass
class ReducerCallInfo:
    """
    The reducer call that caused a transaction.

    Attributes:
        reducer_name: Name of the reducer
        reducer_id: Server-assigned reducer identifier
        args: Call arguments as JSON text
        request_id: Request id chosen by the calling client
    """

    reducer_name: str
    reducer_id: int
    args: str
    request_id: int

    def decoded_args(self) -> AlgebraicValue:
        return decode_value(self.args)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reducer_name": self.reducer_name,
            "reducer_id": self.reducer_id,
            "args": self.args,
            "request_id": self.request_id,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ReducerCallInfo":
        return cls(
            reducer_name=as_str(require(data, "reducer_name", "ReducerCallInfo"), "reducer_name"),
            reducer_id=as_u32(data.get("reducer_id", 0), "reducer_id"),
            args=row_text(data.get("args", [])),
            request_id=as_u32(require(data, "request_id", "ReducerCallInfo"), "request_id"),
        )


class UpdateStatusKind(StrEnum):
    """Outcome of a transaction."""

    COMMITTED = "Committed"
    FAILED = "Failed"
    OUT_OF_ENERGY = "OutOfEnergy"


@dataclass
class UpdateStatus:
    """
    Transaction outcome: Committed with its row changes, Failed with a
    message, or OutOfEnergy.
    """

    kind: UpdateStatusKind
    database_update: DatabaseUpdate | None = None
    error: str | None = None

    @classmethod
    def committed(cls, update: DatabaseUpdate) -> "UpdateStatus":
        return cls(UpdateStatusKind.COMMITTED, database_update=update)

    @classmethod
    def failed(cls, error: str) -> "UpdateStatus":
        return cls(UpdateStatusKind.FAILED, error=error)

    @classmethod
    def out_of_energy(cls) -> "UpdateStatus":
        return cls(UpdateStatusKind.OUT_OF_ENERGY)

    def to_dict(self) -> dict[str, Any]:
        if self.kind is UpdateStatusKind.COMMITTED:
            update = self.database_update or DatabaseUpdate()
            return {self.kind.value: update.to_dict()}
        if self.kind is UpdateStatusKind.FAILED:
            return {self.kind.value: self.error or ""}
        return {self.kind.value: []}

    @classmethod
    def from_dict(cls, data: Any) -> "UpdateStatus":
        tag, payload = split_tag(data, "UpdateStatus")
        if tag == UpdateStatusKind.COMMITTED:
            return cls.committed(DatabaseUpdate.from_dict(payload))
        if tag == UpdateStatusKind.FAILED:
            return cls.failed(as_str(payload, "Failed status"))
        if tag == UpdateStatusKind.OUT_OF_ENERGY:
            return cls.out_of_energy()
        raise DecodeError(f"Unknown update status '{tag}'", data)


__all__ = [
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
]
