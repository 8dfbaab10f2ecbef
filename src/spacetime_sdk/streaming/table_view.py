"""
Client-side table cache.

Materializes subscribed rows per table: an initial snapshot, then
transaction deltas applied in order. Rows are kept as JSON text and keyed
by their canonical form, so applying the same insert or delete twice has
no further effect.
"""

import json
import logging
import threading
from collections.abc import Iterator

from ..exceptions import DecodeError
from ..protocol.common import DatabaseUpdate, TableUpdate
from ..protocol.server_messages import ServerMessage, ServerMessageKind, TransactionUpdate
from ..sats.algebraic import AlgebraicType
from ..sats.typed import decode_typed
from ..sats.typespace import Typespace
from ..sats.values import AlgebraicValue, value_from_json
from ..schema import RawModuleDef
from .dispatcher import MessageDispatcher

logger = logging.getLogger(__name__)


def _canonical(row: str) -> str:
    try:
        data = json.loads(row)
    except json.JSONDecodeError as e:
        raise DecodeError("Invalid JSON in row", row) from e
    return json.dumps(data, separators=(",", ":"), sort_keys=True)


# One batch as (deletes, inserts), each row paired with its canonical key
_Batch = tuple[list[tuple[str, str]], list[tuple[str, str]]]


def _prepare(update: TableUpdate) -> list[_Batch]:
    """Canonicalize every row of an update before any of it is applied."""
    return [
        ([(_canonical(row), row) for row in entry.deletes], [(_canonical(row), row) for row in entry.inserts])
        for entry in update.updates
    ]


class TableView:
    """
    Rows of one table.

    Reads return copies and may happen from any thread while the receive
    loop applies updates.
    """

    def __init__(
        self,
        name: str,
        row_type: AlgebraicType | None = None,
        typespace: Typespace | None = None,
    ):
        self.name = name
        self.row_type = row_type
        self.typespace = typespace
        self._rows: dict[str, str] = {}
        self._lock = threading.RLock()

    def insert(self, row: str) -> bool:
        """Insert a row; returns False if it was already present."""
        key = _canonical(row)
        with self._lock:
            if key in self._rows:
                return False
            self._rows[key] = row
            return True

    def delete(self, row: str) -> bool:
        """Delete a row; returns False if it was not present."""
        key = _canonical(row)
        with self._lock:
            return self._rows.pop(key, None) is not None

    def apply(self, update: TableUpdate) -> None:
        """
        Apply each batch of an update in order, deletes before inserts.

        Raises:
            DecodeError: If any row is not valid JSON; nothing is applied then
        """
        self._apply_batches(_prepare(update))

    def _apply_batches(self, batches: list[_Batch]) -> None:
        with self._lock:
            for deletes, inserts in batches:
                for key, _ in deletes:
                    self._rows.pop(key, None)
                for key, row in inserts:
                    self._rows.setdefault(key, row)

    def _discard(self, keys: list[str]) -> None:
        with self._lock:
            for key in keys:
                self._rows.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()

    def rows(self) -> list[str]:
        """Snapshot of the current rows as JSON text."""
        with self._lock:
            return list(self._rows.values())

    def values(self) -> list[AlgebraicValue]:
        """Snapshot of the current rows decoded, strictly when the row type is known."""
        rows = self.rows()
        if self.row_type is None:
            return [value_from_json(json.loads(row)) for row in rows]
        return [decode_typed(json.loads(row), self.row_type, self.typespace) for row in rows]

    def __contains__(self, row: object) -> bool:
        if not isinstance(row, str):
            return False
        key = _canonical(row)
        with self._lock:
            return key in self._rows

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def __iter__(self) -> Iterator[str]:
        return iter(self.rows())

    def __repr__(self) -> str:
        return f"TableView({self.name!r}, rows={len(self)})"


class ClientCache:
    """
    Table views for every table seen in subscription and transaction updates.

    Usage:
        cache = ClientCache(schema)
        cache.bind(dispatcher)
        users = cache.table("users").values()
    """

    def __init__(self, schema: RawModuleDef | None = None):
        """
        Initialize cache.

        Args:
            schema: Module definition used to decode rows strictly
        """
        self.schema = schema
        self._tables: dict[str, TableView] = {}
        self._lock = threading.RLock()

    def table(self, name: str) -> TableView:
        """Get the view of a table, creating an empty one on first use."""
        with self._lock:
            view = self._tables.get(name)
            if view is None:
                view = TableView(name, *self._row_type(name))
                self._tables[name] = view
            return view

    def _row_type(self, name: str) -> tuple[AlgebraicType | None, Typespace | None]:
        if self.schema is None or self.schema.table(name) is None:
            return None, None
        return self.schema.row_type(name), self.schema.typespace

    @property
    def table_names(self) -> list[str]:
        with self._lock:
            return list(self._tables)

    def apply_database_update(self, update: DatabaseUpdate) -> None:
        """
        Apply every table update as one step.

        Raises:
            DecodeError: If any row is not valid JSON; no table is changed then
        """
        self._apply_prepared(self._prepare_update(update))

    @staticmethod
    def _prepare_update(update: DatabaseUpdate) -> list[tuple[str, list[_Batch]]]:
        return [(table_update.table_name, _prepare(table_update)) for table_update in update.tables]

    def _apply_prepared(self, prepared: list[tuple[str, list[_Batch]]]) -> None:
        with self._lock:
            for name, batches in prepared:
                self.table(name)._apply_batches(batches)

    def apply_transaction(self, transaction: TransactionUpdate) -> bool:
        """
        Apply a transaction's row changes.

        Returns:
            False when the transaction did not commit; nothing is applied then
        """
        update = transaction.database_update
        if update is None:
            logger.debug("Skipping %s transaction from %s", transaction.status.kind, transaction.reducer_name)
            return False
        self.apply_database_update(update)
        return True

    def remove_database_update(self, update: DatabaseUpdate) -> None:
        """Remove every row listed in an update, whichever side lists it."""
        prepared = [
            (table_update.table_name, [_canonical(row) for row in table_update.deletes + table_update.inserts])
            for table_update in update.tables
        ]
        with self._lock:
            for name, keys in prepared:
                self.table(name)._discard(keys)

    def clear(self) -> None:
        with self._lock:
            self._tables.clear()

    def handle_message(self, message: ServerMessage) -> None:
        """Apply the row changes carried by any update message."""
        if message.kind is ServerMessageKind.TRANSACTION_UPDATE:
            self.apply_transaction(message.as_transaction_update())
        elif message.kind is ServerMessageKind.TRANSACTION_UPDATE_LIGHT:
            self.apply_database_update(message.as_transaction_update_light().update)
        elif message.kind is ServerMessageKind.INITIAL_SUBSCRIPTION:
            # A legacy Subscribe replaces the whole subscribed set
            prepared = self._prepare_update(message.as_initial_subscription().database_update)
            with self._lock:
                self.clear()
                self._apply_prepared(prepared)
        elif message.kind is ServerMessageKind.SUBSCRIBE_APPLIED:
            rows = message.as_subscribe_applied().rows
            if rows is not None:
                self.table(rows.table_name).apply(rows.table_rows)
        elif message.kind is ServerMessageKind.SUBSCRIBE_MULTI_APPLIED:
            self.apply_database_update(message.as_subscribe_multi_applied().update)
        elif message.kind is ServerMessageKind.UNSUBSCRIBE_APPLIED:
            rows = message.as_unsubscribe_applied().rows
            if rows is not None:
                self.remove_database_update(DatabaseUpdate([rows.table_rows]))
        elif message.kind is ServerMessageKind.UNSUBSCRIBE_MULTI_APPLIED:
            self.remove_database_update(message.as_unsubscribe_multi_applied().update)

    def bind(self, dispatcher: MessageDispatcher) -> None:
        """Keep the cache current from a dispatcher's update messages, in arrival order."""
        for kind in (
            ServerMessageKind.TRANSACTION_UPDATE,
            ServerMessageKind.TRANSACTION_UPDATE_LIGHT,
            ServerMessageKind.INITIAL_SUBSCRIPTION,
            ServerMessageKind.SUBSCRIBE_APPLIED,
            ServerMessageKind.SUBSCRIBE_MULTI_APPLIED,
            ServerMessageKind.UNSUBSCRIBE_APPLIED,
            ServerMessageKind.UNSUBSCRIBE_MULTI_APPLIED,
        ):
            dispatcher.on(kind, self.handle_message)

