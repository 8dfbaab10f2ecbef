"""
Subscription Manager Implementation.

Tracks query subscriptions on one connection: allocates query ids, waits for
the server to apply them and keeps handles in step with later errors.
"""

import logging
from dataclasses import dataclass, field
from enum import StrEnum

from ..exceptions import SubscriptionFailedError, WrongVariantError
from ..protocol.client_messages import ClientMessage, SubscribeMulti, SubscribeSingle, Unsubscribe, UnsubscribeMulti
from ..protocol.common import U32_MAX, DatabaseUpdate, QueryId
from ..protocol.server_messages import ServerMessage, ServerMessageKind
from .dispatcher import MessageDispatcher

logger = logging.getLogger(__name__)


class SubscriptionState(StrEnum):
    """Lifecycle of a subscription handle."""

    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"
    FAILED = "failed"


@dataclass
class SubscriptionHandle:
    """
    A subscribed query set.

    Attributes:
        query_id: Client-chosen query id
        queries: Subscribed SQL queries
        multi: Whether the set was added with SubscribeMulti
        state: Current lifecycle state
        initial_update: Rows matched when the subscription was applied
        error: Server error text, when the subscription failed
    """

    query_id: int
    queries: list[str]
    multi: bool = False
    state: SubscriptionState = SubscriptionState.PENDING
    initial_update: DatabaseUpdate = field(default_factory=DatabaseUpdate)
    error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.state is SubscriptionState.ACTIVE


class SubscriptionManager:
    """
    Manage query subscriptions on a single connection.

    Usage:
        manager = SubscriptionManager(dispatcher)
        handle = await manager.subscribe("SELECT * FROM users")
        ...
        await manager.unsubscribe(handle)
    """

    def __init__(self, dispatcher: MessageDispatcher):
        """
        Initialize manager.

        A ``ClientCache`` bound to the same dispatcher picks up snapshots and
        removals from the applied messages themselves.

        Args:
            dispatcher: Running dispatcher of the connection
        """
        self.dispatcher = dispatcher
        self._handles: dict[int, SubscriptionHandle] = {}
        self._last_query_id = 0
        dispatcher.on(ServerMessageKind.SUBSCRIPTION_ERROR, self._on_subscription_error)

    @property
    def active(self) -> list[SubscriptionHandle]:
        """Handles of the currently active subscriptions."""
        return [handle for handle in self._handles.values() if handle.is_active]

    def get(self, query_id: int) -> SubscriptionHandle | None:
        return self._handles.get(query_id)

    def _claim_query_id(self, query_id: int | None) -> int:
        if query_id is not None:
            if query_id in self._handles:
                raise ValueError(f"Query id {query_id} is already in use")
            return query_id
        while True:
            self._last_query_id = (self._last_query_id + 1) % (U32_MAX + 1)
            if self._last_query_id not in self._handles:
                return self._last_query_id

    async def subscribe(self, query: str, query_id: int | None = None) -> SubscriptionHandle:
        """
        Subscribe to a single query.

        Args:
            query: SQL query
            query_id: Explicit query id; allocated when omitted

        Returns:
            The active handle holding the initial rows

        Raises:
            ValueError: If the explicit query id is in use
            SubscriptionFailedError: If the server rejects the query
            WrongVariantError: If the server answers with another message kind
        """
        handle = SubscriptionHandle(self._claim_query_id(query_id), [query])
        message = SubscribeSingle(
            query=query,
            request_id=self.dispatcher.connection.next_request_id(),
            query_id=QueryId(handle.query_id),
        )
        response = await self._request(message, handle, ServerMessageKind.SUBSCRIBE_APPLIED)
        rows = response.as_subscribe_applied().rows
        handle.initial_update = DatabaseUpdate([rows.table_rows] if rows is not None else [])
        return self._activate(handle)

    async def subscribe_multi(self, queries: list[str], query_id: int | None = None) -> SubscriptionHandle:
        """
        Subscribe to several queries as one set.

        Raises:
            ValueError: If the explicit query id is in use
            SubscriptionFailedError: If the server rejects the queries
            WrongVariantError: If the server answers with another message kind
        """
        handle = SubscriptionHandle(self._claim_query_id(query_id), list(queries), multi=True)
        message = SubscribeMulti(
            query_strings=list(queries),
            request_id=self.dispatcher.connection.next_request_id(),
            query_id=QueryId(handle.query_id),
        )
        response = await self._request(message, handle, ServerMessageKind.SUBSCRIBE_MULTI_APPLIED)
        handle.initial_update = response.as_subscribe_multi_applied().update
        return self._activate(handle)

    async def unsubscribe(self, handle: SubscriptionHandle) -> DatabaseUpdate:
        """
        End an active subscription, reusing its query id.

        Returns:
            Rows that left the subscribed set

        Raises:
            ValueError: If the handle is not active
            SubscriptionFailedError: If the server rejects the request
        """
        if not handle.is_active:
            raise ValueError(f"Subscription {handle.query_id} is not active")

        request_id = self.dispatcher.connection.next_request_id()
        message: ClientMessage
        if handle.multi:
            message = UnsubscribeMulti(request_id=request_id, query_id=QueryId(handle.query_id))
        else:
            message = Unsubscribe(request_id=request_id, query_id=QueryId(handle.query_id))

        expected = (
            ServerMessageKind.UNSUBSCRIBE_MULTI_APPLIED if handle.multi else ServerMessageKind.UNSUBSCRIBE_APPLIED
        )
        response = await self._request(message, handle, expected)
        if response.kind is ServerMessageKind.UNSUBSCRIBE_MULTI_APPLIED:
            removed = response.as_unsubscribe_multi_applied().update
        else:
            rows = response.as_unsubscribe_applied().rows
            removed = DatabaseUpdate([rows.table_rows] if rows is not None else [])

        handle.state = SubscriptionState.ENDED
        self._handles.pop(handle.query_id, None)
        logger.debug("Unsubscribed query set %d", handle.query_id)
        return removed

    async def _request(
        self, message: ClientMessage, handle: SubscriptionHandle, expected: ServerMessageKind
    ) -> ServerMessage:
        self._handles[handle.query_id] = handle
        try:
            response = await self.dispatcher.request(message)
        except Exception:
            if handle.state is SubscriptionState.PENDING:
                self._handles.pop(handle.query_id, None)
            raise

        if response.kind is ServerMessageKind.SUBSCRIPTION_ERROR:
            error = response.as_subscription_error()
            self._fail(handle, error.error)
            raise SubscriptionFailedError(
                error.error,
                query_id=error.query_id if error.query_id is not None else handle.query_id,
                request_id=error.request_id,
                table_id=error.table_id,
            )
        if response.kind is not expected:
            if handle.state is SubscriptionState.PENDING:
                self._handles.pop(handle.query_id, None)
            raise WrongVariantError(expected, response.kind)
        return response

    def _activate(self, handle: SubscriptionHandle) -> SubscriptionHandle:
        handle.state = SubscriptionState.ACTIVE
        logger.debug("Subscribed query set %d (%d queries)", handle.query_id, len(handle.queries))
        return handle

    def _fail(self, handle: SubscriptionHandle, error: str) -> None:
        handle.state = SubscriptionState.FAILED
        handle.error = error
        self._handles.pop(handle.query_id, None)

    def _on_subscription_error(self, message: ServerMessage) -> None:
        error = message.as_subscription_error()
        # Errors answering a request are raised to the requester instead
        if error.request_id is not None or error.query_id is None:
            return
        handle = self._handles.get(error.query_id)
        if handle is not None and handle.is_active:
            logger.warning("Subscription %d failed: %s", error.query_id, error.error)
            self._fail(handle, error.error)
