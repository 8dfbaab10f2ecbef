"""
Message Dispatcher Implementation.

Runs a single receive loop over a WebSocket connection and routes every
inbound message to pending requests, registered handlers and streams.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Self

from ..connection.websocket import WebSocketConnection
from ..exceptions import ConnectionClosedError, ConnectionError, DecodeError, NotConnectedError, TimeoutError
from ..protocol.client_messages import ClientMessage
from ..protocol.common import CorrelationKey
from ..protocol.server_messages import ServerMessage, ServerMessageKind, TransactionUpdate

logger = logging.getLogger(__name__)

# Handlers may be plain functions or coroutine functions
MessageHandler = Callable[[ServerMessage], Awaitable[None] | None]
ReducerHandler = Callable[[TransactionUpdate], Awaitable[None] | None]
ErrorHandler = Callable[[Exception], Awaitable[None] | None]


async def _call(handler: Callable[[Any], Any], arg: Any) -> None:
    result = handler(arg)
    if inspect.isawaitable(result):
        await result


class MessageStream:
    """
    Async iterator over messages of selected kinds.

    Usage:
        async with dispatcher.stream(ServerMessageKind.TRANSACTION_UPDATE) as stream:
            async for message in stream:
                tx = message.as_transaction_update()
    """

    def __init__(self, dispatcher: "MessageDispatcher", kinds: frozenset[ServerMessageKind]):
        """
        Initialize message stream.

        Args:
            dispatcher: Dispatcher feeding the stream
            kinds: Message kinds to receive; empty means all kinds
        """
        self.dispatcher = dispatcher
        self.kinds = kinds
        self._queue: asyncio.Queue[ServerMessage | None] = asyncio.Queue()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def accepts(self, message: ServerMessage) -> bool:
        return not self.kinds or message.kind in self.kinds

    def _offer(self, message: ServerMessage) -> None:
        if not self._closed and self.accepts(message):
            self._queue.put_nowait(message)

    def close(self) -> None:
        """Stop the stream; queued messages are still delivered."""
        if self._closed:
            return
        self._closed = True
        self.dispatcher._streams.discard(self)
        # Signal end of stream
        self._queue.put_nowait(None)

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> ServerMessage:
        message = await self._queue.get()
        if message is None:
            raise StopAsyncIteration
        return message

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class MessageDispatcher:
    """
    Route inbound messages from one connection.

    Responses are matched to requests by correlation key: the ``request_id``
    echoed by subscription and transaction messages, or the ``message_id`` of
    one-off queries. A ``TransactionUpdate`` only answers a request when it
    was caused by this connection.

    Usage:
        async with MessageDispatcher(conn) as dispatcher:
            dispatcher.on_reducer("add_user", on_user_added)
            response = await dispatcher.request(OneOffQuery(b"q1", "SELECT * FROM users"))
    """

    def __init__(self, connection: WebSocketConnection, timeout: float | None = None):
        """
        Initialize dispatcher.

        Args:
            connection: Open WebSocket connection
            timeout: Default request timeout; the connection's timeout when omitted
        """
        self.connection = connection
        self.timeout = connection.timeout if timeout is None else timeout
        self._handlers: dict[ServerMessageKind, list[MessageHandler]] = {}
        self._reducer_handlers: dict[str, list[ReducerHandler]] = {}
        self._error_handlers: list[ErrorHandler] = []
        self._pending: dict[CorrelationKey, asyncio.Future[ServerMessage]] = {}
        self._streams: set[MessageStream] = set()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # Registration

    def on(self, kind: ServerMessageKind, handler: MessageHandler) -> MessageHandler:
        """Register a handler for one message kind."""
        self._handlers.setdefault(ServerMessageKind(kind), []).append(handler)
        return handler

    def on_reducer(self, reducer_name: str, handler: ReducerHandler) -> ReducerHandler:
        """Register a handler for transaction updates caused by a reducer."""
        self._reducer_handlers.setdefault(reducer_name, []).append(handler)
        return handler

    def on_error(self, handler: ErrorHandler) -> ErrorHandler:
        """Register a handler for decode errors and handler failures."""
        self._error_handlers.append(handler)
        return handler

    def stream(self, *kinds: ServerMessageKind) -> MessageStream:
        """Open a stream of messages of the given kinds (all kinds when none given)."""
        stream = MessageStream(self, frozenset(ServerMessageKind(k) for k in kinds))
        self._streams.add(stream)
        return stream

    # Lifecycle

    def start(self) -> None:
        """Start the receive loop."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the receive loop and fail pending requests."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._finish()

    async def wait_closed(self) -> None:
        """Wait until the receive loop ends on its own."""
        if self._task:
            await asyncio.shield(self._task)

    async def __aenter__(self) -> Self:
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    async def _run(self) -> None:
        """Background task reading messages until the connection closes."""
        try:
            while True:
                try:
                    message = await self.connection.receive()
                except DecodeError as e:
                    logger.warning("Dropping undecodable message: %s", e)
                    await self._notify_error(e)
                    continue
                await self.dispatch(message)
        except (ConnectionClosedError, NotConnectedError) as e:
            logger.debug("Receive loop ended: %s", e)
        except ConnectionError as e:
            logger.warning("Receive loop failed: %s", e)
            await self._notify_error(e)
        finally:
            self._finish()

    def _finish(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionClosedError("Connection closed before a response arrived"))
        self._pending.clear()
        for stream in list(self._streams):
            stream.close()

    # Routing

    def _correlation_key(self, message: ServerMessage) -> CorrelationKey | None:
        if message.kind is ServerMessageKind.TRANSACTION_UPDATE:
            caller = message.as_transaction_update().caller_connection_id
            if self.connection.connection_id is None or caller != self.connection.connection_id:
                return None
        return message.correlation_key

    async def dispatch(self, message: ServerMessage) -> None:
        """
        Route one message to its pending request, streams and handlers.

        Handler failures are logged and forwarded to error handlers; they do
        not stop the receive loop.
        """
        key = self._correlation_key(message)
        if key is not None:
            future = self._pending.get(key)
            if future is not None and not future.done():
                future.set_result(message)

        for stream in list(self._streams):
            stream._offer(message)

        for handler in list(self._handlers.get(message.kind, ())):
            await self._run_handler(handler, message)

        if message.kind is ServerMessageKind.TRANSACTION_UPDATE:
            update = message.as_transaction_update()
            for reducer_handler in list(self._reducer_handlers.get(update.reducer_name, ())):
                await self._run_handler(reducer_handler, update)

    async def _run_handler(self, handler: Callable[[Any], Any], arg: Any) -> None:
        try:
            await _call(handler, arg)
        except Exception as e:
            logger.exception("Message handler %r failed", handler)
            await self._notify_error(e)

    async def _notify_error(self, error: Exception) -> None:
        for handler in list(self._error_handlers):
            try:
                await _call(handler, error)
            except Exception:
                logger.exception("Error handler %r failed", handler)

    # Requests

    async def request(self, message: ClientMessage, timeout: float | None = None) -> ServerMessage:
        """
        Send a message and wait for the response correlated with it.

        Args:
            message: Client message carrying a request or message id
            timeout: Seconds to wait; the dispatcher default when omitted

        Returns:
            The correlated server message

        Raises:
            ValueError: If a request with the same key is already in flight
            NotConnectedError: If the receive loop is not running
            TimeoutError: If no response arrives in time
            ConnectionClosedError: If the connection closes first
        """
        key = message.correlation_key
        if key in self._pending:
            raise ValueError(f"A request with {key[0]} {key[1]!r} is already in flight")
        if not self.is_running:
            raise NotConnectedError("Message dispatcher is not running. Call start() first.")

        wait = self.timeout if timeout is None else timeout
        future: asyncio.Future[ServerMessage] = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            await self.connection.send(message)
            return await asyncio.wait_for(future, wait)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"No response to {message.kind} within {wait}s") from e
        finally:
            if self._pending.get(key) is future:
                del self._pending[key]
