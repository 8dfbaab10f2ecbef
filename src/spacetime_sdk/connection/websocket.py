"""
WebSocket Connection Implementation for SpacetimeDB SDK.

Provides the duplex subscription channel at
``/v1/database/{name_or_identity}/subscribe``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from enum import StrEnum
from typing import Any, Self
from urllib.parse import quote

import aiohttp
from aiohttp import ClientWSTimeout

from ..config import JSON_PROTOCOL, SUPPORTED_PROTOCOLS, ConnectionConfig
from ..exceptions import (
    ConnectionClosedError,
    ConnectionError,
    DecodeError,
    HandshakeError,
    NotConnectedError,
    UnsupportedProtocolError,
)
from ..protocol.client_messages import (
    CallReducer,
    CallReducerFlags,
    ClientMessage,
    OneOffQuery,
    Subscribe,
    SubscribeMulti,
    SubscribeSingle,
    Unsubscribe,
    UnsubscribeMulti,
)
from ..protocol.common import U32_MAX, ConnectionId, Identity, QueryId
from ..protocol.server_messages import ServerMessage, ServerMessageKind, parse_server_message
from .base import BaseSpacetimeConnection, normalize_ws_url

logger = logging.getLogger(__name__)

SUBSCRIBE_ALL_QUERY = "SELECT * FROM *"


class ConnectionState(StrEnum):
    """Lifecycle of a WebSocket connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class WebSocketConnection(BaseSpacetimeConnection):
    """
    WebSocket connection to a SpacetimeDB database.

    The connection moves through ``DISCONNECTED -> CONNECTING -> OPEN ->
    CLOSING -> CLOSED``. Failed connects end in ``CLOSED``. A closed
    connection may be connected again explicitly; it never reconnects on
    its own.

    Usage:
        async with WebSocketConnection("http://localhost:3000", "quickstart") as ws:
            await ws.send_subscribe_all()
            async for message in ws.messages():
                ...
    """

    def __init__(
        self,
        url: str,
        database: str,
        token: str | None = None,
        protocol: str = JSON_PROTOCOL,
        timeout: float = 30.0,
        handshake_timeout: float = 45.0,
        close_grace: float = 0.1,
    ):
        """
        Initialize WebSocket connection.

        Args:
            url: SpacetimeDB host URL (http, https, ws or wss)
            database: Database name or identity
            token: Optional bearer token sent with the handshake
            protocol: Sub-protocol identifier
            timeout: Timeout in seconds for correlated requests
            handshake_timeout: Timeout in seconds for the opening handshake
            close_grace: Seconds to wait for the peer's close acknowledgement

        Raises:
            UnsupportedProtocolError: If the sub-protocol is not implemented
        """
        if protocol not in SUPPORTED_PROTOCOLS:
            raise UnsupportedProtocolError(protocol)

        super().__init__(normalize_ws_url(url), token, timeout)
        self.database = database
        self.protocol = protocol
        self.handshake_timeout = handshake_timeout
        self.close_grace = close_grace

        self._state = ConnectionState.DISCONNECTED
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._send_lock = asyncio.Lock()
        self._closed_event = asyncio.Event()
        self._receive_task: asyncio.Future[aiohttp.WSMessage] | None = None
        self._reading = False
        self._request_id = 0
        self._identity: Identity | None = None
        self._connection_id: ConnectionId | None = None

    @classmethod
    def from_config(cls, config: ConnectionConfig) -> "WebSocketConnection":
        """Create a connection from a ``ConnectionConfig``."""
        return cls(
            url=config.url,
            database=config.database,
            token=config.token,
            protocol=config.protocol,
            timeout=config.timeout,
            handshake_timeout=config.handshake_timeout,
            close_grace=config.close_grace,
        )

    @property
    def endpoint(self) -> str:
        """Full subscribe endpoint URL."""
        return f"{self.url}/v1/database/{quote(self.database, safe='')}/subscribe"

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def identity(self) -> Identity | None:
        """Identity assigned by the server, once an IdentityToken was received."""
        return self._identity

    @property
    def connection_id(self) -> ConnectionId | None:
        """Connection id assigned by the server, once an IdentityToken was received."""
        return self._connection_id

    def next_request_id(self) -> int:
        """Generate the next request id, wrapping within the u32 range."""
        self._request_id = (self._request_id + 1) % (U32_MAX + 1)
        return self._request_id

    async def connect(self) -> Self:
        """
        Perform the WebSocket handshake. Returns self for fluent API.

        Raises:
            HandshakeError: If the server rejects the upgrade or does not
                select the requested sub-protocol
            ConnectionError: If the server cannot be reached
        """
        if self._state is ConnectionState.OPEN:
            return self
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CLOSING):
            raise ConnectionError(f"Cannot connect while {self._state}")

        self._state = ConnectionState.CONNECTING
        self._closed_event = asyncio.Event()
        self._receive_task = None
        self._connection_id = None
        self._session = aiohttp.ClientSession()
        logger.debug("Connecting to %s with protocol %s", self.endpoint, self.protocol)

        try:
            ws = await asyncio.wait_for(
                self._session.ws_connect(
                    self.endpoint,
                    protocols=[self.protocol],
                    headers=self.auth_headers,
                    timeout=ClientWSTimeout(ws_close=self.close_grace),
                    max_msg_size=0,
                ),
                timeout=self.handshake_timeout,
            )
        except aiohttp.WSServerHandshakeError as e:
            await self._teardown()
            raise HandshakeError(f"WebSocket handshake failed with status {e.status}", status=e.status) from e
        except asyncio.TimeoutError as e:
            await self._teardown()
            raise ConnectionError(f"WebSocket handshake timed out after {self.handshake_timeout}s") from e
        except aiohttp.ClientError as e:
            await self._teardown()
            raise ConnectionError(f"WebSocket connection failed: {e}") from e

        if ws.protocol != self.protocol:
            await ws.close()
            await self._teardown()
            raise HandshakeError(f"Server did not select sub-protocol '{self.protocol}'", status=101)

        self._ws = ws
        self._state = ConnectionState.OPEN
        self._connected = True
        logger.debug("Connected to %s", self.endpoint)
        return self

    async def send(self, message: ClientMessage | str) -> None:
        """
        Send one message as one text frame.

        Raises:
            NotConnectedError: If the connection is not open
            ConnectionError: If the write fails; the connection is then closed
        """
        payload = message if isinstance(message, str) else message.to_json()
        async with self._send_lock:
            if self._state is not ConnectionState.OPEN or self._ws is None:
                raise NotConnectedError("Not connected. Call connect() first.")
            try:
                await self._ws.send_str(payload)
            except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
                await self._teardown()
                raise ConnectionError(f"WebSocket send failed: {e}") from e

    async def receive(self) -> ServerMessage:
        """
        Receive and decode exactly one server message.

        Only one receive may be pending at a time.

        Raises:
            NotConnectedError: If the connection is not open
            DecodeError: If a frame cannot be decoded; the connection stays open
            ConnectionClosedError: If the peer or a local close ends the connection
            ConnectionError: If the transport fails
        """
        while True:
            msg = await self._receive_frame()

            if msg.type == aiohttp.WSMsgType.TEXT:
                message = parse_server_message(msg.data)
                if message.kind is ServerMessageKind.IDENTITY_TOKEN:
                    self._remember_identity(message)
                return message

            if msg.type == aiohttp.WSMsgType.BINARY:
                raise DecodeError("Binary frames are not supported by the JSON protocol", msg.data)

            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                close_code = self._ws.close_code if self._ws is not None else None
                await self._teardown()
                raise ConnectionClosedError("Connection closed by server", close_code=close_code)

            if msg.type == aiohttp.WSMsgType.ERROR:
                await self._teardown()
                raise ConnectionError(f"WebSocket error: {msg.data}")

    async def _receive_frame(self) -> aiohttp.WSMessage:
        if self._state is not ConnectionState.OPEN or self._ws is None:
            raise NotConnectedError("Not connected. Call connect() first.")
        if self._reading:
            raise RuntimeError("Concurrent call to receive() is not allowed")

        # A read left pending by a cancelled caller is resumed, so its frame is not lost.
        receive_task = self._receive_task
        if receive_task is None:
            receive_task = asyncio.ensure_future(self._ws.receive())
            self._receive_task = receive_task
        closed_wait = asyncio.ensure_future(self._closed_event.wait())
        self._reading = True
        try:
            await asyncio.wait({receive_task, closed_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed_wait.cancel()
            self._reading = False

        if self._closed_event.is_set() or receive_task.cancelled():
            receive_task.cancel()
            self._receive_task = None
            raise ConnectionClosedError("Connection closed locally", close_code=aiohttp.WSCloseCode.OK)

        self._receive_task = None

        try:
            return receive_task.result()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await self._teardown()
            raise ConnectionError(f"WebSocket receive failed: {e}") from e

    async def messages(self) -> AsyncIterator[ServerMessage]:
        """
        Iterate over inbound messages until the connection closes.

        Decode errors propagate to the consumer and end the iteration; a
        ``MessageDispatcher`` logs them and keeps reading instead.
        """
        while self._state is ConnectionState.OPEN:
            try:
                message = await self.receive()
            except (ConnectionClosedError, NotConnectedError):
                return
            yield message

    def _remember_identity(self, message: ServerMessage) -> None:
        token = message.as_identity_token()
        self._identity = token.identity
        self._connection_id = token.connection_id
        self._token = token.token
        logger.debug("Received identity %s", token.identity)

    async def close(self) -> None:
        """
        Close gracefully with normal closure (1000).

        Waits at most ``close_grace`` seconds for the peer's acknowledgement.
        Calling close on a connection that is not open does nothing.
        """
        if self._state not in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            return
        self._state = ConnectionState.CLOSING
        await self._cancel_receive()

        ws = self._ws
        if ws is not None and not ws.closed:
            try:
                await ws.close(code=aiohttp.WSCloseCode.OK)
            except (aiohttp.ClientError, ConnectionResetError, asyncio.TimeoutError) as e:
                logger.debug("Error during graceful close: %s", e)

        await self._teardown()
        logger.debug("Closed connection to %s", self.endpoint)

    async def abort(self) -> None:
        """Tear the connection down without a closing handshake."""
        if self._state not in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            return
        self._state = ConnectionState.CLOSING
        await self._cancel_receive()
        await self._teardown()
        logger.debug("Aborted connection to %s", self.endpoint)

    async def _cancel_receive(self) -> None:
        """Signal pending receivers and wait for the in-flight frame read to stop."""
        self._closed_event.set()
        task, self._receive_task = self._receive_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _teardown(self) -> None:
        """Release the transport and mark the connection closed."""
        self._closed_event.set()
        if self._receive_task is not None and not self._reading:
            task, self._receive_task = self._receive_task, None
            task.cancel()
        self._connected = False
        self._state = ConnectionState.CLOSED
        self._ws = None
        if self._session is not None:
            session, self._session = self._session, None
            await session.close()

    # Send helpers

    async def send_call_reducer(
        self,
        reducer: str,
        args: str | Sequence[Any] = "[]",
        flags: CallReducerFlags = CallReducerFlags.FULL_UPDATE,
        request_id: int | None = None,
    ) -> CallReducer:
        """
        Call a reducer.

        Args:
            reducer: Reducer name
            args: JSON array text, or a sequence serialized as a JSON array
            flags: Notification flags
            request_id: Request id; allocated when omitted
        """
        if not isinstance(args, str):
            args = json.dumps(list(args), separators=(",", ":"))
        message = CallReducer(
            reducer=reducer,
            args=args,
            request_id=self.next_request_id() if request_id is None else request_id,
            flags=flags,
        )
        await self.send(message)
        return message

    async def send_subscribe(self, queries: Sequence[str], request_id: int | None = None) -> Subscribe:
        """Replace the legacy subscription set with the given queries."""
        message = Subscribe(
            query_strings=list(queries),
            request_id=self.next_request_id() if request_id is None else request_id,
        )
        await self.send(message)
        return message

    async def send_subscribe_all(self, request_id: int | None = None) -> Subscribe:
        """Subscribe to every public table."""
        return await self.send_subscribe([SUBSCRIBE_ALL_QUERY], request_id)

    async def send_one_off_query(self, query: str, message_id: bytes | None = None) -> OneOffQuery:
        """Run a query once; a random message id is generated when omitted."""
        message = OneOffQuery(message_id=message_id or uuid.uuid4().bytes, query_string=query)
        await self.send(message)
        return message

    async def send_subscribe_single(
        self, query: str, query_id: int, request_id: int | None = None
    ) -> SubscribeSingle:
        """Add one query under a client-chosen query id."""
        message = SubscribeSingle(
            query=query,
            request_id=self.next_request_id() if request_id is None else request_id,
            query_id=QueryId(query_id),
        )
        await self.send(message)
        return message

    async def send_subscribe_multi(
        self, queries: Sequence[str], query_id: int, request_id: int | None = None
    ) -> SubscribeMulti:
        """Add several queries under one client-chosen query id."""
        message = SubscribeMulti(
            query_strings=list(queries),
            request_id=self.next_request_id() if request_id is None else request_id,
            query_id=QueryId(query_id),
        )
        await self.send(message)
        return message

    async def send_unsubscribe(self, query_id: int, request_id: int | None = None) -> Unsubscribe:
        """Remove a query added with ``send_subscribe_single``."""
        message = Unsubscribe(
            request_id=self.next_request_id() if request_id is None else request_id,
            query_id=QueryId(query_id),
        )
        await self.send(message)
        return message

    async def send_unsubscribe_multi(self, query_id: int, request_id: int | None = None) -> UnsubscribeMulti:
        """Remove a query set added with ``send_subscribe_multi``."""
        message = UnsubscribeMulti(
            request_id=self.next_request_id() if request_id is None else request_id,
            query_id=QueryId(query_id),
        )
        await self.send(message)
        return message
