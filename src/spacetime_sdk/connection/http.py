"""
HTTP Connection Implementation for SpacetimeDB SDK.

Stateless request/response access used alongside the WebSocket channel:
server liveness and module schema retrieval.
"""

import logging
from typing import Any, Self
from urllib.parse import quote

import httpx
import pydantic

from ..config import SCHEMA_VERSION, ConnectionConfig
from ..exceptions import AuthenticationError, ConnectionError, DecodeError, SpacetimeDBError
from ..schema import RawModuleDef
from .base import BaseSpacetimeConnection, normalize_http_url

logger = logging.getLogger(__name__)


class HTTPConnection(BaseSpacetimeConnection):
    """
    HTTP-based connection to SpacetimeDB.

    Each request is independent; the bearer token, when set, is attached
    as a header on every request.
    """

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize HTTP connection.

        Args:
            url: SpacetimeDB HTTP URL (e.g., "http://localhost:3000")
            token: Optional bearer token
            timeout: Request timeout in seconds
            transport: Custom httpx transport, e.g. ``httpx.MockTransport``
        """
        super().__init__(normalize_http_url(url), token, timeout)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, config: ConnectionConfig) -> "HTTPConnection":
        return cls(url=config.url, token=config.token, timeout=config.timeout)

    @property
    def headers(self) -> dict[str, str]:
        return {"Accept": "application/json", **self.auth_headers}

    async def connect(self) -> Self:
        """Create the HTTP client. Returns self for fluent API."""
        if self._connected:
            return self

        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=self.timeout,
            transport=self._transport,
        )
        self._connected = True
        return self

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        self._connected = False

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        if not self._client:
            raise ConnectionError("Not connected. Call connect() first.")
        try:
            response = await self._client.get(path, params=params, headers=self.headers)
        except httpx.RequestError as e:
            raise ConnectionError(f"Request failed: {e}") from e
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Authentication rejected: {response.status_code} - {response.text}",
                code=response.status_code,
            )
        if response.status_code != 200:
            raise SpacetimeDBError(
                f"HTTP error: {response.status_code} - {response.text}",
                code=response.status_code,
            )
        return response

    async def ping(self) -> bool:
        """
        Check server liveness via GET /v1/ping.

        Returns:
            True when the server answers 200

        Raises:
            AuthenticationError: If the server rejects the bearer token
            SpacetimeDBError: If the server answers with another status
            ConnectionError: If the server cannot be reached
        """
        await self._get("/v1/ping")
        return True

    async def get_schema(self, name_or_identity: str, version: int = SCHEMA_VERSION) -> RawModuleDef:
        """
        Fetch the module definition of a database.

        Args:
            name_or_identity: Database name or identity
            version: Module definition version to request

        Returns:
            The validated module definition

        Raises:
            AuthenticationError: On a 401 or 403 response
            SpacetimeDBError: On a non-200 response, with the status as code
            DecodeError: If the body is not a valid module definition
        """
        path = f"/v1/database/{quote(name_or_identity, safe='')}/schema"
        response = await self._get(path, params={"version": version})
        try:
            document = response.json()
        except ValueError as e:
            raise DecodeError("Schema response is not valid JSON", response.text) from e
        try:
            schema = RawModuleDef.model_validate(document)
        except pydantic.ValidationError as e:
            raise DecodeError(f"Invalid module definition ({e.error_count()} errors)", response.text) from e
        logger.debug(
            "Fetched schema for %s: %d tables, %d reducers",
            name_or_identity,
            len(schema.tables),
            len(schema.reducers),
        )
        return schema
