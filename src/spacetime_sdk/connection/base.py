"""
Base Connection Interface for SpacetimeDB SDK.

Defines the state shared by the WebSocket and HTTP connections.
"""

from abc import ABC, abstractmethod
from typing import Any, Self


def normalize_http_url(url: str) -> str:
    """Map ws/wss URLs to their http/https counterparts."""
    if url.startswith("ws://"):
        url = url.replace("ws://", "http://", 1)
    elif url.startswith("wss://"):
        url = url.replace("wss://", "https://", 1)
    return url.rstrip("/")


def normalize_ws_url(url: str) -> str:
    """Map http/https URLs to their ws/wss counterparts."""
    if url.startswith("http://"):
        url = url.replace("http://", "ws://", 1)
    elif url.startswith("https://"):
        url = url.replace("https://", "wss://", 1)
    return url.rstrip("/")


class BaseSpacetimeConnection(ABC):
    """
    Abstract base class for SpacetimeDB connections.

    All connection implementations (HTTP, WebSocket) inherit from this class.
    """

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout: float = 30.0,
    ):
        """
        Initialize connection parameters.

        Args:
            url: SpacetimeDB server URL
            token: Optional bearer token
            timeout: Request timeout in seconds
        """
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._connected = False
        self._token = token

    @property
    def is_connected(self) -> bool:
        """Check if connection is established."""
        return self._connected

    @property
    def token(self) -> str | None:
        """Get the current bearer token."""
        return self._token

    @property
    def auth_headers(self) -> dict[str, str]:
        """Authorization header for the configured token, if any."""
        if self._token:
            return {"Authorization": f"Bearer {self._token}"}
        return {}

    @abstractmethod
    async def connect(self) -> Self:
        """Establish connection to SpacetimeDB. Returns self for fluent API."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""
        ...

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
