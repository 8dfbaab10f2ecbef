"""
SpacetimeDB SDK Connection Module.

Provides the WebSocket subscription channel and the HTTP collaborator.
"""

from .base import BaseSpacetimeConnection
from .http import HTTPConnection
from .websocket import ConnectionState, WebSocketConnection

__all__ = [
    "BaseSpacetimeConnection",
    "ConnectionState",
    "HTTPConnection",
    "WebSocketConnection",
]
