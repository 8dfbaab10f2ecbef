"""
Connection configuration for the SpacetimeDB SDK.

Provides the sub-protocol identifiers and an immutable configuration
container passed to connections at construction time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

# JSON encoding, version 1 of the client protocol
JSON_PROTOCOL = "v1.json.spacetimedb"

# Binary encoding; reserved, not implemented by this SDK
BINARY_PROTOCOL = "v1.bsatn.spacetimedb"

SUPPORTED_PROTOCOLS = frozenset({JSON_PROTOCOL})

# Module definition version requested from the schema endpoint
SCHEMA_VERSION = 9


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Immutable configuration for a SpacetimeDB connection.

    Attributes:
        url: Base URL of the SpacetimeDB host (http, https, ws or wss).
        database: Database name or identity.
        token: Optional bearer token attached to the handshake.
        protocol: Sub-protocol identifier negotiated on connect.
        timeout: Timeout in seconds for HTTP requests and correlated requests.
        handshake_timeout: Timeout in seconds for the WebSocket handshake.
        close_grace: Seconds to wait for the peer's close acknowledgement.
    """

    url: str
    database: str
    token: str | None = None
    protocol: str = JSON_PROTOCOL
    timeout: float = 30.0
    handshake_timeout: float = 45.0
    close_grace: float = 0.1

    @classmethod
    def from_env(cls, prefix: str = "SPACETIMEDB_") -> "ConnectionConfig":
        """
        Build a configuration from environment variables.

        Reads ``{prefix}URL``, ``{prefix}DATABASE``, ``{prefix}TOKEN``,
        ``{prefix}PROTOCOL`` and ``{prefix}TIMEOUT``.
        """
        return cls(
            url=os.getenv(f"{prefix}URL", "http://localhost:3000"),
            database=os.getenv(f"{prefix}DATABASE", ""),
            token=os.getenv(f"{prefix}TOKEN") or None,
            protocol=os.getenv(f"{prefix}PROTOCOL", JSON_PROTOCOL),
            timeout=float(os.getenv(f"{prefix}TIMEOUT", "30.0")),
        )


__all__ = [
    "BINARY_PROTOCOL",
    "ConnectionConfig",
    "JSON_PROTOCOL",
    "SCHEMA_VERSION",
    "SUPPORTED_PROTOCOLS",
]
