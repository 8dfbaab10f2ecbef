"""
SpacetimeDB SDK Exceptions.

Custom exception hierarchy for the SDK.
"""

from typing import Any

# Raw wire fragments attached to decode errors are cut to this many characters
FRAGMENT_LIMIT = 200


def _truncate(fragment: Any) -> str | None:
    if fragment is None:
        return None
    if isinstance(fragment, bytes):
        fragment = fragment.decode("utf-8", errors="replace")
    text = fragment if isinstance(fragment, str) else repr(fragment)
    if len(text) > FRAGMENT_LIMIT:
        return text[:FRAGMENT_LIMIT] + "..."
    return text


class SpacetimeDBError(Exception):
    """Base exception for all SpacetimeDB SDK errors."""

    def __init__(self, message: str, code: int | None = None):
        self.message = message
        self.code = code
        super().__init__(message)


class ConnectionError(SpacetimeDBError):
    """Raised when the transport to SpacetimeDB fails."""

    pass


class HandshakeError(ConnectionError):
    """Raised when the server rejects the WebSocket handshake."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message, code=status)


class ConnectionClosedError(ConnectionError):
    """Raised when the connection is closed while an operation is in progress."""

    def __init__(self, message: str, close_code: int | None = None):
        self.close_code = close_code
        super().__init__(message, code=close_code)


class NotConnectedError(ConnectionError):
    """Raised when sending or receiving on a connection that is not open."""

    pass


class UnsupportedProtocolError(SpacetimeDBError, ValueError):
    """Raised when an unknown or unimplemented sub-protocol is requested."""

    def __init__(self, protocol: str):
        self.protocol = protocol
        super().__init__(f"Unsupported protocol '{protocol}'")


class AuthenticationError(SpacetimeDBError):
    """Raised when the server rejects the bearer token."""

    pass


class TimeoutError(SpacetimeDBError):
    """Raised when a correlated request does not get its response in time."""

    pass


class DecodeError(SpacetimeDBError, ValueError):
    """Raised when inbound wire data cannot be decoded.

    Attributes:
        fragment: The offending raw data, truncated for display
    """

    def __init__(self, message: str, fragment: Any = None):
        self.fragment = _truncate(fragment)
        if self.fragment is not None:
            message = f"{message}: {self.fragment}"
        super().__init__(message)


class AmbiguousSumTagError(DecodeError):
    """Raised when a sum-encoded object does not have exactly one key."""

    def __init__(self, keys: list[str], fragment: Any = None):
        self.keys = keys
        super().__init__(f"Sum value must have exactly one tag, got {len(keys)}", fragment)


class UnknownMessageVariantError(DecodeError):
    """Raised when a message envelope names a variant outside the protocol."""

    def __init__(self, variant: str, fragment: Any = None):
        self.variant = variant
        super().__init__(f"Unknown message variant '{variant}'", fragment)


class ValidationError(SpacetimeDBError):
    """Raised when a value does not conform to its algebraic type."""

    def __init__(self, message: str, path: str = ""):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class UnknownTypeRefError(SpacetimeDBError, LookupError):
    """Raised when a type reference has no entry in the typespace."""

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"Type reference {index} not found in typespace")


class UnsupportedTypeError(SpacetimeDBError):
    """Raised for builtin types that are reserved but not implemented."""

    pass


class WrongVariantError(SpacetimeDBError, TypeError):
    """Raised when a typed accessor does not match the message variant."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Message is {actual}, not {expected}")


class SubscriptionFailedError(SpacetimeDBError):
    """Raised when the server rejects a subscribe or unsubscribe request."""

    def __init__(
        self,
        message: str,
        query_id: int | None = None,
        request_id: int | None = None,
        table_id: int | None = None,
    ):
        self.query_id = query_id
        self.request_id = request_id
        self.table_id = table_id
        super().__init__(message)
