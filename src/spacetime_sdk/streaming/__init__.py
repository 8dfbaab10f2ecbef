"""
SpacetimeDB SDK Streaming Module.

Request correlation, subscriptions and the client-side table cache,
layered over a WebSocket connection.
"""

from .dispatcher import MessageDispatcher, MessageStream
from .subscription import SubscriptionHandle, SubscriptionManager, SubscriptionState
from .table_view import ClientCache, TableView

__all__ = [
    "ClientCache",
    "MessageDispatcher",
    "MessageStream",
    "SubscriptionHandle",
    "SubscriptionManager",
    "SubscriptionState",
    "TableView",
]
