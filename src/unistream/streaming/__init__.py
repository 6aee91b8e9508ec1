"""Streaming core: connection multiplexing, order book reconciliation, waiters."""

from .cache import ArrayCache, ArrayCacheById
from .connection import AiohttpTransport, Connection, ConnectionState, Transport, materialize
from .orderbook import BookDelta, BookState, OrderBook, OrderBookSide, SequencePolicy
from .router import MessageRouter
from .subscriptions import AUTH_CHANNEL, Subscription, SubscriptionRegistry, SubscriptionState
from .waiters import Waiter, WaiterRegistry

__all__ = [
    "AUTH_CHANNEL",
    "AiohttpTransport",
    "ArrayCache",
    "ArrayCacheById",
    "BookDelta",
    "BookState",
    "Connection",
    "ConnectionState",
    "MessageRouter",
    "OrderBook",
    "OrderBookSide",
    "SequencePolicy",
    "Subscription",
    "SubscriptionRegistry",
    "SubscriptionState",
    "Transport",
    "Waiter",
    "WaiterRegistry",
    "materialize",
]
