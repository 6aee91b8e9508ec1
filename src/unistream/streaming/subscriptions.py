"""Per-connection subscription bookkeeping."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


AUTH_CHANNEL = "auth"


class SubscriptionState(Enum):
    PENDING = "pending"
    ACTIVE = "active"


@dataclass(slots=True)
class Subscription:
    """One logical (channel, symbol) subscription on a connection."""

    channel: str
    symbol: str | None
    message_hashes: tuple[str, ...]
    request: Any
    request_id: Any = None
    state: SubscriptionState = SubscriptionState.PENDING
    private: bool = False
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return subscription_key(self.channel, self.symbol)

    @property
    def active(self) -> bool:
        return self.state is SubscriptionState.ACTIVE


def subscription_key(channel: str, symbol: str | None) -> str:
    return f"{channel}:{symbol if symbol is not None else '*'}"


class SubscriptionRegistry:
    """Deduplicates subscribe traffic and tracks ack state.

    Entries keep insertion order, which is the replay order after a
    reconnect.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}

    def subscribe(self, subscription: Subscription) -> tuple[Subscription, bool]:
        """Register a subscription unless an identical one exists.

        Returns:
            The registered subscription and whether it was newly created;
            the caller sends the request only when it was
        """
        existing = self._subscriptions.get(subscription.key)
        if existing is not None:
            return existing, False
        self._subscriptions[subscription.key] = subscription
        return subscription, True

    def get(self, channel: str, symbol: str | None = None) -> Subscription | None:
        return self._subscriptions.get(subscription_key(channel, symbol))

    def find_by_request_id(self, request_id: Any) -> Subscription | None:
        if request_id is None:
            return None
        for subscription in self._subscriptions.values():
            if subscription.request_id == request_id:
                return subscription
        return None

    def find_by_hash(self, message_hash: str) -> list[Subscription]:
        return [s for s in self._subscriptions.values() if message_hash in s.message_hashes]

    def mark_active(self, subscription: Subscription) -> None:
        subscription.state = SubscriptionState.ACTIVE
        logger.debug("subscription %s active", subscription.key)

    def remove(self, channel: str, symbol: str | None = None) -> Subscription | None:
        return self._subscriptions.pop(subscription_key(channel, symbol), None)

    def discard(self, subscription: Subscription) -> None:
        current = self._subscriptions.get(subscription.key)
        if current is subscription:
            del self._subscriptions[subscription.key]

    def pending(self) -> list[Subscription]:
        return [s for s in self._subscriptions.values() if s.state is SubscriptionState.PENDING]

    def all(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    def reset(self) -> None:
        """Return every entry to PENDING before replaying after a reconnect."""
        for subscription in self._subscriptions.values():
            subscription.state = SubscriptionState.PENDING

    def clear(self) -> None:
        self._subscriptions.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._subscriptions

    def __len__(self) -> int:
        return len(self._subscriptions)
