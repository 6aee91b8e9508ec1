"""Exchange adapters for the streaming core."""

from .base import BaseStreamingExchange, SubscriptionSpec
from .bitpanda import BitpandaExchange
from .factory import EXCHANGES, create_exchange
from .okx import OKXExchange
from .paradex import ParadexExchange
from .protocol import StreamingExchange

__all__ = [
    "BaseStreamingExchange",
    "BitpandaExchange",
    "EXCHANGES",
    "OKXExchange",
    "ParadexExchange",
    "StreamingExchange",
    "SubscriptionSpec",
    "create_exchange",
]
