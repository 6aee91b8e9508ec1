"""unistream: unified real-time market data streaming over exchange WebSockets."""

from .errors import (
    AuthenticationError,
    BadRequest,
    BadSymbol,
    ExchangeError,
    InvalidNonce,
    NetworkError,
    NotSupported,
    RequestTimeout,
    StreamClosed,
    UnistreamError,
)
from .exchanges import EXCHANGES, StreamingExchange, create_exchange
from .markets import extract_base_symbol, normalize_symbol
from .models import Balance, Balances, Order, OrderBookSnapshot, Ticker, Trade
from .settings import Settings

__all__ = [
    "AuthenticationError",
    "BadRequest",
    "BadSymbol",
    "Balance",
    "Balances",
    "EXCHANGES",
    "ExchangeError",
    "InvalidNonce",
    "NetworkError",
    "NotSupported",
    "Order",
    "OrderBookSnapshot",
    "RequestTimeout",
    "Settings",
    "StreamClosed",
    "StreamingExchange",
    "Ticker",
    "Trade",
    "UnistreamError",
    "create_exchange",
    "extract_base_symbol",
    "normalize_symbol",
]
