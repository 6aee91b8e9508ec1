"""Exception taxonomy shared by the streaming core and exchange adapters."""

from __future__ import annotations

from typing import Any


class UnistreamError(Exception):
    """Base class for every error raised by unistream."""


class NetworkError(UnistreamError):
    """Transport is down, closed or failed to reconnect."""


class RequestTimeout(NetworkError):
    """A caller-side wait expired before a matching message arrived."""


class StreamClosed(NetworkError):
    """The subscription behind a wait was removed; no further values will arrive."""


class ExchangeError(UnistreamError):
    """The exchange rejected a request or reported a server-side error."""

    def __init__(self, message: str, *, code: str | None = None, request_id: Any = None):
        super().__init__(message)
        self.code = code
        self.request_id = request_id


class BadRequest(ExchangeError):
    """Malformed subscribe or unsubscribe request."""


class BadSymbol(BadRequest):
    """Unknown or unsupported market."""


class NotSupported(ExchangeError):
    """The adapter does not implement the requested channel."""


class AuthenticationError(ExchangeError):
    """Private-channel handshake was rejected."""


class InvalidNonce(UnistreamError):
    """Order book sequence gap or inconsistent ladder; recovered by re-snapshot."""

    def __init__(self, message: str, *, symbol: str | None = None):
        super().__init__(message)
        self.symbol = symbol


def raise_for_code(
    code: str | None,
    message: str | None,
    *,
    exact: dict[str, type[ExchangeError]],
    broad: dict[str, type[ExchangeError]],
    feedback: str,
    request_id: Any = None,
) -> None:
    """Raise the mapped exception for an exchange error code or message.

    Exact code matches win over broad substring matches on the message.
    Falls back to a plain ExchangeError so an error envelope is never ignored.
    """
    if code is not None and code in exact:
        raise exact[code](feedback, code=code, request_id=request_id)
    if message:
        for fragment, exc_class in broad.items():
            if fragment in message:
                raise exc_class(feedback, code=code, request_id=request_id)
    raise ExchangeError(feedback, code=code, request_id=request_id)
