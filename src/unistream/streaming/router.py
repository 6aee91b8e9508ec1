"""Discriminator-based dispatch of inbound messages to adapter handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from .connection import Connection

logger = logging.getLogger(__name__)

Handler = Callable[["Connection", Any], Any]
Discriminator = Callable[[Any], "str | None"]
ErrorCheck = Callable[["Connection", Any], None]


class MessageRouter:
    """Dispatch table built once when an adapter is constructed.

    Lookup order for a message:
    1. the error check, which raises for error envelopes
    2. an exact match on the discriminator
    3. the discriminator prefix before the first ``separator``
    4. the default handler

    Messages matching nothing are ignored.
    """

    def __init__(
        self,
        discriminator: Discriminator,
        *,
        separator: str | None = None,
        error_check: ErrorCheck | None = None,
        default: Handler | None = None,
    ):
        self.discriminator = discriminator
        self.separator = separator
        self.error_check = error_check
        self.default = default
        self._routes: dict[str, Handler] = {}

    def route(self, name: str, handler: Handler) -> "MessageRouter":
        self._routes[name] = handler
        return self

    def routes(self, table: dict[str, Handler]) -> "MessageRouter":
        self._routes.update(table)
        return self

    def resolve_handler(self, key: str | None) -> Handler | None:
        if key is None:
            return self.default
        handler = self._routes.get(key)
        if handler is None and self.separator and self.separator in key:
            handler = self._routes.get(key.split(self.separator, 1)[0])
        return handler or self.default

    def dispatch(self, connection: "Connection", message: Any) -> bool:
        """Route one decoded message.

        Returns:
            True if a handler ran, False if the message was ignored
        """
        if self.error_check is not None:
            self.error_check(connection, message)
        key = self.discriminator(message)
        handler = self.resolve_handler(key)
        if handler is None:
            logger.debug("no handler for discriminator %r", key)
            return False
        handler(connection, message)
        return True

    def __contains__(self, name: object) -> bool:
        return name in self._routes
