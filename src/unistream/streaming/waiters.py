"""Multi-waiter registry keyed by message-hash.

A waiter is one caller's registration. One-shot waiters take a single
delivery and are removed; persistent waiters back long-lived streams and
keep receiving values (and transient errors) until they are closed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from ..errors import RequestTimeout, StreamClosed

logger = logging.getLogger(__name__)


class Waiter:
    """A caller registered on one or more message hashes."""

    def __init__(self, hashes: tuple[str, ...], *, persistent: bool = False, maxsize: int = 100):
        self.hashes = hashes
        self.persistent = persistent
        self.closed = False
        self._queue: asyncio.Queue[tuple[Any, BaseException | None]] = asyncio.Queue(
            maxsize=maxsize if persistent else 1
        )

    def deliver(self, value: Any) -> None:
        self._put((value, None))

    def fail(self, exc: BaseException) -> None:
        self._put((None, exc))

    def close(self, exc: BaseException | None = None) -> None:
        if self.closed:
            return
        self.closed = True
        self._put((None, exc or StreamClosed(f"stream on {', '.join(self.hashes)} closed")))

    async def get(self, timeout: float | None = None) -> Any:
        """Wait for the next delivery.

        Raises:
            RequestTimeout: If nothing arrives within ``timeout`` seconds
        """
        try:
            if timeout is None:
                value, exc = await self._queue.get()
            else:
                value, exc = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            raise RequestTimeout(f"timed out after {timeout}s waiting for {', '.join(self.hashes)}") from None
        if exc is not None:
            raise exc
        return value

    def _put(self, item: tuple[Any, BaseException | None]) -> None:
        if self._queue.full():
            # Slow stream consumer: keep the newest value.
            self._queue.get_nowait()
            logger.debug("waiter on %s dropped an undelivered value", self.hashes)
        self._queue.put_nowait(item)

    def __repr__(self) -> str:
        kind = "persistent" if self.persistent else "one-shot"
        return f"Waiter({', '.join(self.hashes)}, {kind})"


class WaiterRegistry:
    """Maps message hashes to the waiters expecting them."""

    def __init__(self, *, stream_queue_size: int = 100):
        self.stream_queue_size = stream_queue_size
        self._waiters: dict[str, list[Waiter]] = {}

    def register(self, hashes: str | Iterable[str], *, persistent: bool = False) -> Waiter:
        if isinstance(hashes, str):
            hashes = (hashes,)
        waiter = Waiter(tuple(hashes), persistent=persistent, maxsize=self.stream_queue_size)
        for message_hash in waiter.hashes:
            self._waiters.setdefault(message_hash, []).append(waiter)
        return waiter

    def discard(self, waiter: Waiter) -> None:
        """Remove one caller's registration; other waiters are untouched."""
        for message_hash in waiter.hashes:
            waiters = self._waiters.get(message_hash)
            if not waiters:
                continue
            if waiter in waiters:
                waiters.remove(waiter)
            if not waiters:
                del self._waiters[message_hash]

    def resolve(self, message_hash: str, value: Any) -> int:
        """Deliver ``value`` to every waiter on ``message_hash``.

        Returns:
            Number of waiters the value was delivered to
        """
        waiters = list(self._waiters.get(message_hash, ()))
        for waiter in waiters:
            waiter.deliver(value)
            if not waiter.persistent:
                self.discard(waiter)
        return len(waiters)

    def reject(self, message_hash: str, exc: BaseException, *, close: bool = False) -> int:
        """Deliver a failure to every waiter on ``message_hash``.

        One-shot waiters are always removed. Persistent waiters stay
        registered unless ``close`` is set.
        """
        waiters = list(self._waiters.get(message_hash, ()))
        for waiter in waiters:
            self._fail(waiter, exc, close=close)
        return len(waiters)

    def reject_all(self, exc: BaseException, *, close: bool = False) -> int:
        waiters = self.all()
        for waiter in waiters:
            self._fail(waiter, exc, close=close)
        return len(waiters)

    def all(self) -> list[Waiter]:
        seen: dict[int, Waiter] = {}
        for waiters in self._waiters.values():
            for waiter in waiters:
                seen.setdefault(id(waiter), waiter)
        return list(seen.values())

    def pending(self, message_hash: str) -> int:
        return len(self._waiters.get(message_hash, ()))

    def __contains__(self, message_hash: object) -> bool:
        return message_hash in self._waiters

    def __len__(self) -> int:
        return len(self.all())

    def _fail(self, waiter: Waiter, exc: BaseException, *, close: bool) -> None:
        if waiter.persistent and not close:
            waiter.fail(exc)
            return
        if waiter.persistent:
            waiter.close(exc)
        else:
            waiter.fail(exc)
        self.discard(waiter)
