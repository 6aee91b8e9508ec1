"""One persistent WebSocket connection multiplexing many subscriptions."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Iterable, Protocol

from ..errors import ExchangeError, NetworkError, StreamClosed
from .router import MessageRouter
from .subscriptions import AUTH_CHANNEL, Subscription, SubscriptionRegistry
from .waiters import Waiter, WaiterRegistry

try:
    import aiohttp
except ImportError:
    aiohttp = None

if TYPE_CHECKING:
    from ..settings import StreamSettings

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


class Transport(Protocol):
    """Socket-level collaborator used by a Connection."""

    async def open(self, url: str) -> None:
        ...

    async def send(self, data: str) -> None:
        ...

    async def receive(self) -> str | None:
        """Return the next text frame, or None once the peer closed."""
        ...

    async def close(self) -> None:
        ...


class AiohttpTransport:
    """WebSocket transport on top of an aiohttp client session."""

    def __init__(
        self,
        *,
        proxy: str | None = None,
        connect_timeout: float = 10.0,
        session: "aiohttp.ClientSession | None" = None,
    ):
        self.proxy = proxy
        self.connect_timeout = connect_timeout
        self._session = session
        self._owns_session = session is None
        self._ws: "aiohttp.ClientWebSocketResponse | None" = None

    async def open(self, url: str) -> None:
        if aiohttp is None:
            raise ImportError("aiohttp is required for WebSocket streaming")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(url, proxy=self.proxy, autoping=True),
                self.connect_timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise NetworkError(f"failed to open {url}: {exc}") from exc

    async def send(self, data: str) -> None:
        if self._ws is None or self._ws.closed:
            raise NetworkError("websocket is not open")
        try:
            await self._ws.send_str(data)
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise NetworkError(f"send failed: {exc}") from exc

    async def receive(self) -> str | None:
        if self._ws is None:
            return None
        msg = await self._ws.receive()
        if msg.type == aiohttp.WSMsgType.TEXT:
            return msg.data
        if msg.type == aiohttp.WSMsgType.BINARY:
            return msg.data.decode("utf-8")
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise NetworkError(f"websocket error: {self._ws.exception()}")
        return None

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None


TransportFactory = Callable[[], Transport]
PingFactory = Callable[["Connection"], Any]


class Connection:
    """Owns one transport, its subscriptions and the waiters keyed on it.

    Inbound frames are decoded and routed on a single reader task, strictly
    in arrival order. Callers suspend on their own waiters only.
    """

    def __init__(
        self,
        url: str,
        router: MessageRouter,
        settings: "StreamSettings",
        *,
        transport_factory: TransportFactory | None = None,
        ping: PingFactory | None = None,
        on_disconnect: Callable[["Connection"], None] | None = None,
        name: str = "",
    ):
        self.url = url
        self.router = router
        self.settings = settings
        self.name = name or url
        self.ping = ping
        self.on_disconnect = on_disconnect
        self.state = ConnectionState.CLOSED
        self.transport: Transport | None = None
        self.waiters = WaiterRegistry(stream_queue_size=settings.stream_queue_size)
        self.subscriptions = SubscriptionRegistry()
        self.terminal_error: BaseException | None = None
        self.last_message_at = 0.0
        self._transport_factory = transport_factory or (
            lambda: AiohttpTransport(connect_timeout=settings.connect_timeout)
        )
        self._request_ids = itertools.count(1)
        self._connect_lock = asyncio.Lock()
        self._reader_task: asyncio.Task | None = None
        self._keepalive_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._fault: NetworkError | None = None
        self._closed_by_user = False

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def next_request_id(self) -> int:
        return next(self._request_ids)

    async def connect(self) -> None:
        """Open the transport if needed, retrying with exponential backoff.

        Raises:
            NetworkError: If the connection was closed by the user or every
                attempt failed
        """
        async with self._connect_lock:
            if self.state is ConnectionState.OPEN:
                return
            if self._closed_by_user:
                raise self.terminal_error or NetworkError(f"connection to {self.url} closed")
            await self._open_with_retry()

    async def send(self, payload: Any) -> None:
        """Write one request; does not wait for any acknowledgement.

        Raises:
            NetworkError: If the transport is not open or the write failed
        """
        if self.state is not ConnectionState.OPEN or self.transport is None:
            raise NetworkError(f"{self.name} is not open")
        text = payload if isinstance(payload, str) else json.dumps(payload, separators=(",", ":"))
        logger.debug("%s >> %s", self.name, text)
        try:
            await self.transport.send(text)
        except NetworkError:
            raise
        except OSError as exc:
            raise NetworkError(f"{self.name} send failed: {exc}") from exc

    async def subscribe(
        self,
        channel: str,
        symbol: str | None,
        message_hashes: Iterable[str],
        request: Any,
        *,
        request_id: Any = None,
        private: bool = False,
    ) -> Subscription:
        """Send a subscribe request unless (channel, symbol) is already pending or active."""
        message_hashes = tuple(message_hashes)
        subscription, created = self.subscriptions.subscribe(
            Subscription(
                channel=channel,
                symbol=symbol,
                message_hashes=message_hashes,
                request=request,
                request_id=request_id,
                private=private,
            )
        )
        if not created:
            missing = tuple(h for h in message_hashes if h not in subscription.message_hashes)
            if missing:
                subscription.message_hashes += missing
            return subscription
        if request is None:
            return subscription
        try:
            await self._send_with_retry(materialize(request))
        except NetworkError as exc:
            self.fail_subscription(subscription, exc)
            raise
        return subscription

    async def watch(
        self,
        message_hashes: str | Iterable[str],
        request: Any = None,
        *,
        channel: str | None = None,
        symbol: str | None = None,
        request_id: Any = None,
        private: bool = False,
        timeout: float | None = None,
    ) -> Any:
        """Subscribe if needed and wait for the next value on any of the hashes.

        Raises:
            RequestTimeout: If ``timeout`` (or the configured default) expires
            NetworkError: If the connection errors or closes while waiting
            ExchangeError: If the exchange rejects the subscription
        """
        hashes = (message_hashes,) if isinstance(message_hashes, str) else tuple(message_hashes)
        await self.connect()
        waiter = self.waiters.register(hashes)
        try:
            if channel is not None:
                await self.subscribe(
                    channel, symbol, hashes, request, request_id=request_id, private=private
                )
            elif request is not None:
                await self._send_with_retry(materialize(request))
            if timeout is None:
                timeout = self.settings.request_timeout
            return await waiter.get(timeout)
        finally:
            self.waiters.discard(waiter)

    async def stream(
        self,
        message_hashes: str | Iterable[str],
        request: Any = None,
        *,
        channel: str,
        symbol: str | None = None,
        request_id: Any = None,
        private: bool = False,
    ) -> Waiter:
        """Register a persistent waiter that receives every future delivery."""
        hashes = (message_hashes,) if isinstance(message_hashes, str) else tuple(message_hashes)
        await self.connect()
        waiter = self.waiters.register(hashes, persistent=True)
        try:
            await self.subscribe(channel, symbol, hashes, request, request_id=request_id, private=private)
        except BaseException:
            self.waiters.discard(waiter)
            raise
        return waiter

    async def unsubscribe(self, channel: str, symbol: str | None = None, request: Any = None) -> bool:
        subscription = self.subscriptions.remove(channel, symbol)
        if subscription is None:
            return False
        exc = StreamClosed(f"unsubscribed from {subscription.key}")
        for message_hash in subscription.message_hashes:
            self.waiters.reject(message_hash, exc, close=True)
        if request is not None and self.is_open:
            await self.send(materialize(request))
        return True

    def resolve(self, value: Any, message_hash: str) -> int:
        return self.waiters.resolve(message_hash, value)

    def reject(self, exc: BaseException, message_hash: str) -> int:
        return self.waiters.reject(message_hash, exc)

    def fail_subscription(self, subscription: Subscription, exc: BaseException) -> None:
        """Fail every waiter attached to a subscription and forget it."""
        self.subscriptions.discard(subscription)
        for message_hash in subscription.message_hashes:
            self.waiters.reject(message_hash, exc, close=True)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run follow-up work (re-snapshots, replays) off the reader task."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    async def close(self) -> None:
        """Close for good; every waiter fails with the terminal error."""
        if self._closed_by_user:
            return
        self._closed_by_user = True
        self.state = ConnectionState.CLOSED
        self.terminal_error = NetworkError(f"connection to {self.url} closed")
        await self._teardown_transport()
        for task in list(self._tasks):
            if task is not asyncio.current_task():
                task.cancel()
        self._notify_disconnect()
        self.waiters.reject_all(self.terminal_error, close=True)
        self.subscriptions.clear()
        logger.info("%s closed", self.name)

    async def _open_with_retry(self) -> None:
        delay = self.settings.reconnect_delay
        attempts = max(1, self.settings.max_reconnect_attempts)
        last_exc: BaseException | None = None
        for attempt in range(1, attempts + 1):
            self.state = ConnectionState.CONNECTING
            try:
                await self._open_once()
                return
            except (NetworkError, OSError) as exc:
                last_exc = exc
                self.state = ConnectionState.ERRORED
                logger.warning(
                    "%s connect attempt %d/%d failed: %s", self.name, attempt, attempts, exc
                )
            if attempt < attempts:
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.settings.max_reconnect_delay)
        raise NetworkError(f"failed to connect to {self.url} after {attempts} attempts: {last_exc}")

    async def _open_once(self) -> None:
        transport = self._transport_factory()
        await transport.open(self.url)
        self.transport = transport
        self._fault = None
        self.state = ConnectionState.OPEN
        self.last_message_at = asyncio.get_running_loop().time()
        self._reader_task = self.spawn(self._read_loop(transport))
        if self.settings.ping_interval > 0:
            self._keepalive_task = self.spawn(self._keepalive_loop(transport))
        logger.info("%s connected", self.name)

    async def _send_with_retry(self, payload: Any) -> None:
        try:
            await self.send(payload)
        except NetworkError as exc:
            logger.info("%s send failed (%s), reconnecting", self.name, exc)
            await self.connect()
            await self.send(payload)

    async def _read_loop(self, transport: Transport) -> None:
        try:
            while True:
                raw = await transport.receive()
                if raw is None:
                    raise self._fault or NetworkError(f"{self.name} closed by remote")
                self.last_message_at = asyncio.get_running_loop().time()
                self._handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except (NetworkError, OSError) as exc:
            if self._closed_by_user or transport is not self.transport:
                return
            self._on_transport_failure(exc)

    def _handle_frame(self, raw: str) -> None:
        logger.debug("%s << %s", self.name, raw)
        try:
            message = json.loads(raw)
        except ValueError:
            message = raw
        try:
            self.router.dispatch(self, message)
        except ExchangeError as exc:
            logger.warning("%s error message: %s", self.name, exc)
            self._record_error(exc)
        except Exception:
            logger.exception("%s skipped malformed message: %.500s", self.name, raw)

    def _record_error(self, exc: ExchangeError) -> None:
        subscription = self.subscriptions.find_by_request_id(exc.request_id)
        if subscription is not None:
            self.fail_subscription(subscription, exc)
            return
        if exc.request_id is not None and str(exc.request_id) in self.waiters:
            self.waiters.reject(str(exc.request_id), exc)
            return
        pending = self.subscriptions.pending()
        if pending:
            for subscription in pending:
                self.fail_subscription(subscription, exc)
            return
        if not self.waiters.reject_all(exc):
            logger.warning("%s error with no waiter to receive it: %s", self.name, exc)

    async def _keepalive_loop(self, transport: Transport) -> None:
        loop = asyncio.get_running_loop()
        while self.state is ConnectionState.OPEN and transport is self.transport:
            await asyncio.sleep(self.settings.ping_interval)
            if self.state is not ConnectionState.OPEN or transport is not self.transport:
                return
            idle = loop.time() - self.last_message_at
            if idle > self.settings.keepalive_timeout:
                self._fault = NetworkError(f"{self.name} silent for {idle:.1f}s")
                logger.warning("%s keepalive expired after %.1fs", self.name, idle)
                await transport.close()
                return
            payload = self.ping(self) if self.ping is not None else None
            if payload is None:
                continue
            try:
                await self.send(payload)
            except NetworkError:
                return

    def _on_transport_failure(self, exc: BaseException) -> None:
        self.state = ConnectionState.ERRORED
        logger.warning("%s transport failure: %s", self.name, exc)
        error = exc if isinstance(exc, NetworkError) else NetworkError(str(exc))
        self.waiters.reject_all(error)
        self._notify_disconnect()
        self.spawn(self._reconnect())

    async def _reconnect(self) -> None:
        if self.transport is not None:
            await self._teardown_transport()
        try:
            await self.connect()
        except NetworkError as exc:
            logger.error("%s giving up: %s", self.name, exc)
            self.state = ConnectionState.CLOSED
            self.terminal_error = exc
            self.waiters.reject_all(exc, close=True)
            self.subscriptions.clear()
            return
        await self._resubscribe()

    async def _resubscribe(self) -> None:
        """Replay every subscription after a reconnect, the login first.

        A login that is rejected or never acknowledged fails the private
        subscriptions; public ones are still replayed. A failed send closes
        the transport so the next reconnect cycle replays what is left.
        """
        transport = self.transport
        self.subscriptions.reset()
        subscriptions = sorted(self.subscriptions.all(), key=lambda s: s.channel != AUTH_CHANNEL)
        logger.info("%s replaying %d subscriptions", self.name, len(subscriptions))
        auth_error: BaseException | None = None
        for subscription in subscriptions:
            if not self._replaying(transport):
                return
            if self.subscriptions.get(subscription.channel, subscription.symbol) is not subscription:
                continue
            if subscription.private and auth_error is not None:
                self.fail_subscription(subscription, auth_error)
                continue
            if subscription.request is None:
                continue
            waiter = None
            if subscription.channel == AUTH_CHANNEL:
                waiter = self.waiters.register(subscription.message_hashes)
            try:
                try:
                    await self.send(materialize(subscription.request))
                except NetworkError as exc:
                    logger.warning("%s replay of %s failed: %s", self.name, subscription.key, exc)
                    await self._abort_replay(transport, exc)
                    return
                if waiter is None:
                    continue
                try:
                    await waiter.get(self.settings.connect_timeout)
                except (NetworkError, ExchangeError) as exc:
                    if not self._replaying(transport):
                        return
                    logger.warning("%s login replay failed: %s", self.name, exc)
                    auth_error = exc
                    self.fail_subscription(subscription, exc)
            finally:
                if waiter is not None:
                    self.waiters.discard(waiter)

    def _replaying(self, transport: Transport | None) -> bool:
        return (
            transport is not None
            and transport is self.transport
            and self.state is ConnectionState.OPEN
        )

    async def _abort_replay(self, transport: Transport | None, exc: NetworkError) -> None:
        if not self._replaying(transport):
            return
        self._fault = exc
        await transport.close()

    async def _teardown_transport(self) -> None:
        transport, self.transport = self.transport, None
        for task in (self._reader_task, self._keepalive_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self._reader_task = self._keepalive_task = None
        if transport is not None:
            try:
                await transport.close()
            except (NetworkError, OSError) as exc:
                logger.debug("%s close failed: %s", self.name, exc)

    def _notify_disconnect(self) -> None:
        if self.on_disconnect is not None:
            self.on_disconnect(self)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s background task failed: %s", self.name, exc, exc_info=exc)


def materialize(request: Any) -> Any:
    """Build a request that is given as a callable; return other requests as they are."""
    return request() if callable(request) else request

