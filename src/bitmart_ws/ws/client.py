"""Public websocket client.

Callers deal in flat lists of topics. The client routes every topic to one
of four connections (spot/futures x public/private), opens and authenticates
those connections on demand, and re-subscribes after network issues.

Example::

    client = WebsocketClient(settings.websocket, settings.credentials)
    client.on("update", handle_update)
    await client.subscribe_topics(["spot/depth5:BTC_USDT", "futures/position"])
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Callable, Coroutine, Iterable

from ..errors import ClassificationError
from ..settings import Settings, WebsocketSettings, WsCredentials
from .auth import SignMessageFn, now_millis
from .connection import ConnectionState, WsConnection
from .events import EventType, WsEvent
from .keys import ConnectionKey, key_for_topic
from .transport import TransportFactory, aiohttp_transport_factory

logger = logging.getLogger(__name__)

EventHandler = Callable[[WsEvent], Any]


class WebsocketClient:
    """Multiplexes topic subscriptions over the exchange's websocket connections."""

    def __init__(
        self,
        settings: WebsocketSettings | None = None,
        credentials: WsCredentials | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        sign_message: SignMessageFn | None = None,
        clock: Callable[[], float] = now_millis,
    ):
        """Initialize websocket client.

        Args:
            settings: Connection tuning (URLs, heartbeat, backoff, batching)
            credentials: API key, secret and memo for private topics
            transport_factory: Opens raw sockets; defaults to aiohttp
            sign_message: Replacement for the built-in HMAC signer
            clock: Millisecond clock used for signature expiry
        """
        self.settings = settings or WebsocketSettings()
        self.credentials = credentials or WsCredentials()
        self._transport_factory = transport_factory or aiohttp_transport_factory
        self._sign_message = sign_message
        self._clock = clock
        self._connections: dict[ConnectionKey, WsConnection] = {}
        self._listeners: dict[EventType, list[EventHandler]] = defaultdict(list)
        self._queues: set[asyncio.Queue[WsEvent | None]] = set()
        self._tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "WebsocketClient":
        return cls(settings.websocket, settings.credentials, **kwargs)

    async def __aenter__(self) -> "WebsocketClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close_all()

    # Connections

    def connection(self, key: ConnectionKey) -> WsConnection:
        """Get the connection for a key, creating it on first use."""
        key = ConnectionKey(key)
        conn = self._connections.get(key)
        if conn is None:
            conn = WsConnection(
                key,
                self.settings,
                self.credentials,
                transport_factory=self._transport_factory,
                emit=self._emit,
                sign_message=self._sign_message,
                clock=self._clock,
            )
            self._connections[key] = conn
        return conn

    def state(self, key: ConnectionKey) -> ConnectionState:
        conn = self._connections.get(ConnectionKey(key))
        return conn.state if conn is not None else ConnectionState.DISCONNECTED

    def desired_topics(self, key: ConnectionKey) -> list[str]:
        conn = self._connections.get(ConnectionKey(key))
        return conn.registry.desired if conn is not None else []

    def confirmed_topics(self, key: ConnectionKey) -> set[str]:
        conn = self._connections.get(ConnectionKey(key))
        return conn.registry.confirmed if conn is not None else set()

    async def connect(self, key: ConnectionKey) -> bool:
        return await self.connection(key).connect()

    def connect_all(self) -> list[asyncio.Task[bool]]:
        """Start connecting every connection instead of waiting for a subscription.

        Returns:
            One task per connection key, resolving to True once that key is open
        """
        return [self._spawn(self.connection(key).connect()) for key in ConnectionKey]

    async def close(self, key: ConnectionKey) -> None:
        await self.connection(key).close()

    async def close_all(self) -> None:
        await asyncio.gather(*(conn.close() for conn in self._connections.values()))
        for queue in list(self._queues):
            queue.put_nowait(None)

    # Subscriptions

    def group_topics_by_key(self, topics: Iterable[str]) -> dict[ConnectionKey, list[str]]:
        """Split topics by the connection that serves them.

        Topics whose market cannot be resolved are dropped and reported as
        ``exception`` events.
        """
        if isinstance(topics, str):
            topics = [topics]

        grouped: dict[ConnectionKey, list[str]] = {}
        for topic in topics:
            try:
                key = key_for_topic(topic)
            except ClassificationError as exc:
                logger.error("Rejecting topic: %s", exc)
                self._emit(WsEvent(EventType.EXCEPTION, None, {"message": str(exc), "exception": exc, "topic": topic}))
                continue

            bucket = grouped.setdefault(key, [])
            if topic not in bucket:
                bucket.append(topic)
        return grouped

    async def subscribe_topics(self, topics: Iterable[str]) -> dict[ConnectionKey, list[str]]:
        """Request subscription to one or more topics.

        Connection and authentication happen automatically, and topics are
        re-subscribed after a reconnect until ``unsubscribe_topics`` removes
        them.
        """
        grouped = self.group_topics_by_key(topics)
        await asyncio.gather(*(self.connection(key).subscribe(batch) for key, batch in grouped.items()))
        return grouped

    async def unsubscribe_topics(self, topics: Iterable[str]) -> dict[ConnectionKey, list[str]]:
        """Unsubscribe from topics; they will not be re-subscribed on reconnect."""
        grouped = self.group_topics_by_key(topics)
        await asyncio.gather(*(self.connection(key).unsubscribe(batch) for key, batch in grouped.items()))
        return grouped

    # Events

    def on(self, event_type: EventType | str, handler: EventHandler) -> EventHandler:
        """Register a listener; coroutine functions are run as tasks."""
        self._listeners[EventType(event_type)].append(handler)
        return handler

    def off(self, event_type: EventType | str, handler: EventHandler) -> None:
        handlers = self._listeners.get(EventType(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    async def stream(self) -> AsyncIterator[WsEvent]:
        """Yield every event until ``close_all`` is called."""
        queue: asyncio.Queue[WsEvent | None] = asyncio.Queue()
        self._queues.add(queue)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            self._queues.discard(queue)

    def _emit(self, event: WsEvent) -> None:
        for queue in self._queues:
            queue.put_nowait(event)

        for handler in list(self._listeners.get(event.type, ())):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._spawn(result)
            except Exception:
                logger.exception("Listener for %s event failed", event.type.value)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed: %r", task.exception())
