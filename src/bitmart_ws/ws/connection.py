"""Lifecycle of one logical websocket connection.

Each ``WsConnection`` owns one socket, one ``SubscriptionRegistry`` and one
``asyncio.Lock``. Every mutation of the registry and every subscribe or
unsubscribe send happens while holding that lock, so a caller's unsubscribe
can never interleave with a reconnect's full resubscribe. The socket connect
and the auth handshake run outside the lock; a generation counter tells a
handshake that its socket was torn down underneath it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Coroutine

from ..errors import AuthenticationError, FrameParseError, MissingCredentials, TransportError
from ..settings import WebsocketSettings, WsCredentials
from .auth import SignMessageFn, build_auth_frame, now_millis, sign
from .events import (
    EventType,
    WsEvent,
    auth_result,
    classify_frame,
    exception_event,
    is_pong,
    parse_frame,
    subscription_ack_topics,
)
from .keys import ConnectionKey, market_for_key, max_topics_per_message, url_for
from .registry import Operation, SubscriptionRegistry, serialize_requests
from .topics import Market
from .transport import Transport, TransportFactory

logger = logging.getLogger(__name__)

EmitFn = Callable[[WsEvent], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    OPEN = "open"
    RECONNECT_PENDING = "reconnect_pending"
    CLOSED = "closed"


PING_FRAMES: dict[Market, str] = {
    Market.SPOT: "ping",
    Market.FUTURES: '{"action":"ping"}',
}


class WsConnection:
    """State machine for a single connection key."""

    def __init__(
        self,
        key: ConnectionKey,
        settings: WebsocketSettings,
        credentials: WsCredentials,
        *,
        transport_factory: TransportFactory,
        emit: EmitFn,
        sign_message: SignMessageFn | None = None,
        clock: Callable[[], float] = now_millis,
    ):
        self.key = key
        self.market = market_for_key(key)
        self.url = url_for(key, settings)
        self.registry = SubscriptionRegistry()
        self.state = ConnectionState.DISCONNECTED
        self.authenticated = False
        self.last_activity: float | None = None

        self._settings = settings
        self._credentials = credentials
        self._transport_factory = transport_factory
        self._emit = emit
        self._sign_message = sign_message
        self._clock = clock
        self._max_topics = max_topics_per_message(key, settings)

        self._lock = asyncio.Lock()
        self._transport: Transport | None = None
        # Bumped whenever a socket is replaced; callbacks from older sockets are ignored.
        self._generation = 0
        self._auth_waiter: asyncio.Future[Any] | None = None
        self._pong_received = asyncio.Event()
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        # Resolved with the outcome of the handshake in flight, if any.
        self._opening: asyncio.Future[bool] | None = None
        self._closing = False
        self._failed_attempts = 0
        self._has_opened = False
        self._background: set[asyncio.Task[Any]] = set()

    def __repr__(self) -> str:
        return f"<WsConnection {self.key.value} state={self.state.value}>"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    # Public operations

    async def connect(self) -> bool:
        """Open the connection unless it is already open or closed.

        Returns:
            True if the connection is open when this call returns
        """
        if self.state is ConnectionState.CLOSED or self._closing:
            logger.warning("%s: connect() refused, connection was shut down", self.key.value)
            return False
        if self.state is ConnectionState.OPEN:
            return True
        if self._opening is not None:
            return await asyncio.shield(self._opening)
        if self.state is ConnectionState.RECONNECT_PENDING and self._reconnect_task is not None:
            return False
        return await self._run_open()

    async def subscribe(self, topics: list[str]) -> list[str]:
        """Add topics to the desired set, sending them now if open."""
        async with self._lock:
            added = self.registry.add_desired(topics)
            if self.state is ConnectionState.CLOSED:
                logger.warning("%s: subscribe after shutdown, topics kept but not sent", self.key.value)
            elif added and self.state is ConnectionState.OPEN:
                await self._send_requests("subscribe", added)
            needs_connect = self.state is ConnectionState.DISCONNECTED

        if needs_connect:
            self._spawn(self.connect())
        return added

    async def unsubscribe(self, topics: list[str]) -> list[str]:
        """Remove topics from the desired set, sending unsubscribes if open."""
        async with self._lock:
            removed = self.registry.remove_desired(topics)
            if removed and self.state is ConnectionState.OPEN:
                await self._send_requests("unsubscribe", removed)
        return removed

    async def close(self) -> None:
        """Shut the connection down for good."""
        self._closing = True
        self._cancel_reconnect()
        waiter = self._auth_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(AuthenticationError("connection closed during authentication"))

        async with self._lock:
            if self.state is ConnectionState.CLOSED:
                return
            self._cancel_reconnect()
            self._set_state(ConnectionState.CLOSED)
            await self._teardown_transport()
            self._emit(WsEvent(EventType.CLOSE, self.key, {"url": self.url}))

        for task in list(self._background):
            if task is not asyncio.current_task():
                task.cancel()

    # Lifecycle

    async def _run_open(self) -> bool:
        opening = asyncio.get_running_loop().create_future()
        self._opening = opening
        opened = False
        try:
            opened = await self._open()
            return opened
        finally:
            self._opening = None
            if not opening.done():
                opening.set_result(opened)

    def _superseded(self, generation: int) -> bool:
        return generation != self._generation or self._closing

    async def _open(self) -> bool:
        self._set_state(ConnectionState.CONNECTING)
        self._generation += 1
        generation = self._generation

        try:
            transport = await self._transport_factory(
                self.url,
                lambda raw: self._on_frame(generation, raw),
                lambda exc: self._on_transport_closed(generation, exc),
            )
        except Exception as exc:
            if self._superseded(generation):
                return False
            logger.error("%s: failed to connect to %s: %s", self.key.value, self.url, exc)
            self._schedule_reconnect()
            return False

        if self._superseded(generation):
            await self._close_quietly(transport)
            return False

        self._transport = transport
        self.last_activity = time.monotonic()

        if self.key.is_private:
            if self._credentials.is_empty():
                logger.warning(
                    "%s: no credentials configured, opening without authentication", self.key.value
                )
            elif not await self._authenticate(generation):
                return False

        async with self._lock:
            if self._superseded(generation):
                return False
            return await self._enter_open()

    async def _authenticate(self, generation: int) -> bool:
        self._set_state(ConnectionState.AUTHENTICATING)

        try:
            signature = await sign(
                self._credentials,
                self._clock(),
                self._settings.recv_window_ms,
                sign_message=self._sign_message,
            )
        except Exception as exc:
            if self._superseded(generation):
                return False
            logger.error("%s: could not sign auth request: %s", self.key.value, exc)
            await self._teardown_transport()
            self._emit(WsEvent(EventType.EXCEPTION, self.key, {"message": str(exc), "exception": exc}))
            if isinstance(exc, MissingCredentials):
                # Retrying cannot fix incomplete credentials.
                self._set_state(ConnectionState.RECONNECT_PENDING)
            else:
                self._schedule_reconnect()
            return False

        if self._superseded(generation):
            return False

        api_key = self._credentials.api_key.get_secret_value()  # type: ignore[union-attr]
        self._auth_waiter = asyncio.get_running_loop().create_future()
        try:
            await self._transport.send(build_auth_frame(self.market, api_key, signature))  # type: ignore[union-attr]
            ack = await asyncio.wait_for(self._auth_waiter, self._settings.auth_timeout)
        except (AuthenticationError, TransportError, asyncio.TimeoutError) as exc:
            if self._superseded(generation):
                return False
            reason = str(exc) or type(exc).__name__
            logger.error("%s: authentication failed: %s", self.key.value, reason)
            await self._teardown_transport()
            self._emit(WsEvent(EventType.EXCEPTION, self.key, {"message": "authentication failed", "exception": exc}))
            self._schedule_reconnect()
            return False
        finally:
            self._auth_waiter = None

        if self._superseded(generation):
            return False

        self.authenticated = True
        logger.info("%s: authenticated", self.key.value)
        self._emit(WsEvent(EventType.AUTHENTICATED, self.key, ack))
        return True

    # Sends, teardown and reconnect scheduling

    async def _enter_open(self) -> bool:
        self._set_state(ConnectionState.OPEN)
        reconnected = self._has_opened
        self._has_opened = True
        self._failed_attempts = 0

        topics = self.registry.diff_for_resubscribe()
        self._start_heartbeat()
        self._emit(
            WsEvent(EventType.RECONNECTED if reconnected else EventType.OPEN, self.key, {"url": self.url})
        )

        if topics:
            logger.info("%s: subscribing to %d topic(s)", self.key.value, len(topics))
            return await self._send_requests("subscribe", topics)
        return True

    async def _send_requests(self, operation: Operation, topics: list[str]) -> bool:
        frames = serialize_requests(self.market, operation, topics, self._max_topics)
        for frame in frames:
            try:
                await self._transport.send(frame)  # type: ignore[union-attr]
            except TransportError as exc:
                logger.error("%s: failed to send %s request: %s", self.key.value, operation, exc)
                await self._connection_lost(exc)
                return False
            logger.debug("%s: sent %s", self.key.value, frame)
        return True

    async def _connection_lost(self, exc: BaseException | None) -> None:
        logger.warning("%s: connection lost (%s)", self.key.value, exc or "closed by peer")
        await self._teardown_transport()
        self._emit(WsEvent(EventType.RECONNECT, self.key, {"url": self.url, "error": exc}))
        self._schedule_reconnect()

    async def _teardown_transport(self) -> None:
        self._stop_heartbeat()
        transport, self._transport = self._transport, None
        self._generation += 1
        self.authenticated = False
        self.registry.reset_confirmed()
        if transport is not None:
            await self._close_quietly(transport)

    async def _close_quietly(self, transport: Transport) -> None:
        try:
            await transport.close()
        except Exception as exc:
            logger.debug("%s: error while closing socket: %s", self.key.value, exc)

    def _schedule_reconnect(self) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self._set_state(ConnectionState.RECONNECT_PENDING)
        self._failed_attempts += 1
        delay = min(
            self._settings.reconnect_delay * (2 ** (self._failed_attempts - 1)),
            self._settings.max_reconnect_delay,
        )
        logger.info("%s: reconnecting in %.2fs (attempt %d)", self.key.value, delay, self._failed_attempts)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            if self.state is not ConnectionState.RECONNECT_PENDING or self._opening is not None:
                return
            await self._run_open()
        finally:
            # A failed attempt may already have scheduled the next one.
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    # Heartbeat

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(self._generation))

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self._settings.ping_interval)
            if generation != self._generation or self._transport is None:
                return

            self._pong_received.clear()
            try:
                await self._transport.send(PING_FRAMES[self.market])
            except TransportError as exc:
                self._spawn(self._handle_disconnect(generation, exc))
                return
            logger.debug("%s: ping", self.key.value)

            try:
                await asyncio.wait_for(self._pong_received.wait(), self._settings.pong_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "%s: no pong within %.1fs, forcing reconnect", self.key.value, self._settings.pong_timeout
                )
                self._spawn(self._handle_disconnect(generation, TransportError("heartbeat timeout")))
                return

    # Transport callbacks

    def _on_transport_closed(self, generation: int, exc: BaseException | None) -> None:
        if generation != self._generation:
            return
        waiter = self._auth_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(TransportError("socket closed before auth was acknowledged"))
        self._spawn(self._handle_disconnect(generation, exc))

    async def _handle_disconnect(self, generation: int, exc: BaseException | None) -> None:
        async with self._lock:
            if generation != self._generation or self.state is not ConnectionState.OPEN:
                return
            await self._connection_lost(exc)

    def _on_frame(self, generation: int, raw: str) -> None:
        if generation != self._generation or self.state is ConnectionState.CLOSED:
            return
        self.last_activity = time.monotonic()
        try:
            self._handle_frame(raw)
        except Exception as exc:
            logger.exception("%s: failed to handle frame", self.key.value)
            self._emit(exception_event(self.key, exc, raw))

    def _handle_frame(self, raw: str) -> None:
        if is_pong(raw):
            self._pong_received.set()
            logger.debug("%s: pong", self.key.value)
            return

        try:
            parsed = parse_frame(raw)
        except FrameParseError as exc:
            logger.error("%s: %s (data=%r)", self.key.value, exc, raw)
            self._emit(exception_event(self.key, exc, raw))
            return

        if is_pong(raw, parsed):
            self._pong_received.set()
            logger.debug("%s: pong", self.key.value)
            return

        if self._consume_auth_frame(parsed):
            return

        ack = subscription_ack_topics(parsed)
        if ack is not None:
            operation, topics = ack
            if operation == "subscribe":
                self.registry.mark_confirmed(topics)
            else:
                self.registry.mark_unconfirmed(topics)

        self._emit(classify_frame(parsed, self.key))

    def _consume_auth_frame(self, parsed: Any) -> bool:
        waiter = self._auth_waiter
        result = auth_result(parsed)
        if result is None and waiter is not None and isinstance(parsed, dict) and parsed.get("event") == "error":
            result = (False, str(parsed.get("errorMessage") or parsed))
        if result is None:
            return False

        success, error = result
        if waiter is None or waiter.done():
            logger.warning("%s: unexpected auth response: %s", self.key.value, parsed)
            return True
        if success:
            waiter.set_result(parsed)
        else:
            waiter.set_exception(AuthenticationError(error or "authentication rejected"))
        return True

    # Helpers

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            logger.info("%s: %s -> %s", self.key.value, self.state.value, state.value)
            self.state = state

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s: background task failed: %r", self.key.value, task.exception())
