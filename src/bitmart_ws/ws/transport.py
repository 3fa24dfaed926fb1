"""Raw socket layer consumed by the connection manager."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

import aiohttp

from ..errors import TransportError

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str], None]
CloseCallback = Callable[[BaseException | None], None]


class Transport(Protocol):
    """An open duplex text channel."""

    async def send(self, data: str) -> None:
        ...

    async def close(self) -> None:
        ...


TransportFactory = Callable[[str, MessageCallback, CloseCallback], Awaitable[Transport]]


class AiohttpTransport:
    """Websocket transport backed by ``aiohttp.ClientSession.ws_connect``."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        ws: aiohttp.ClientWebSocketResponse,
        on_message: MessageCallback,
        on_close: CloseCallback,
        *,
        owns_session: bool = True,
    ):
        self._session = session
        self._ws = ws
        self._on_message = on_message
        self._on_close = on_close
        self._owns_session = owns_session
        self._reader = asyncio.create_task(self._read_loop())

    @classmethod
    async def connect(
        cls,
        url: str,
        on_message: MessageCallback,
        on_close: CloseCallback,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 10.0,
    ) -> "AiohttpTransport":
        owns_session = session is None
        if session is None:
            session = aiohttp.ClientSession()
        try:
            ws = await asyncio.wait_for(session.ws_connect(url, autoping=True), timeout)
        except BaseException as exc:
            # Includes cancellation: a session we opened must not outlive the attempt.
            if owns_session:
                await session.close()
            if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError)):
                raise TransportError(f"Failed to connect to {url}: {exc}") from exc
            raise
        return cls(session, ws, on_message, on_close, owns_session=owns_session)

    async def _read_loop(self) -> None:
        error: BaseException | None = None
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._on_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._on_message(msg.data.decode("utf-8", errors="replace"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = self._ws.exception() or TransportError("websocket error")
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Websocket read loop failed: %s", exc)
            error = exc
        finally:
            if self._owns_session and not self._session.closed:
                await self._session.close()
        self._on_close(error)

    async def send(self, data: str) -> None:
        if self._ws.closed:
            raise TransportError("Cannot send on a closed websocket")
        try:
            await self._ws.send_str(data)
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise TransportError(f"Send failed: {exc}") from exc

    async def close(self) -> None:
        await self._ws.close()
        if self._owns_session and not self._session.closed:
            await self._session.close()


async def aiohttp_transport_factory(
    url: str,
    on_message: MessageCallback,
    on_close: CloseCallback,
) -> Transport:
    return await AiohttpTransport.connect(url, on_message, on_close)
