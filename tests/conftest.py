"""Pytest configuration and fixtures."""

import asyncio
import json

import pytest

from bitmart_ws.errors import TransportError
from bitmart_ws.settings import WebsocketSettings, WsCredentials


class FakeTransport:
    """In-memory stand-in for a websocket."""

    def __init__(self, url, on_message, on_close, *, auth_reply=None, auto_pong=False):
        self.url = url
        self.on_message = on_message
        self.on_close = on_close
        self.auth_reply = auth_reply
        self.auto_pong = auto_pong
        self.sent = []
        self.closed = False

    async def send(self, data):
        if self.closed:
            raise TransportError("socket is closed")
        self.sent.append(data)
        loop = asyncio.get_running_loop()
        if self.auth_reply is not None and ('"login"' in data or '"access"' in data):
            loop.call_soon(self.deliver, self.auth_reply)
        if self.auto_pong and data in ("ping", '{"action":"ping"}'):
            loop.call_soon(self.deliver, "pong")

    async def close(self):
        self.closed = True

    def deliver(self, payload):
        if not isinstance(payload, str):
            payload = json.dumps(payload)
        self.on_message(payload)

    def drop(self, exc=None):
        self.closed = True
        self.on_close(exc)

    def requests(self):
        """Decoded subscribe/unsubscribe frames, in send order."""
        frames = []
        for frame in self.sent:
            if frame in ("ping", '{"action":"ping"}'):
                continue
            decoded = json.loads(frame)
            if decoded.get("op") in ("subscribe", "unsubscribe") or decoded.get("action") in (
                "subscribe",
                "unsubscribe",
            ):
                frames.append(decoded)
        return frames


class FakeTransportFactory:
    """Records every transport opened by a connection."""

    def __init__(self, *, auth_reply=None, auto_pong=False):
        self.auth_reply = auth_reply
        self.auto_pong = auto_pong
        self.failures = 0
        self.transports = []

    async def __call__(self, url, on_message, on_close):
        if self.failures:
            self.failures -= 1
            raise TransportError(f"connection refused: {url}")
        transport = FakeTransport(
            url,
            on_message,
            on_close,
            auth_reply=self.auth_reply,
            auto_pong=self.auto_pong,
        )
        self.transports.append(transport)
        return transport

    def for_url(self, url):
        matches = [t for t in self.transports if t.url == url]
        return matches[-1] if matches else None

    @property
    def last(self):
        return self.transports[-1]


async def settle(rounds=50):
    """Let scheduled callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def credentials():
    """Complete test credentials."""
    return WsCredentials(
        api_key="test_api_key_123456",
        api_secret="test_api_secret_789012",
        api_memo="test_memo_345678",
    )


@pytest.fixture
def ws_settings():
    """Settings that keep heartbeats out of the way and reconnect immediately."""
    return WebsocketSettings(
        ping_interval=60,
        pong_timeout=1,
        reconnect_delay=0,
        max_reconnect_delay=0.01,
        auth_timeout=0.2,
    )


@pytest.fixture
def fixed_clock():
    """Millisecond clock pinned to a known instant."""
    return lambda: 1_700_000_000_000.0


@pytest.fixture
def transport_factory():
    """Fake transports that acknowledge spot logins."""
    return FakeTransportFactory(auth_reply={"event": "login"})
