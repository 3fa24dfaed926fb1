"""Exception taxonomy for the websocket client."""

from __future__ import annotations

from typing import Any


class WebsocketClientError(Exception):
    """Base class for every error raised by bitmart_ws."""


class ClassificationError(WebsocketClientError, ValueError):
    """A topic could not be mapped to a market."""

    def __init__(self, topic: str):
        super().__init__(f'Could not resolve "market" for topic: "{topic}"')
        self.topic = topic


UnresolvableMarket = ClassificationError


class UnresolvedEndpoint(WebsocketClientError, LookupError):
    """No websocket URL is known for a connection key."""


class MissingCredentials(WebsocketClientError):
    """Authentication was required but the key, secret or memo is missing."""


class FrameParseError(WebsocketClientError, ValueError):
    """An inbound frame was not valid JSON."""

    def __init__(self, message: str, raw: Any):
        super().__init__(message)
        self.raw = raw


class TransportError(WebsocketClientError, ConnectionError):
    """The underlying socket failed to open, dropped or timed out."""


class AuthenticationError(WebsocketClientError):
    """The exchange rejected the auth frame or never acknowledged it."""
