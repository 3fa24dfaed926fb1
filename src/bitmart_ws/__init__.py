"""bitmart_ws: multiplexed websocket client for BitMart spot and futures streams."""

from .settings import Settings, WebsocketSettings, WsCredentials
from .config import load_settings
from .errors import (
    AuthenticationError,
    ClassificationError,
    FrameParseError,
    MissingCredentials,
    TransportError,
    UnresolvableMarket,
    UnresolvedEndpoint,
    WebsocketClientError,
)
from .ws import ConnectionKey, ConnectionState, EventType, Market, WebsocketClient, WsEvent

__all__ = [
    "Settings",
    "WebsocketSettings",
    "WsCredentials",
    "load_settings",
    "AuthenticationError",
    "ClassificationError",
    "FrameParseError",
    "MissingCredentials",
    "TransportError",
    "UnresolvableMarket",
    "UnresolvedEndpoint",
    "WebsocketClientError",
    "ConnectionKey",
    "ConnectionState",
    "EventType",
    "Market",
    "WebsocketClient",
    "WsEvent",
]
