"""Websocket multiplexing, subscription management and event routing."""

from .auth import Signature, build_auth_frame, hmac_sha256_base64, sign
from .client import WebsocketClient
from .connection import ConnectionState, WsConnection
from .events import EventType, WsEvent, resolve_event
from .keys import ConnectionKey, key_for_topic, resolve_key, url_for
from .registry import SubscriptionRegistry, build_requests, serialize_requests
from .topics import Market, classify_market, is_private_channel
from .transport import AiohttpTransport, Transport, TransportFactory

__all__ = [
    "AiohttpTransport",
    "ConnectionKey",
    "ConnectionState",
    "EventType",
    "Market",
    "Signature",
    "SubscriptionRegistry",
    "Transport",
    "TransportFactory",
    "WebsocketClient",
    "WsConnection",
    "WsEvent",
    "build_auth_frame",
    "build_requests",
    "classify_market",
    "hmac_sha256_base64",
    "is_private_channel",
    "key_for_topic",
    "resolve_event",
    "resolve_key",
    "serialize_requests",
    "sign",
    "url_for",
]
