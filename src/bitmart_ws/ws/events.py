"""Classification of inbound frames into events for listeners."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import FrameParseError
from .keys import ConnectionKey

logger = logging.getLogger(__name__)

RESPONSE_EVENTS = frozenset({"subscribe", "unsubscribe"})


class EventType(str, Enum):
    OPEN = "open"
    RECONNECT = "reconnect"
    RECONNECTED = "reconnected"
    AUTHENTICATED = "authenticated"
    CLOSE = "close"
    RESPONSE = "response"
    UPDATE = "update"
    EXCEPTION = "exception"


@dataclass(slots=True)
class WsEvent:
    type: EventType
    ws_key: ConnectionKey | None
    data: Any = field(default=None)


def parse_frame(raw: str | bytes) -> Any:
    """Decode a raw text frame.

    Raises:
        FrameParseError: If the frame is not valid JSON
    """
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise FrameParseError(f"Failed to parse event data: {exc}", raw) from exc


def exception_event(ws_key: ConnectionKey | None, exc: BaseException, raw: Any) -> WsEvent:
    return WsEvent(
        EventType.EXCEPTION,
        ws_key,
        {
            "message": "Failed to parse event data due to exception",
            "exception": exc,
            "event_data": raw,
        },
    )


def classify_frame(parsed: Any, ws_key: ConnectionKey | None = None) -> WsEvent:
    """Classify an already-decoded frame as a response or an update."""
    event_name = parsed.get("event") if isinstance(parsed, dict) else None
    if isinstance(event_name, str):
        if event_name in RESPONSE_EVENTS:
            return WsEvent(EventType.RESPONSE, ws_key, parsed)
        logger.error('Unhandled string event type "%s", defaulting to "update": %s', event_name, parsed)

    return WsEvent(EventType.UPDATE, ws_key, parsed)


def resolve_event(raw: str | bytes, ws_key: ConnectionKey | None = None) -> list[WsEvent]:
    """Turn one raw frame into the events it should emit.

    Never raises: anything that goes wrong becomes an ``exception`` event
    carrying the original payload.
    """
    try:
        parsed = parse_frame(raw)
        return [classify_frame(parsed, ws_key)]
    except Exception as exc:
        logger.error("Failed to parse event data due to exception: %s (data=%r)", exc, raw)
        return [exception_event(ws_key, exc, raw)]


def is_pong(raw: str | bytes, parsed: Any = None) -> bool:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if raw.strip() == "pong":
        return True
    return isinstance(parsed, dict) and parsed.get("data") == "pong"


def auth_result(parsed: Any) -> tuple[bool, str | None] | None:
    """Inspect a frame for an auth acknowledgement.

    Returns:
        None if the frame is unrelated to auth, otherwise ``(success, error)``
    """
    if not isinstance(parsed, dict):
        return None

    if parsed.get("event") == "login":
        error = parsed.get("errorMessage") or parsed.get("errorCode")
        return (error is None, str(error) if error is not None else None)

    if parsed.get("action") == "access":
        if parsed.get("success") is True:
            return (True, None)
        return (False, str(parsed.get("error") or "access denied"))

    return None


def subscription_ack_topics(parsed: Any) -> tuple[str, list[str]] | None:
    """Extract ``(operation, topics)`` from a subscribe/unsubscribe ack.

    Spot acks carry ``event`` plus ``topic``; futures acks carry ``action``
    plus ``group``. Failed futures acks are not treated as acks.
    """
    if not isinstance(parsed, dict):
        return None

    operation = parsed.get("event")
    if operation not in RESPONSE_EVENTS:
        operation = parsed.get("action")
        if operation not in RESPONSE_EVENTS:
            return None
        if parsed.get("success") is False:
            return None

    if parsed.get("errorCode") or parsed.get("errorMessage"):
        return None

    topics: list[str] = []
    for name in ("topic", "group", "topics", "args"):
        value = parsed.get(name)
        if isinstance(value, str):
            topics.append(value)
        elif isinstance(value, list):
            topics.extend(item for item in value if isinstance(item, str))

    return operation, topics
