"""Signatures and auth frames for private connections."""

from __future__ import annotations

import base64
import hashlib
import hmac
import inspect
import json
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from ..errors import MissingCredentials
from ..settings import WsCredentials
from .topics import Market

SignMessageFn = Callable[[str, str], Union[str, Awaitable[str]]]

AUTH_PATH = "/user/verify"


@dataclass(frozen=True, slots=True)
class Signature:
    expires_at: int
    signature: str


def hmac_sha256_base64(message: str, secret: str) -> str:
    """Default signer: base64-encoded HMAC-SHA256 of ``message``."""
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def now_millis() -> float:
    return time.time() * 1000


def auth_message(expires_at: int) -> str:
    return f"{expires_at}GET{AUTH_PATH}"


async def sign(
    credentials: WsCredentials,
    now_ms: float,
    recv_window_ms: int,
    *,
    sign_message: SignMessageFn | None = None,
) -> Signature:
    """Derive a fresh signature for one authentication attempt.

    Args:
        credentials: API key, secret and memo
        now_ms: Current time in milliseconds
        recv_window_ms: How long the signature stays valid
        sign_message: Optional replacement for the built-in HMAC signer; may
            return a string or an awaitable resolving to one

    Raises:
        MissingCredentials: If any of key, secret or memo is absent
    """
    if not credentials.is_complete():
        raise MissingCredentials("Cannot auth - missing api key, secret or memo in config")

    expires_at = int((now_ms + recv_window_ms) // 1000)
    message = auth_message(expires_at)
    secret = credentials.api_secret.get_secret_value()  # type: ignore[union-attr]

    signer = sign_message or hmac_sha256_base64
    signature = signer(message, secret)
    if inspect.isawaitable(signature):
        signature = await signature

    return Signature(expires_at=expires_at, signature=signature)


def build_auth_frame(market: Market, api_key: str, signature: Signature) -> str:
    """Serialize the login frame sent once after a private socket opens."""
    if market is Market.SPOT:
        payload = {"op": "login", "args": [api_key, str(signature.expires_at), signature.signature]}
    else:
        payload = {
            "action": "access",
            "args": [api_key, str(signature.expires_at), signature.signature, "web"],
        }
    return json.dumps(payload)
