from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator


class WsCredentials(BaseModel):
    api_key: SecretStr | None = None
    api_secret: SecretStr | None = None
    api_memo: SecretStr | None = None

    model_config = {"extra": "forbid", "frozen": True}

    def _values(self) -> tuple[str | None, str | None, str | None]:
        return tuple(
            secret.get_secret_value() if secret is not None else None
            for secret in (self.api_key, self.api_secret, self.api_memo)
        )  # type: ignore[return-value]

    def is_complete(self) -> bool:
        return all(self._values())

    def is_empty(self) -> bool:
        return not any(self._values())


class WebsocketSettings(BaseModel):
    recv_window_ms: int = Field(default=5000, gt=0)
    ws_url: str | None = None
    ws_urls: dict[str, str] = Field(default_factory=dict)
    ping_interval: float = Field(default=10.0, gt=0)
    pong_timeout: float = Field(default=5.0, gt=0)
    reconnect_delay: float = Field(default=0.5, ge=0)
    max_reconnect_delay: float = Field(default=30.0, gt=0)
    auth_timeout: float = Field(default=10.0, gt=0)
    max_topics_per_message: dict[str, int] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}

    @field_validator("ws_urls", "max_topics_per_message")
    @classmethod
    def _known_keys(cls, value: dict[str, Any]) -> dict[str, Any]:
        from .ws.keys import ConnectionKey

        known = {key.value for key in ConnectionKey}
        unknown = sorted(set(value) - known)
        if unknown:
            raise ValueError(
                f"Unknown connection key(s): {', '.join(unknown)}. Expected one of: {', '.join(sorted(known))}"
            )
        return value

    @field_validator("max_topics_per_message")
    @classmethod
    def _positive_bounds(cls, value: dict[str, int]) -> dict[str, int]:
        for key, bound in value.items():
            if bound <= 0:
                raise ValueError(f"max_topics_per_message[{key}] must be positive, got {bound}")
        return value


class Settings(BaseModel):
    env: str = "dev"
    credentials: WsCredentials = Field(default_factory=WsCredentials)
    websocket: WebsocketSettings = Field(default_factory=WebsocketSettings)

    model_config = {"extra": "forbid"}

    def redacted(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        creds = data.get("credentials")
        if isinstance(creds, dict):
            for field_name in ("api_key", "api_secret", "api_memo"):
                if creds.get(field_name) is not None:
                    creds[field_name] = "***"
        return data
