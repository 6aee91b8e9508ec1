from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, SecretStr, model_validator


class ProxySettings(BaseModel):
    enabled: bool = False
    url: str | None = None
    username: str | None = None
    password: SecretStr | None = None

    model_config = {"extra": "forbid"}

    @property
    def proxy_url(self) -> str | None:
        if not self.enabled or not self.url:
            return None
        if self.username and self.password:
            protocol, _, rest = self.url.partition("://") if "://" in self.url else ("http", "", self.url)
            return f"{protocol}://{self.username}:{self.password.get_secret_value()}@{rest}"
        return self.url


class StreamSettings(BaseModel):
    trades_limit: int = Field(default=1000, gt=0)
    orders_limit: int = Field(default=1000, gt=0)
    snapshot_buffer_limit: int = Field(default=100, ge=0)
    stream_queue_size: int = Field(default=100, gt=0)
    request_timeout: float | None = Field(default=None, gt=0)
    connect_timeout: float = Field(default=10.0, gt=0)
    ping_interval: float = Field(default=20.0, ge=0)
    keepalive_timeout: float = Field(default=60.0, gt=0)
    max_reconnect_attempts: int = Field(default=5, ge=1)
    reconnect_delay: float = Field(default=1.0, ge=0)
    max_reconnect_delay: float = Field(default=30.0, ge=0)
    sequence_policy: Literal["contiguous", "monotonic", "unsequenced"] | None = None

    model_config = {"extra": "forbid"}


class ExchangeCredentials(BaseModel):
    api_key: SecretStr
    api_secret: SecretStr | None = None
    passphrase: SecretStr | None = None

    model_config = {"extra": "forbid"}


class MarketSettings(BaseModel):
    symbol: str
    id: str
    type: str = "spot"
    settle: str | None = None
    price_precision: str | None = None
    amount_precision: str | None = None

    model_config = {"extra": "forbid"}


class ExchangeSettings(BaseModel):
    enabled: bool = True
    sandbox: bool = False
    ws_url: str | None = None
    credentials: ExchangeCredentials | None = None
    stream: StreamSettings = Field(default_factory=StreamSettings)
    markets: list[MarketSettings] = Field(default_factory=list)
    options: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}


class WatchSettings(BaseModel):
    exchange: str
    channel: Literal["order_book", "ticker", "trades", "balance", "orders"]
    symbol: str | None = None
    limit: int | None = Field(default=None, gt=0)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _symbol_required(self) -> "WatchSettings":
        if self.channel in {"order_book", "ticker", "trades"} and not self.symbol:
            raise ValueError(f"watch channel {self.channel} requires a symbol")
        return self


class Settings(BaseModel):
    env: str = "dev"
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    exchanges: dict[str, ExchangeSettings] = Field(default_factory=dict)
    watch: list[WatchSettings] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    def redacted(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        for exch in data.get("exchanges", {}).values():
            creds = exch.get("credentials")
            if isinstance(creds, dict):
                for field in ("api_key", "api_secret", "passphrase"):
                    if creds.get(field) is not None:
                        creds[field] = "***"
        proxy = data.get("proxy")
        if isinstance(proxy, dict) and proxy.get("password") is not None:
            proxy["password"] = "***"
        return data
