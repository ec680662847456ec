"""RabbitMQ settings for the taskiq job broker.

If a full AMQP URI is provided, it's parsed to populate the component fields.
"""

from __future__ import annotations

from urllib.parse import quote, unquote, urlparse

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RabbitSettings(BaseSettings):
    """RabbitMQ connection and queue settings.

    Environment variables use RABBIT_ prefix.
    """

    enabled: bool = Field(default=False, description="Enable RabbitMQ-backed job queue.")
    amqp_uri: str | None = Field(
        default=None,
        alias="AMQP_URI",
        description="Optional full AMQP URI; overrides host/port/user/pass/vhost.",
    )
    host: str = Field(default="localhost", min_length=1, max_length=255)
    port: int = Field(default=5672, ge=1, le=65535)
    username: str = Field(default="guest", min_length=1, max_length=100)
    password: SecretStr = Field(default=SecretStr("guest"))
    vhost: str = Field(default="/")
    queue_prefix: str = Field(
        default="delivery",
        min_length=1,
        max_length=50,
        description="Prefix applied to all queue names.",
    )

    model_config = SettingsConfigDict(
        env_prefix="RABBIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def _apply_uri(self) -> RabbitSettings:
        """Parse amqp_uri into component fields if provided."""
        if not self.amqp_uri:
            return self
        parsed = urlparse(self.amqp_uri)
        if parsed.hostname:
            object.__setattr__(self, "host", parsed.hostname)
        if parsed.port:
            object.__setattr__(self, "port", parsed.port)
        if parsed.username:
            object.__setattr__(self, "username", unquote(parsed.username))
        if parsed.password:
            object.__setattr__(self, "password", SecretStr(unquote(parsed.password)))
        if parsed.path and parsed.path != "/":
            object.__setattr__(self, "vhost", unquote(parsed.path.lstrip("/")))
        return self

    @property
    def url(self) -> str:
        """AMQP URI built from component fields."""
        vhost = quote(self.vhost, safe="") if self.vhost != "/" else ""
        password = quote(self.password.get_secret_value(), safe="")
        return f"amqp://{quote(self.username, safe='')}:{password}@{self.host}:{self.port}/{vhost}"

    @property
    def is_configured(self) -> bool:
        """Check if RabbitMQ is enabled and has valid connection info."""
        return self.enabled and bool(self.host)

    def get_prefixed_queue(self, queue_name: str) -> str:
        """Get queue name with prefix."""
        return f"{self.queue_prefix}.{queue_name}"


__all__ = ["RabbitSettings"]
