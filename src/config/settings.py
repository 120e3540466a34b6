"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

InboundCallPolicy = Literal["manual", "auto_pre_accept", "auto_accept"]


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # WhatsApp Business Calling (Graph API)
    whatsapp_access_token: str | None = Field(default=None)
    whatsapp_phone_number_id: str | None = Field(default=None)
    whatsapp_graph_url: str = Field(default="https://graph.facebook.com")
    whatsapp_api_version: str = Field(default="v21.0")
    whatsapp_request_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Per-request timeout (seconds) for Graph API calls. Requests are never retried.",
    )
    whatsapp_app_secret: str | None = Field(
        default=None,
        description="App secret used to check X-Hub-Signature-256 on webhook deliveries.",
    )

    # Webhook subscription handshake
    webhook_verify_token: str | None = Field(
        default=None,
        description="Token the platform echoes in hub.verify_token during subscription.",
    )

    # Inbound call handling
    inbound_call_policy: InboundCallPolicy = Field(
        default="manual",
        description=(
            "manual: wait for a client accept. auto_pre_accept/auto_accept: ask the "
            "answer endpoint for an SDP answer and drive the platform without a client."
        ),
    )
    answer_endpoint: str | None = Field(
        default=None,
        description="Media gateway URL that turns an SDP offer into an SDP answer.",
    )
    answer_endpoint_api_key: str | None = Field(default=None)
    answer_timeout: float = Field(default=15.0, gt=0)

    # Real-time subscribers
    subscriber_queue_size: int = Field(default=100, ge=1)
    subscriber_send_timeout: float = Field(default=5.0, gt=0)

    # Session bookkeeping
    session_ttl_seconds: int = Field(default=3600, ge=1)
    session_sweep_interval_seconds: int = Field(
        default=60,
        ge=0,
        description="How often idle sessions are expired. 0 disables the sweeper.",
    )
    terminated_history_size: int = Field(default=1000, ge=0)

    permission_request_text: str = Field(
        default="We would like to call you on WhatsApp. Do you allow calls from us?"
    )

    # OAuth code exchange (social login)
    oauth_client_id: str | None = Field(default=None)
    oauth_client_secret: str | None = Field(default=None)
    oauth_token_url: str = Field(default="https://graph.facebook.com/v21.0/oauth/access_token")
    oauth_redirect_uri: str | None = Field(default=None)

    # Call recordings
    recordings_max_bytes: int = Field(default=50 * 1024 * 1024, ge=1)

    data_dir: Path = Field(default=Path("./data"))

    @field_validator("data_dir")
    @classmethod
    def ensure_data_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
