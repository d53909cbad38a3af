from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChimeSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="graph_chime_",
        extra="ignore",
        env_file=".env",
    )

    # Token endpoint (refresh-token exchange)
    login_base_url: str = "https://login.microsoftonline.com"
    retry_attempts: int = 3
    client_request_id: str = ""
    client_id: str = ""
    redirect_uri: str = ""
    scope: str = ""
    grant_type: str = "refresh_token"
    client_info: str = ""
    x_client_sku: str = ""
    x_client_ver: str = ""
    x_ms_lib_capability: str = ""
    x_client_current_telemetry: str = ""
    x_client_last_telemetry: str = ""
    refresh_token: str = ""  # bootstrap token, superseded by the first exchange
    claims: str = ""
    x_anchor_mailbox: str = ""
    origin: str = ""

    # Microsoft Graph
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    http_timeout_seconds: float = 30.0

    # Polling
    polling_interval_minutes: float = 1.0
    lookback_minutes: int = 5
    message_page_size: int = 20
    enable_event_check: bool = True

    # Notification sound
    notification_sound_file_path: str = "notification.wav"

    # Logging
    log_dir: Path = Path("logs")
    log_level: str = "INFO"

    # Read-only admin API
    enable_admin_api: bool = False
    admin_host: str = "127.0.0.1"
    admin_port: int = 8788

    lock_path: Path = Field(default_factory=lambda: Path.home() / ".graph-chime" / "daemon.lock")

    @field_validator("polling_interval_minutes")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("polling_interval_minutes must be greater than zero")
        return value

    @field_validator("message_page_size")
    @classmethod
    def _page_size_in_range(cls, value: int) -> int:
        # Graph caps $top for chat messages at 50.
        if not 1 <= value <= 50:
            raise ValueError("message_page_size must be between 1 and 50")
        return value

    @field_validator("retry_attempts", "lookback_minutes")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("value must not be negative")
        return value

    @field_validator("login_base_url", "graph_base_url", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            level = value.strip().upper() or "INFO"
            if level not in logging.getLevelNamesMapping():
                raise ValueError(f"log_level must be a logging level name, got {value!r}")
            return level
        return value

    @property
    def polling_interval_seconds(self) -> float:
        return self.polling_interval_minutes * 60.0

    def token_form_fields(self, refresh_token: str) -> dict[str, str]:
        """Form body for the refresh-token exchange, in the order the endpoint expects."""
        return {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "grant_type": self.grant_type,
            "client_info": self.client_info,
            "x-client-SKU": self.x_client_sku,
            "x-client-VER": self.x_client_ver,
            "x-ms-lib-capability": self.x_ms_lib_capability,
            "x-client-current-telemetry": self.x_client_current_telemetry,
            "x-client-last-telemetry": self.x_client_last_telemetry,
            "refresh_token": refresh_token,
            "claims": self.claims,
            "X-AnchorMailbox": self.x_anchor_mailbox,
        }
