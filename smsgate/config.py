from __future__ import annotations
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SMSGATE_", env_file=".env", extra="ignore", frozen=True)

    # Provider
    provider: str = Field(default="signal", description="Messaging backend: signal|console")
    phone: str = Field(default="", description="Outbound phone number in international format (+{countrycode}{number}).")
    register_account: bool = Field(default=False, description="Register the number and wait for a verification code.")
    storage_dir: str = Field(default="./.signal", description="Local directory for provider state.")
    signal_api_url: str = Field(default="http://127.0.0.1:8081", description="Base URL of the signal-cli REST daemon.")
    receive_interval_s: float = Field(default=1.0)

    # Network
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    send_path: str = Field(default="/signal")
    health_path: str = Field(default="/healthz")
    metrics_path: str = Field(default="/metrics")
    shutdown_grace_s: float = Field(default=5.0, description="Upper bound on the HTTP drain at shutdown.")

    # Webhook
    webhook_url: str = Field(default="", description="Inbound messages are POSTed here; empty disables forwarding.")
    webhook_timeout_s: float = Field(default=30.0)

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True)

    @field_validator("phone")
    @classmethod
    def _phone_format(cls, v: str) -> str:
        v = v.strip()
        if v and not v.startswith("+"):
            raise ValueError("phone number must be in international format +{countrycode}{number}")
        return v

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("signal", "console"):
            raise ValueError(f"unknown provider {v!r} (expected signal|console)")
        return v

def load_settings(**overrides) -> Settings:
    # CLI flags win over environment; unset flags arrive as None and are dropped.
    return Settings(**{k: v for k, v in overrides.items() if v is not None})
