from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Meeting Access Proxy"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    zoom_admin_account_id: str = ""
    zoom_admin_client_id: str = ""
    zoom_admin_client_secret: str = ""
    zoom_oauth_token_url: str = "https://zoom.us/oauth/token"
    zoom_api_base_url: str = "https://api.zoom.us/v2"
    zoom_api_timeout_seconds: float = 10.0
    zoom_api_user_agent: str = "MeetingAccessProxy/1.0"
    zoom_token_refresh_margin_seconds: int = 300
    zoom_upstream_max_retries: int = 2
    zoom_webhook_secret_token: str = ""
    zoom_webhook_timestamp_tolerance_seconds: int = 300
    ledger_store: str = "mongodb"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "meeting_proxy"
    mongodb_participants_collection: str = "meeting_participants"
    mongodb_access_rules_collection: str = "access_rules"
    mongodb_connect_timeout_ms: int = 2000
    mongodb_use_transactions: bool = True
    proxy_request_timeout_seconds: float = 25.0
    list_meetings_default_days: int = 30
    list_meetings_default_limit: int = 50
    list_meetings_max_limit: int = 300
    retention_days: int = 365
    retention_job_token: str = ""
    backfill_requests_per_second: float = 8.0
    backfill_window_days: int = 29

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("ledger_store", mode="before")
    @classmethod
    def normalize_ledger_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("zoom_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_zoom_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value

    @field_validator("proxy_request_timeout_seconds", mode="before")
    @classmethod
    def normalize_proxy_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 25.0
        return parsed_value

    @field_validator("backfill_requests_per_second", mode="before")
    @classmethod
    def normalize_backfill_rate(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 8.0
        return parsed_value

    @field_validator("backfill_window_days", mode="before")
    @classmethod
    def normalize_backfill_window(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0 or parsed_value > 30:
            return 29
        return parsed_value

    @field_validator("retention_days", mode="before")
    @classmethod
    def normalize_retention_days(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 365
        return parsed_value

    @field_validator("zoom_upstream_max_retries", mode="before")
    @classmethod
    def normalize_upstream_retries(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value < 0:
            return 0
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
