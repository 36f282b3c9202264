from functools import lru_cache
import json
import logging
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


def parse_list_setting(value: str) -> list[str]:
    if not value:
        return []

    parsed: list[str]
    raw = value.strip()
    if raw.startswith("["):
        try:
            items = json.loads(raw)
            parsed = [str(item).strip() for item in items if str(item).strip()]
        except (TypeError, ValueError):
            parsed = []
    else:
        parsed = [item.strip() for item in raw.split(",") if item.strip()]

    # Preserve order and remove duplicates.
    return list(dict.fromkeys(parsed))


def parse_cors_origins(value: str) -> list[str]:
    return parse_list_setting(value)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    app_name: str = "Paybridge"
    environment: str = "development"
    api_v1_prefix: str = "/api/v1"

    # Database
    database_url: str
    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_timeout: int = 15
    db_pool_recycle: int = 1200
    db_pool_pre_ping: bool = True

    # Click merchant credentials (all required, the service refuses to start without them)
    click_secret: str
    click_service_id: str
    click_merchant_id: str
    click_merchant_user_id: str

    # Click API. Base URLs are tried in order; Click has moved endpoints before.
    click_api_base_urls: str = "https://api.click.uz/v2/merchant"
    click_timeout_seconds: int = 30
    click_retry_count: int = 2
    click_retry_backoff_seconds: float = 1.0
    click_test_mode: bool = False

    # Bot-facing endpoints. When set, callers must send X-Internal-Key.
    internal_api_key: Optional[str] = None

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"
    auto_create_tables: bool = False

    @field_validator(
        "click_secret",
        "click_service_id",
        "click_merchant_id",
        "click_merchant_user_id",
        "database_url",
    )
    @classmethod
    def _require_trimmed(cls, value: str, info) -> str:
        text = str(value or "")
        stripped = text.strip()
        if not stripped:
            raise ValueError(f"{info.field_name.upper()} must not be empty")
        if stripped != text:
            # A trailing newline in CLICK_SECRET silently breaks every auth digest.
            logger.warning("%s had surrounding whitespace; it was stripped.", info.field_name.upper())
        return stripped

    @property
    def click_base_urls(self) -> list[str]:
        return [url.rstrip("/") for url in parse_list_setting(self.click_api_base_urls)]


@lru_cache
def get_settings() -> Settings:
    return Settings()
