from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Residuals Back Office"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str
    payout_page_size: int = 1000

    # ─────────── AIRTABLE SYNC ───────────
    airtable_api_key: Optional[str] = None
    airtable_base_id: str = "appRygdwVIEtbUI1C"
    airtable_table_id: str = "tblWZlEw6pM9ytA1x"
    airtable_api_url: str = "https://api.airtable.com/v0"
    airtable_timeout_seconds: float = 30.0
    sync_batch_size: int = 10
    sync_batch_delay_ms: int = 220  # Airtable allows 5 req/s per base
    sync_page_size: int = 100

    # ─────────── BUSINESS RULES ───────────
    split_min_pct: float = 80.0
    split_max_pct: float = 105.0
    enforce_hold_on_confirm: bool = True
    cascade_max_attempts: int = 3

    # ─────────── HISTORY ───────────
    history_background: bool = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
