# creditbook/core/config.py
"""
Application settings loaded from the environment (and .env via python-dotenv).
"""
import os
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = os.path.join(os.path.dirname(__file__), "..", "..", "data")
DEFAULT_DATABASE_FILE = os.path.join(DATA_DIR, "db", "creditbook.sqlite")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "development"
    database_url: str | None = None
    store_timeout_seconds: float = 10.0

    payment_page_size: int = 15
    payment_alert_window_days: int = 7
    payment_rate_limit: str = "30/minute"

    allowed_origins: str = "http://localhost:8000"
    allowed_hosts: str = "localhost,127.0.0.1,testserver"

    log_level: str = "INFO"
    audit_log_dir: str = "logs"

    def resolved_database_url(self) -> str:
        """DATABASE_URL if set, otherwise the SQLite file under data/db/."""
        if self.database_url:
            return self.database_url
        os.makedirs(os.path.dirname(DEFAULT_DATABASE_FILE), exist_ok=True)
        return f"sqlite:///{DEFAULT_DATABASE_FILE}"

    @property
    def origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def hosts(self) -> list[str]:
        return [h.strip() for h in self.allowed_hosts.split(",") if h.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
