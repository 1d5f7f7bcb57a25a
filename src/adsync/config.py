from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./adsync.db"

    # Remote sync executor (edge function host)
    executor_base_url: str = ""
    executor_api_key: str = ""
    executor_function: str = "meta-ads-sync"
    default_date_preset: str = "last_90d"

    resync_pacing_seconds: float = 2.0  # between jobs in a batch
    dispatch_timeout_seconds: float = 300.0
    health_sweep_interval_minutes: int = 60

    telegram_bot_token: str = ""
    telegram_chat_id: Optional[int] = None
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
