from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "AllocatrX"
    app_version: str = "1.0.0"
    debug: bool = True
    host: str = "127.0.0.1"
    port: int = 8000
    database_url: str = "sqlite:///./allocatrx.db"
    redis_url: str = "redis://localhost:6379/0"
    cache_enabled: bool = True
    cache_ttl_seconds: int = 3600

    default_client_priority: int = Field(3, ge=1, le=5)
    default_client_priority_weight: float = 50.0
    default_work_life_balance_weight: float = 50.0
    default_cost_efficiency_weight: float = 50.0
    cost_model: str = Field("placeholder", pattern="^(placeholder|hourly_rate)$")

    text_generation_url: str = "https://api-inference.huggingface.co/models/mistralai/Mistral-7B-Instruct-v0.2"
    huggingface_api_key: Optional[str] = None
    text_generation_timeout_seconds: float = 30.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
