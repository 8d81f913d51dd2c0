import os
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, field_validator


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    PORT: int = 3000
    UPDATE_INTERVAL_MS: int = 10000
    SERVICE_COMMISSION: float = 0.0001
    BINANCE_API_URL: str = "https://api.binance.com"

    @field_validator("PORT")
    @classmethod
    def validate_port(cls, value: int) -> int:
        if value < 1 or value > 65535:
            raise ValueError("PORT must be between 1 and 65535")
        return value

    @field_validator("UPDATE_INTERVAL_MS")
    @classmethod
    def validate_update_interval(cls, value: int) -> int:
        if value < 1000:
            raise ValueError("UPDATE_INTERVAL_MS must be at least 1000ms")
        return value

    @field_validator("SERVICE_COMMISSION")
    @classmethod
    def validate_commission(cls, value: float) -> float:
        if not 0 <= value <= 1:
            raise ValueError("SERVICE_COMMISSION must be between 0 and 1")
        return value

    @field_validator("BINANCE_API_URL")
    @classmethod
    def validate_binance_api_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("BINANCE_API_URL is required")
        return value

    @property
    def update_interval_sec(self) -> float:
        return self.UPDATE_INTERVAL_MS / 1000.0

    @classmethod
    def from_env(cls) -> "Settings":
        raw = {
            "PORT": os.getenv("PORT"),
            "UPDATE_INTERVAL_MS": os.getenv("UPDATE_INTERVAL_MS"),
            "SERVICE_COMMISSION": os.getenv("SERVICE_COMMISSION"),
            "BINANCE_API_URL": os.getenv("BINANCE_API_URL"),
        }
        # unset means default; an explicitly empty value is still validated
        return cls.model_validate({k: v for k, v in raw.items() if v is not None})


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
