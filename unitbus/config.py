"""
Settings for unitbus

Type-safe configuration using Pydantic with support for .env and environment
variables. Every field can be overridden with a UNITBUS_* variable:

    UNITBUS_BUS=user UNITBUS_POLL_INTERVAL=5 unitbus watch
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class UnitBusSettings(BaseSettings):
    """Connection, correlator and subscription settings"""
    model_config = SettingsConfigDict(
        env_prefix="UNITBUS_",
        env_file=".env",
        extra="ignore",
    )

    bus: str = Field("system", pattern="^(system|user)$", description="Bus to connect to")
    signal_buffer: int = Field(100, ge=1, description="Capacity of the notification queue")
    poll_interval: float = Field(1.0, gt=0, description="Default subscription interval in seconds")
    subscription_buffer: int = Field(1, ge=1, description="Default subscription queue capacity")
    job_timeout: Optional[float] = Field(None, gt=0, description="Default job wait timeout in seconds")

    log_level: str = "INFO"
    logs_dir: Optional[Path] = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def user_mode(self) -> bool:
        return self.bus == "user"


@lru_cache()
def get_settings() -> UnitBusSettings:
    """Get the cached settings instance"""
    return UnitBusSettings()
