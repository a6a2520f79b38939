"""
MedSim API Configuration

Runtime settings for the HTTP layer, read from MEDSIM_* environment
variables (or a .env file) with pydantic-settings.
"""

from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from constants import SIMULATION_CONSTANTS


class MedSimSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MEDSIM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    # Comma separated in the environment: MEDSIM_CORS_ORIGINS=http://a,http://b
    cors_origins: Annotated[List[str], NoDecode] = ["*"]
    host: str = "0.0.0.0"
    port: int = Field(8000, ge=1, le=65535)
    session_idle_ttl_seconds: Optional[float] = Field(
        SIMULATION_CONSTANTS.SESSION_IDLE_TTL_SECONDS, gt=0
    )

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache()
def get_settings() -> MedSimSettings:
    """Cached settings instance."""
    return MedSimSettings()
