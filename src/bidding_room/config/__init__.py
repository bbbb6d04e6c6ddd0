from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database import DatabaseSettings
from .negotiation import NegotiationSettings
from .server import ServerSettings


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        env_prefix="BIDDING_",
        extra="ignore",
    )

    negotiation: NegotiationSettings = Field(default_factory=NegotiationSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    @model_validator(mode="after")
    def validate_urgency_bands(self) -> "Settings":
        """The critical band must sit inside the warning band."""
        if self.negotiation.critical_hours > self.negotiation.warning_hours:
            raise ValueError("critical_hours cannot exceed warning_hours")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = [
    "DatabaseSettings",
    "NegotiationSettings",
    "ServerSettings",
    "Settings",
    "get_settings",
]
