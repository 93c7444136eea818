import sys
from loguru import logger
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Any, List

# Configured level name -> loguru level
LOG_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "error": "ERROR",
}
SERVER_MODES = ("debug", "release", "test")


class ConfigurationError(ValueError):
    """Raised with every configuration problem found, not just the first"""

    def __init__(self, errors: List[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class Settings(BaseSettings):
    port: int = Field(8080, ge=1, le=65535)
    log_level: str = "info"
    server_mode: str = "release"
    api_host: str = "0.0.0.0"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, value: str) -> str:
        if value not in LOG_LEVELS:
            raise ValueError(f"must be one of: {', '.join(LOG_LEVELS)}")
        return value

    @field_validator("server_mode")
    @classmethod
    def check_server_mode(cls, value: str) -> str:
        if value not in SERVER_MODES:
            raise ValueError(f"must be one of: {', '.join(SERVER_MODES)}")
        return value


def load_settings(**overrides) -> Settings:
    """Read settings from the environment (and .env), reporting all errors together"""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(loc) for loc in error['loc']).upper()}: {error['msg']}"
            for error in e.errors()
        ]
        raise ConfigurationError(errors) from e


def setup_logging(level: str = "info", serialize: bool = False, sink: Any = None) -> None:
    """Configure loguru with a single sink (stderr unless given)"""
    logger.remove()
    logger.add(
        sys.stderr if sink is None else sink,
        level=LOG_LEVELS[level],
        serialize=serialize,
    )
