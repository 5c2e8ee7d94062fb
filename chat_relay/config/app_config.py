import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

ENV_FILE_VARIABLE = "PASSWORD_FILE"


def load_env_file() -> str:
    """Load the env file named by ``PASSWORD_FILE`` into the environment.

    Falls back to ``.env``.  A missing file is not an error, and variables
    already set in the process environment win over the file.
    """
    path = os.getenv(ENV_FILE_VARIABLE, ".env")
    load_dotenv(path)
    return path


ENV_FILE = load_env_file()


class AppConfig(BaseSettings):
    """Application configuration settings."""

    # Environment
    app_env: str = Field("development")
    app_debug: bool = Field(False)
    app_host: str = Field("0.0.0.0")
    app_port: int = Field(8080)

    # Logging
    log_level: str = Field("INFO")
    log_file: Optional[str] = Field(None)

    # Conversation store
    memory_type: str = Field("in_memory")

    @field_validator("app_env")
    def validate_app_env(cls, value: str) -> str:
        if value not in ["development", "staging", "production"]:
            raise ValueError("APP_ENV must be development, staging, or production")
        return value

    @field_validator("memory_type")
    def validate_memory_type(cls, value: str) -> str:
        if value not in ["in_memory"]:
            raise ValueError("MEMORY_TYPE must be in_memory")
        return value

    @field_validator("log_level")
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("LOG_LEVEL must be a valid Loguru level")
        return level

    model_config = SettingsConfigDict(env_file=ENV_FILE, extra="ignore")


@lru_cache()
def get_app_config() -> AppConfig:
    """Return a cached application configuration instance."""

    return AppConfig()
