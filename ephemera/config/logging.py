"""Logging configuration."""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class LoggingConfig(BaseSettings):
    """Logging settings."""

    log_level: str = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")
    log_file: Optional[str] = Field(default=None)

    class Config:
        env_prefix = ""
        extra = "ignore"
