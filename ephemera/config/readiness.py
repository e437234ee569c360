"""Readiness probe configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class ReadinessConfig(BaseSettings):
    """Polling policy used while waiting for a container port to listen."""

    readiness_poll_interval_ms: int = Field(default=100, ge=1)
    readiness_max_attempts: int = Field(default=6000, ge=1)
    readiness_connect_timeout_seconds: float = Field(default=1.0, gt=0)

    def get_poll_interval_seconds(self) -> float:
        """Get the poll interval in seconds."""
        return self.readiness_poll_interval_ms / 1000.0

    class Config:
        env_prefix = ""
        extra = "ignore"
