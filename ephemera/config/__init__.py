"""Configuration management for ephemera.

This module provides a Settings class with flat, environment-driven fields
and grouped read-only views for the engine, readiness and logging concerns.

Usage:
    from ephemera.config import settings

    # Access grouped settings
    settings.engine.vm_helper_binary
    settings.readiness.get_poll_interval_seconds()

    # Or use flat access
    settings.docker_image_tag
    settings.readiness_max_attempts
"""

from typing import Literal, Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .engine import EngineConfig
from .logging import LoggingConfig
from .readiness import ReadinessConfig


DEFAULT_IMAGE_TAG = "latest"


def check_image_tag(tag: str) -> str:
    """Reject tags that carry a repository separator."""
    if "/" in tag or ":" in tag:
        raise ValueError(f"Image tag must be a bare tag, e.g. 'latest', not {tag!r}")
    return tag


class Settings(BaseSettings):
    """Library settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Image
    docker_image_tag: str = Field(default=DEFAULT_IMAGE_TAG, min_length=1)

    # Host environment
    host_environment: Literal["auto", "local", "remote_vm"] = Field(default="auto")
    docker_host_address: str = Field(
        default="127.0.0.1",
        description="Address used for readiness checks when the engine is local",
    )
    vm_helper_binary: str = Field(
        default="/usr/local/bin/boot2docker",
        description="Helper used to bring the engine VM up and query its address",
    )
    vm_docker_port: int = Field(default=2376, ge=1, le=65535)
    vm_cert_dir: str = Field(
        default="~/.boot2docker/certs/boot2docker-vm",
        description="Directory holding ca.pem, cert.pem and key.pem for the VM engine",
    )
    vm_helper_timeout_seconds: int = Field(default=120, ge=1)

    # Readiness probe
    readiness_poll_interval_ms: int = Field(default=100, ge=1)
    readiness_max_attempts: int = Field(
        default=6000,
        ge=1,
        description="Connection attempts before giving up (6000 x 100ms = 10 minutes)",
    )
    readiness_connect_timeout_seconds: float = Field(default=1.0, gt=0)

    # Lifecycle
    unexpected_exit_policy: Literal["report", "interrupt"] = Field(
        default="report",
        description=(
            "report: log, record and publish the fault; "
            "interrupt: additionally interrupt the main thread"
        ),
    )
    register_shutdown_guard: bool = Field(default=True)
    volume_dir_prefix: str = Field(default=".tmp-volume-", min_length=1)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")
    log_file: Optional[str] = Field(default=None)

    @validator("docker_image_tag")
    def validate_image_tag(cls, v):
        return check_image_tag(v)

    @validator("log_level")
    def normalize_log_level(cls, v):
        """Upper-case the log level name."""
        return v.upper()

    @property
    def engine(self) -> EngineConfig:
        """Access engine connection configuration group."""
        return EngineConfig(
            host_environment=self.host_environment,
            docker_host_address=self.docker_host_address,
            vm_helper_binary=self.vm_helper_binary,
            vm_docker_port=self.vm_docker_port,
            vm_cert_dir=self.vm_cert_dir,
            vm_helper_timeout_seconds=self.vm_helper_timeout_seconds,
        )

    @property
    def readiness(self) -> ReadinessConfig:
        """Access readiness probe configuration group."""
        return ReadinessConfig(
            readiness_poll_interval_ms=self.readiness_poll_interval_ms,
            readiness_max_attempts=self.readiness_max_attempts,
            readiness_connect_timeout_seconds=self.readiness_connect_timeout_seconds,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(
            log_level=self.log_level,
            log_format=self.log_format,
            log_file=self.log_file,
        )


# Global settings instance
settings = Settings()

__all__ = [
    "DEFAULT_IMAGE_TAG",
    "check_image_tag",
    "Settings",
    "settings",
    "EngineConfig",
    "LoggingConfig",
    "ReadinessConfig",
]
