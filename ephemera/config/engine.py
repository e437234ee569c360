"""Container engine connection configuration."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class EngineConfig(BaseSettings):
    """Settings for reaching the container engine."""

    host_environment: Literal["auto", "local", "remote_vm"] = Field(default="auto")
    docker_host_address: str = Field(default="127.0.0.1")

    # Remote VM bootstrap
    vm_helper_binary: str = Field(default="/usr/local/bin/boot2docker")
    vm_docker_port: int = Field(default=2376, ge=1, le=65535)
    vm_cert_dir: str = Field(default="~/.boot2docker/certs/boot2docker-vm")
    vm_helper_timeout_seconds: int = Field(default=120, ge=1)

    class Config:
        env_prefix = ""
        extra = "ignore"
