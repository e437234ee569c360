"""Host environment resolution and Docker client construction.

The engine is reached either locally (socket or DOCKER_HOST from the
environment) or through a helper-managed VM over TLS. Each variant is a
function from settings to a HostEnvironmentConfig; helper processes are
only ever spawned from resolve_remote_vm().
"""

import platform
import subprocess
from pathlib import Path
from typing import Callable, Optional

import docker
import structlog
from docker.errors import DockerException
from docker.tls import TLSConfig
from docker.utils import kwargs_from_env

from ...config import EngineConfig
from ...models.container import HostEnvironmentConfig, HostEnvironmentKind
from ...models.errors import HostEnvironmentError

logger = structlog.get_logger(__name__)

CA_CERT_FILE = "ca.pem"
CLIENT_CERT_FILE = "cert.pem"
CLIENT_KEY_FILE = "key.pem"


def resolve_local(config: EngineConfig) -> HostEnvironmentConfig:
    """Engine on this machine, configured by the process environment."""
    kwargs = kwargs_from_env()
    return HostEnvironmentConfig(
        kind=HostEnvironmentKind.LOCAL,
        host_address=config.docker_host_address,
        base_url=kwargs.get("base_url"),
        tls_verify="tls" in kwargs,
    )


def _run_helper(
    config: EngineConfig, command: str, run: Callable[..., subprocess.CompletedProcess]
) -> str:
    result = run(
        [config.vm_helper_binary, command],
        check=True,
        capture_output=True,
        text=True,
        timeout=config.vm_helper_timeout_seconds,
    )
    return (result.stdout or "").strip()


def resolve_remote_vm(
    config: EngineConfig,
    run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> HostEnvironmentConfig:
    """Engine inside a helper VM, reached over TLS.

    Brings the VM up, asks it for its address and points at the
    certificate bundle under the user's home directory.
    """
    _run_helper(config, "up", run)
    address = _run_helper(config, "ip", run)
    if not address:
        raise HostEnvironmentError(
            "VM helper returned no address",
            details={"helper": config.vm_helper_binary},
        )

    cert_path = Path(config.vm_cert_dir).expanduser()
    logger.info("Using VM container engine", address=address, cert_path=str(cert_path))
    return HostEnvironmentConfig(
        kind=HostEnvironmentKind.REMOTE_VM,
        host_address=address,
        base_url=f"https://{address}:{config.vm_docker_port}",
        cert_path=cert_path,
        tls_verify=True,
    )


def resolve_host_environment(
    config: EngineConfig,
    system: Callable[[], str] = platform.system,
    run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> HostEnvironmentConfig:
    """Pick and resolve the host environment variant.

    Args:
        config: Engine settings
        system: Returns the OS name, used when host_environment is "auto"
        run: Subprocess runner for the VM helper

    Returns:
        Resolved HostEnvironmentConfig

    Raises:
        HostEnvironmentError: If resolution fails for any reason
    """
    kind = config.host_environment
    if kind == "auto":
        kind = "remote_vm" if system() == "Darwin" else "local"

    try:
        if kind == "remote_vm":
            return resolve_remote_vm(config, run=run)
        return resolve_local(config)
    except HostEnvironmentError:
        raise
    except (OSError, subprocess.SubprocessError, DockerException) as e:
        logger.error("Host environment resolution failed", variant=kind, error=str(e))
        raise HostEnvironmentError(
            f"Could not resolve {kind} container engine: {e}",
            details={"variant": kind},
        ) from e


class DockerClientFactory:
    """Builds low-level Docker API clients for a resolved host environment."""

    def __init__(self, timeout: Optional[int] = None):
        self._timeout = timeout

    def create(self, env: HostEnvironmentConfig) -> docker.APIClient:
        kwargs = {"version": "auto"}
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout

        if env.kind == HostEnvironmentKind.REMOTE_VM:
            cert_path = env.cert_path
            tls = TLSConfig(
                client_cert=(
                    str(cert_path / CLIENT_CERT_FILE),
                    str(cert_path / CLIENT_KEY_FILE),
                ),
                ca_cert=str(cert_path / CA_CERT_FILE),
                verify=env.tls_verify,
            )
            return docker.APIClient(base_url=env.base_url, tls=tls, **kwargs)

        kwargs.update(kwargs_from_env())
        return docker.APIClient(**kwargs)
