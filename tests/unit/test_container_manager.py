"""Unit tests for ContainerManager lifecycle orchestration."""

import threading
from unittest.mock import MagicMock, patch

import pytest
from docker.errors import APIError, DockerException, NotFound

from ephemera.config import Settings
from ephemera.core.events import (
    ContainerExitedUnexpectedly,
    ContainerStarted,
    ContainerStopped,
    ImagePulled,
)
from ephemera.models.container import LifecycleState
from ephemera.models.errors import (
    ContainerLaunchError,
    ContainerStateError,
    HostEnvironmentError,
    ImageNotFoundError,
    ReadinessTimeoutError,
    UnexpectedContainerExitError,
)
from ephemera.services.container.client import DockerClientFactory
from ephemera.services.container.interfaces import GenericContainer
from ephemera.services.container.manager import ContainerManager
from ephemera.services.container.utils import ReadinessProber


@pytest.fixture
def container_exit(mock_docker_client):
    """Make wait() block until kill() is called, like a real engine."""
    exited = threading.Event()

    def wait(container_id):
        exited.wait(timeout=10)
        return {"StatusCode": 137}

    mock_docker_client.wait.side_effect = wait
    mock_docker_client.kill.side_effect = lambda container_id: exited.set()
    return exited


@pytest.fixture
def recorded_events(event_bus):
    """Collect every lifecycle event published on the test bus."""
    events = []
    for event_type in (ImagePulled, ContainerStarted, ContainerStopped, ContainerExitedUnexpectedly):
        event_bus.register_handler(event_type, events.append)
    return events


@pytest.fixture
def manager_factory(mock_docker_client, event_bus, test_settings, fast_prober, local_environment):
    """Build ContainerManager instances wired to the mocked engine."""

    def factory(definition=None, **kwargs):
        client_factory = MagicMock(spec=DockerClientFactory)
        client_factory.create.return_value = mock_docker_client
        kwargs.setdefault("prober", fast_prober)
        kwargs.setdefault("config", test_settings)
        kwargs.setdefault("resolve_environment", lambda config: local_environment)
        return ContainerManager(
            definition or GenericContainer("redis", liveness_port=6379),
            client_factory=client_factory,
            event_bus=event_bus,
            **kwargs,
        )

    return factory


def _join_watcher(manager):
    if manager._watcher is not None:
        manager._watcher.join(timeout=5)


class TestStart:
    """Test the start sequence."""

    def test_start_success(self, manager_factory, mock_docker_client, container_exit, recorded_events, fast_prober):
        manager = manager_factory()

        result = manager.start()

        assert result is manager
        assert manager.state == LifecycleState.RUNNING
        assert manager.container_id == "0123456789abcdef0123456789abcdef"
        assert manager.container_name == "test-container"
        assert manager.host_address == "127.0.0.1"
        assert manager.get_mapped_port(6379) == 32768
        mock_docker_client.images.assert_called_once_with(name="redis")
        mock_docker_client.pull.assert_called_once()
        mock_docker_client.create_container.assert_called_once()
        mock_docker_client.start.assert_called_once_with(manager.container_id)
        fast_prober._connect.assert_called_once_with(("127.0.0.1", 32768), timeout=1.0)
        assert [type(e) for e in recorded_events] == [ImagePulled, ContainerStarted]

        manager.stop()

    def test_present_image_skips_pull(self, manager_factory, mock_docker_client, container_exit):
        mock_docker_client.images.return_value = [{"RepoTags": ["redis:latest"]}]
        manager = manager_factory()

        manager.start()

        mock_docker_client.pull.assert_not_called()
        manager.stop()

    def test_start_twice_is_rejected(self, manager_factory, container_exit):
        manager = manager_factory()
        manager.start()

        with pytest.raises(ContainerStateError):
            manager.start()

        manager.stop()

    def test_start_after_stop_is_rejected(self, manager_factory, mock_docker_client):
        manager = manager_factory()
        manager.stop()

        with pytest.raises(ContainerStateError):
            manager.start()
        mock_docker_client.create_container.assert_not_called()

    def test_tag_applies_to_untagged_image(self, manager_factory, container_exit, mock_docker_client):
        manager = manager_factory(tag="7.2")

        manager.start()

        assert str(manager.handle.image) == "redis:7.2"
        assert mock_docker_client.create_container.call_args.kwargs["image"] == "redis:7.2"
        manager.stop()

    def test_explicit_tag_in_image_wins(self, manager_factory):
        manager = manager_factory(GenericContainer("redis:6", liveness_port=6379), tag="7.2")

        assert str(manager.handle.image) == "redis:6"

    def test_set_tag(self, manager_factory, container_exit):
        manager = manager_factory()

        manager.set_tag("alpine")
        assert str(manager.handle.image) == "redis:alpine"
        manager.set_tag(None)
        assert str(manager.handle.image) == "redis:latest"

        manager.start()
        with pytest.raises(ContainerStateError):
            manager.set_tag("6")
        manager.stop()

    @pytest.mark.parametrize("tag", ["redis:7", "library/redis", "a:b"])
    def test_set_tag_rejects_qualified_tags(self, manager_factory, tag):
        manager = manager_factory()

        with pytest.raises(ValueError, match="bare tag"):
            manager.set_tag(tag)

        assert str(manager.handle.image) == "redis:latest"

    def test_constructor_rejects_qualified_tag(self, manager_factory):
        with pytest.raises(ValueError, match="bare tag"):
            manager_factory(tag="a:b")

    def test_context_manager(self, manager_factory, container_exit):
        with manager_factory() as manager:
            assert manager.state == LifecycleState.RUNNING

        assert manager.state == LifecycleState.STOPPED
        assert manager.normal_termination is True


class TestStartFailures:
    """Test that failures abort start and are reported as launch failures."""

    def test_readiness_timeout(self, manager_factory, mock_docker_client, recorded_events):
        """A liveness port that never opens fails start without a watcher fault."""
        prober = ReadinessProber(
            max_attempts=5,
            connect=MagicMock(side_effect=ConnectionRefusedError("refused")),
            sleep=MagicMock(),
        )
        on_fault = MagicMock()
        manager = manager_factory(prober=prober, on_fault=on_fault)

        with pytest.raises(ReadinessTimeoutError) as exc_info:
            manager.start()

        assert exc_info.value.port == 32768
        assert manager.state == LifecycleState.FAILED
        assert manager._watcher is None
        mock_docker_client.wait.assert_not_called()
        on_fault.assert_not_called()
        assert manager.fault is None
        assert not any(isinstance(e, ContainerExitedUnexpectedly) for e in recorded_events)

    def test_failed_start_leaves_container_for_stop(self, manager_factory, mock_docker_client):
        prober = ReadinessProber(
            max_attempts=1,
            connect=MagicMock(side_effect=ConnectionRefusedError("refused")),
            sleep=MagicMock(),
        )
        manager = manager_factory(prober=prober)

        with pytest.raises(ReadinessTimeoutError):
            manager.start()
        mock_docker_client.remove_container.assert_not_called()

        manager.stop()

        mock_docker_client.remove_container.assert_called_once_with(manager.container_id, force=True)
        assert manager.state == LifecycleState.FAILED

    def test_context_manager_cleans_up_failed_start(self, manager_factory, mock_docker_client):
        prober = ReadinessProber(
            max_attempts=1,
            connect=MagicMock(side_effect=ConnectionRefusedError("refused")),
            sleep=MagicMock(),
        )
        manager = manager_factory(prober=prober)

        with pytest.raises(ReadinessTimeoutError):
            with manager:
                pass

        mock_docker_client.kill.assert_called_once_with(manager.container_id)
        mock_docker_client.remove_container.assert_called_once_with(manager.container_id, force=True)
        assert manager.state == LifecycleState.FAILED

    def test_image_not_found(self, manager_factory, mock_docker_client):
        mock_docker_client.pull.return_value = iter([{"error": "manifest unknown: not found"}])
        manager = manager_factory()

        with pytest.raises(ImageNotFoundError):
            manager.start()

        assert manager.state == LifecycleState.FAILED
        mock_docker_client.create_container.assert_not_called()

    def test_engine_error_is_wrapped(self, manager_factory, mock_docker_client):
        cause = APIError("Conflict. The container name is already in use")
        mock_docker_client.create_container.side_effect = cause
        manager = manager_factory()

        with pytest.raises(ContainerLaunchError) as exc_info:
            manager.start()

        assert type(exc_info.value) is ContainerLaunchError
        assert exc_info.value.__cause__ is cause
        assert manager.state == LifecycleState.FAILED
        assert manager.container_id is None

    def test_start_failure_after_create(self, manager_factory, mock_docker_client):
        mock_docker_client.start.side_effect = APIError("port is already allocated")
        manager = manager_factory()

        with pytest.raises(ContainerLaunchError):
            manager.start()

        assert manager.container_id is not None
        manager.stop()
        mock_docker_client.remove_container.assert_called_once_with(manager.container_id, force=True)

    def test_host_environment_failure(self, manager_factory, mock_docker_client):
        def resolve(config):
            raise HostEnvironmentError("VM helper missing")

        manager = manager_factory(resolve_environment=resolve)

        with pytest.raises(HostEnvironmentError):
            manager.start()

        assert manager.state == LifecycleState.FAILED
        mock_docker_client.images.assert_not_called()

    def test_client_creation_failure(self, manager_factory, mock_docker_client):
        manager = manager_factory()
        manager._client_factory.create.side_effect = DockerException("TLS client cert missing")

        with pytest.raises(HostEnvironmentError) as exc_info:
            manager.start()

        assert isinstance(exc_info.value.__cause__, DockerException)

    def test_stop_during_start(self, manager_factory, mock_docker_client, container_exit):
        """A stop() issued while starting fails start and removes the container."""
        holder = {}

        class StoppingProber(ReadinessProber):
            def wait_for_listening_port(self, address, port, cancel_event=None):
                holder["manager"].stop()
                return 1

        manager = manager_factory(prober=StoppingProber())
        holder["manager"] = manager

        with pytest.raises(ContainerLaunchError, match="stopped while starting"):
            manager.start()

        assert manager.state == LifecycleState.FAILED
        assert manager._watcher is None
        assert mock_docker_client.remove_container.call_count == 2

    def test_stop_cancels_readiness_wait(self, manager_factory, mock_docker_client):
        """stop() from another thread ends the readiness wait early."""
        prober = ReadinessProber(
            interval=0.01,
            max_attempts=6000,
            connect=MagicMock(side_effect=ConnectionRefusedError("refused")),
        )
        manager = manager_factory(prober=prober)
        timer = threading.Timer(0.2, manager.stop)
        timer.start()

        try:
            with pytest.raises(ContainerLaunchError, match="stopped while starting") as exc_info:
                manager.start()
        finally:
            timer.cancel()

        assert not isinstance(exc_info.value, ReadinessTimeoutError)
        assert prober._connect.call_count < 6000
        assert manager.state == LifecycleState.FAILED
        assert manager._watcher is None
        mock_docker_client.remove_container.assert_called_with(manager.container_id, force=True)


class TestStop:
    """Test best-effort, idempotent stop."""

    def test_stop_kills_then_removes(self, manager_factory, mock_docker_client, container_exit):
        order = []
        mock_docker_client.kill.side_effect = lambda cid: (order.append("kill"), container_exit.set())
        mock_docker_client.remove_container.side_effect = lambda cid, force: order.append("remove")
        manager = manager_factory()
        manager.start()

        manager.stop()

        assert order == ["kill", "remove"]
        mock_docker_client.remove_container.assert_called_once_with(manager.container_id, force=True)
        assert manager.state == LifecycleState.STOPPED

    def test_stop_is_idempotent(self, manager_factory, mock_docker_client, container_exit, recorded_events):
        manager = manager_factory()
        manager.start()

        manager.stop()
        manager.stop()
        manager.stop()

        assert mock_docker_client.kill.call_count == 1
        assert mock_docker_client.remove_container.call_count == 1
        assert sum(isinstance(e, ContainerStopped) for e in recorded_events) == 1

    def test_stop_without_start(self, manager_factory, mock_docker_client, recorded_events):
        manager = manager_factory()

        manager.stop()

        mock_docker_client.kill.assert_not_called()
        mock_docker_client.remove_container.assert_not_called()
        assert manager.normal_termination is True
        assert recorded_events == []

    def test_stop_swallows_engine_errors(self, manager_factory, mock_docker_client, container_exit):
        manager = manager_factory()
        manager.start()

        def kill(container_id):
            container_exit.set()
            raise NotFound("No such container")

        mock_docker_client.kill.side_effect = kill
        mock_docker_client.remove_container.side_effect = APIError("removal already in progress")

        manager.stop()

        mock_docker_client.remove_container.assert_called_once()
        assert manager.state == LifecycleState.STOPPED

    def test_flag_set_before_kill(self, manager_factory, mock_docker_client, container_exit):
        manager = manager_factory()
        manager.start()
        seen = []

        def kill(container_id):
            seen.append(manager.normal_termination)
            container_exit.set()

        mock_docker_client.kill.side_effect = kill

        manager.stop()

        assert seen == [True]

    def test_stop_then_watcher_wakeup_is_quiet(self, manager_factory, container_exit, recorded_events):
        on_fault = MagicMock()
        manager = manager_factory(on_fault=on_fault)
        manager.start()

        manager.stop()
        _join_watcher(manager)
        manager._on_container_exit(0, None)

        assert manager.normal_termination is True
        assert manager.fault is None
        on_fault.assert_not_called()
        assert not any(isinstance(e, ContainerExitedUnexpectedly) for e in recorded_events)
        manager.raise_for_fault()

    def test_concurrent_stop(self, manager_factory, mock_docker_client, container_exit):
        manager = manager_factory()
        manager.start()
        barrier = threading.Barrier(8)

        def stop():
            barrier.wait(timeout=5)
            manager.stop()

        threads = [threading.Thread(target=stop) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert mock_docker_client.kill.call_count == 1
        assert mock_docker_client.remove_container.call_count == 1


class TestUnexpectedExit:
    """Test the watcher's fault reporting."""

    def test_external_termination_reports_fault_once(self, manager_factory, mock_docker_client, recorded_events):
        mock_docker_client.wait.return_value = {"StatusCode": 137}
        on_fault = MagicMock()
        manager = manager_factory(on_fault=on_fault)

        manager.start()
        _join_watcher(manager)

        fault = manager.fault
        assert isinstance(fault, UnexpectedContainerExitError)
        assert fault.exit_status == 137
        assert fault.container_id == manager.container_id
        assert manager.state == LifecycleState.CRASHED
        on_fault.assert_called_once_with(fault)
        faults = [e for e in recorded_events if isinstance(e, ContainerExitedUnexpectedly)]
        assert len(faults) == 1
        assert faults[0].exit_status == 137

        with pytest.raises(UnexpectedContainerExitError):
            manager.raise_for_fault()

    def test_repeated_exit_notifications(self, manager_factory, mock_docker_client, recorded_events):
        mock_docker_client.wait.return_value = {"StatusCode": 1}
        on_fault = MagicMock()
        manager = manager_factory(on_fault=on_fault)
        manager.start()
        _join_watcher(manager)

        manager._on_container_exit(1, None)
        manager._on_container_exit(None, RuntimeError("stream closed"))

        on_fault.assert_called_once()
        assert sum(isinstance(e, ContainerExitedUnexpectedly) for e in recorded_events) == 1

    def test_transport_error_is_unexpected(self, manager_factory, mock_docker_client):
        error = APIError("connection closed")
        mock_docker_client.wait.side_effect = error
        manager = manager_factory()

        manager.start()
        _join_watcher(manager)

        assert manager.fault is not None
        assert manager.fault.__cause__ is error

    def test_stop_after_crash_still_removes(self, manager_factory, mock_docker_client):
        mock_docker_client.wait.return_value = {"StatusCode": 0}
        mock_docker_client.kill.side_effect = APIError("container is not running")
        manager = manager_factory()
        manager.start()
        _join_watcher(manager)

        manager.stop()

        mock_docker_client.remove_container.assert_called_once_with(manager.container_id, force=True)
        assert manager.state == LifecycleState.CRASHED

    def test_interrupt_policy(self, manager_factory, mock_docker_client):
        mock_docker_client.wait.return_value = {"StatusCode": 2}
        config = Settings(
            host_environment="local",
            register_shutdown_guard=False,
            unexpected_exit_policy="interrupt",
        )
        manager = manager_factory(config=config)

        with patch("ephemera.services.container.manager._thread.interrupt_main") as interrupt:
            manager.start()
            _join_watcher(manager)

        interrupt.assert_called_once()

    def test_fault_callback_error_is_contained(self, manager_factory, mock_docker_client):
        mock_docker_client.wait.return_value = {"StatusCode": 1}
        manager = manager_factory(on_fault=MagicMock(side_effect=RuntimeError("boom")))

        manager.start()
        _join_watcher(manager)

        assert manager.state == LifecycleState.CRASHED


class TestShutdownGuard:
    """Test the process-exit failsafe registration."""

    @pytest.fixture
    def guard_settings(self):
        return Settings(host_environment="local", register_shutdown_guard=True)

    def test_guard_registered_after_start(self, manager_factory, guard_settings, container_exit):
        manager = manager_factory(config=guard_settings)

        with patch("ephemera.utils.shutdown.atexit") as atexit_mock:
            manager.start()
            guard = manager._shutdown_guard
            atexit_mock.register.assert_called_once_with(guard.fire)

            manager.stop()
            atexit_mock.unregister.assert_called_once_with(guard.fire)

    def test_guard_not_registered_on_failure(self, manager_factory, guard_settings, mock_docker_client):
        mock_docker_client.create_container.side_effect = APIError("boom")
        manager = manager_factory(config=guard_settings)

        with patch("ephemera.utils.shutdown.atexit") as atexit_mock:
            with pytest.raises(ContainerLaunchError):
                manager.start()

        atexit_mock.register.assert_not_called()
        assert manager._shutdown_guard is None

    def test_guard_fire_stops_container(self, manager_factory, guard_settings, mock_docker_client, container_exit):
        manager = manager_factory(config=guard_settings)

        with patch("ephemera.utils.shutdown.atexit"):
            manager.start()
            manager._shutdown_guard.fire()

        assert manager.state == LifecycleState.STOPPED
        mock_docker_client.remove_container.assert_called_once()

    def test_guard_after_explicit_stop_is_noop(self, manager_factory, guard_settings, mock_docker_client, container_exit):
        manager = manager_factory(config=guard_settings)

        with patch("ephemera.utils.shutdown.atexit"):
            manager.start()
            guard = manager._shutdown_guard
            manager.stop()
            guard.fire()

        assert manager._shutdown_guard is None

        assert mock_docker_client.kill.call_count == 1
        assert mock_docker_client.remove_container.call_count == 1


class TestVolumeDirectory:
    """Test volume directories created through the manager."""

    def test_uses_configured_prefix(self, manager_factory, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = Settings(host_environment="local", register_shutdown_guard=False, volume_dir_prefix="vol-")
        manager = manager_factory(config=config)

        directory = manager.create_volume_directory(temporary=False)

        assert directory.is_dir()
        assert directory.name.startswith("vol-")
