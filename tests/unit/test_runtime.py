"""Tests for the docker-backed container runtime adapter."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import docker.errors
import pytest

from cli.core.exceptions import (
    AllocatorExhausted,
    BuildError,
    ContainerRuntimeError,
    HealthProbeTimeout,
)
from cli.core.ports import PortAllocator
from cli.core.runtime import (
    LABEL_MANAGED,
    LABEL_PROJECT,
    ContainerRuntime,
)


def _container(cid: str = "abc123def456", status: str = "running", host_ports=()) -> MagicMock:
    c = MagicMock()
    c.id = cid
    c.name = f"deployhub-{cid}"
    c.status = status
    c.labels = {"deployhub.project_name": "web", "deployhub.deployment": "d" * 32}
    c.attrs = {
        "HostConfig": {
            "PortBindings": {"80/tcp": [{"HostIp": "", "HostPort": str(p)} for p in host_ports]}
        }
    }
    return c


@pytest.fixture
def allocator():
    return PortAllocator(4000, 4009)


@pytest.fixture
def client():
    c = MagicMock()
    c.containers.list.return_value = []
    c.images.get.return_value.attrs = {"Config": {"ExposedPorts": {"8000/tcp": {}}}}
    return c


@pytest.fixture
def runtime(allocator, client):
    rt = ContainerRuntime(allocator, client, probe_timeout=0.0, probe_interval=0.01)
    return rt


class TestBuildImage:
    def test_yields_stream_lines(self, runtime, client, tmp_path):
        client.api.build.return_value = iter(
            [
                {"stream": "Step 1/3 : FROM node:20-alpine\n"},
                {"status": "Pulling from library/node", "id": "20-alpine"},
                {"status": "Downloading", "progress": "[==>   ]", "id": "abc"},
                {"stream": "\n"},
                {"stream": "Successfully built 123\nSuccessfully tagged x:y\n"},
            ]
        )
        lines = list(runtime.build_image(tmp_path, "deployhub/web:12345678"))
        assert lines == [
            "Step 1/3 : FROM node:20-alpine",
            "20-alpine: Pulling from library/node",
            "Successfully built 123",
            "Successfully tagged x:y",
        ]
        client.api.build.assert_called_once_with(
            path=str(tmp_path), tag="deployhub/web:12345678", rm=True, forcerm=True, decode=True
        )

    def test_error_chunk_is_yielded_then_raised(self, runtime, client, tmp_path):
        client.api.build.return_value = iter(
            [{"stream": "Step 1/2 : RUN false\n"}, {"error": "The command returned 1\n"}]
        )
        seen = []
        with pytest.raises(BuildError) as exc_info:
            for line in runtime.build_image(tmp_path, "t"):
                seen.append(line)
        assert seen[-1] == "ERROR: The command returned 1"
        assert exc_info.value.lines == ["The command returned 1"]

    def test_api_error_becomes_build_error(self, runtime, client, tmp_path):
        client.api.build.side_effect = docker.errors.APIError("daemon says no")
        with pytest.raises(BuildError):
            list(runtime.build_image(tmp_path, "t"))


class TestRunContainer:
    def test_creates_labelled_container_with_port_binding(self, runtime, client):
        container = _container()
        client.containers.create.return_value = container
        with patch.object(ContainerRuntime, "_probe", return_value=True):
            handle = runtime.run_container(
                "deployhub/web:1",
                {"FOO": "bar"},
                4003,
                project_id=7,
                project_name="web",
                container_name="deployhub-web-1",
                deployment_id="d" * 32,
            )

        _, kwargs = client.containers.create.call_args
        assert kwargs["ports"] == {"8000/tcp": 4003}
        assert kwargs["environment"] == {"FOO": "bar", "PORT": "8000"}
        assert kwargs["labels"][LABEL_MANAGED] == "true"
        assert kwargs["labels"][LABEL_PROJECT] == "7"
        assert kwargs["restart_policy"] == {"Name": "always"}
        container.start.assert_called_once()
        assert handle.ready is True
        assert handle.port == 4003
        assert handle.container_port == 8000

    def test_container_port_defaults_to_host_port(self, runtime, client):
        client.images.get.return_value.attrs = {"Config": {}}
        client.containers.create.return_value = _container()
        with patch.object(ContainerRuntime, "_probe", return_value=True):
            handle = runtime.run_container(
                "img", {}, 4001, project_id=1, project_name="web", container_name="c"
            )
        assert handle.container_port == 4001
        assert client.containers.create.call_args.kwargs["ports"] == {"4001/tcp": 4001}

    def test_removes_previous_project_containers(self, runtime, client, allocator):
        allocator.reserve(4005)
        old = _container("old000000000", host_ports=(4005,))
        client.containers.list.return_value = [old]
        client.containers.create.return_value = _container()
        logs: list[str] = []
        with patch.object(ContainerRuntime, "_probe", return_value=True):
            handle = runtime.run_container(
                "img", {}, 4001, project_id=1, project_name="web", container_name="c",
                log_fn=logs.append,
            )
        old.stop.assert_called_once()
        old.remove.assert_called_once_with(force=True)
        assert handle.replaced == ["old000000000"]
        assert 4005 not in allocator.in_use
        assert any("previous container" in line for line in logs)

    def test_stale_container_already_gone_is_ignored(self, runtime, client):
        old = _container("old000000000")
        old.stop.side_effect = docker.errors.NotFound("gone")
        client.containers.list.return_value = [old]
        client.containers.create.return_value = _container()
        with patch.object(ContainerRuntime, "_probe", return_value=True):
            handle = runtime.run_container(
                "img", {}, 4001, project_id=1, project_name="web", container_name="c"
            )
        assert handle.replaced == ["old000000000"]

    def test_stale_container_engine_error_is_skipped(self, runtime, client):
        old = _container("old000000000")
        old.remove.side_effect = docker.errors.APIError("busy")
        client.containers.list.return_value = [old]
        client.containers.create.return_value = _container()
        with patch.object(ContainerRuntime, "_probe", return_value=True):
            handle = runtime.run_container(
                "img", {}, 4001, project_id=1, project_name="web", container_name="c"
            )
        assert handle.replaced == []

    def test_start_failure_removes_created_container(self, runtime, client):
        container = _container()
        container.start.side_effect = docker.errors.APIError("port is already allocated")
        client.containers.create.return_value = container
        with pytest.raises(ContainerRuntimeError):
            runtime.run_container(
                "img", {}, 4001, project_id=1, project_name="web", container_name="c"
            )
        container.remove.assert_called_once_with(force=True)

    def test_probe_timeout_is_not_an_error(self, runtime, client):
        client.containers.create.return_value = _container()
        logs: list[str] = []
        with patch.object(ContainerRuntime, "_probe", return_value=False):
            handle = runtime.run_container(
                "img", {}, 4001, project_id=1, project_name="web", container_name="c",
                log_fn=logs.append,
            )
        assert handle.ready is False
        assert any("did not answer" in line for line in logs)

    def test_wait_until_ready_raises_on_timeout(self, runtime):
        container = _container(status="created")
        with pytest.raises(HealthProbeTimeout, match="did not answer within 0s"):
            runtime.wait_until_ready(container, 4001)

    def test_wait_until_ready_returns_once_probe_answers(self, runtime):
        with patch.object(ContainerRuntime, "_probe", return_value=True):
            assert runtime.wait_until_ready(_container(), 4001) is None


class TestLifecycle:
    def test_stop_releases_ports_and_removes(self, runtime, client, allocator):
        allocator.reserve(4002)
        container = _container(host_ports=(4002,))
        client.containers.get.return_value = container
        runtime.stop(container.id)
        container.stop.assert_called_once()
        container.remove.assert_called_once_with(force=True)
        assert 4002 not in allocator.in_use

    def test_failed_removal_keeps_port_allocated(self, client):
        allocator = PortAllocator(4000, 4000)
        runtime = ContainerRuntime(allocator, client, probe_timeout=0.0)
        port = allocator.allocate()
        container = _container(host_ports=(port,))
        container.remove.side_effect = docker.errors.APIError("device busy")
        client.containers.get.return_value = container

        with pytest.raises(ContainerRuntimeError):
            runtime.stop(container.id)

        assert allocator.in_use == frozenset({4000})
        with pytest.raises(AllocatorExhausted):
            allocator.allocate()

    def test_stop_of_vanished_container_releases_port(self, runtime, client, allocator):
        allocator.reserve(4003)
        container = _container(host_ports=(4003,))
        container.stop.side_effect = docker.errors.NotFound("gone")
        client.containers.get.return_value = container
        runtime.stop(container.id)
        assert 4003 not in allocator.in_use

    def test_stop_missing_container_is_not_an_error(self, runtime, client):
        client.containers.get.side_effect = docker.errors.NotFound("no such container")
        runtime.stop("missing")

    def test_restart(self, runtime, client):
        container = _container()
        client.containers.get.return_value = container
        runtime.restart(container.id)
        container.restart.assert_called_once()

    def test_restart_failure(self, runtime, client):
        client.containers.get.side_effect = docker.errors.APIError("down")
        with pytest.raises(ContainerRuntimeError):
            runtime.restart("x")

    def test_fetch_logs(self, runtime, client):
        container = _container()
        container.logs.return_value = b"2024-01-01T00:00:00Z listening on 8000\n"
        client.containers.get.return_value = container
        out = runtime.fetch_logs(container.id, tail=50)
        assert "listening on 8000" in out
        container.logs.assert_called_once_with(stdout=True, stderr=True, tail=50, timestamps=True)

    def test_list_managed_and_reclaim_ports(self, runtime, client, allocator):
        client.containers.list.return_value = [
            _container("run000000000", host_ports=(4004,)),
            _container("ext000000000", status="exited", host_ports=(4006,)),
        ]
        managed = runtime.list_managed()
        assert [m["ports"] for m in managed] == [[4004], [4006]]
        assert runtime.reclaim_ports() == [4004]
        assert allocator.in_use == frozenset({4004})

    def test_list_managed_engine_down(self, runtime, client):
        client.containers.list.side_effect = docker.errors.DockerException("no daemon")
        with pytest.raises(ContainerRuntimeError):
            runtime.list_managed()


def test_client_is_created_lazily(allocator):
    with patch("cli.core.runtime.docker.from_env") as from_env:
        rt = ContainerRuntime(allocator)
        from_env.assert_not_called()
        assert rt.client is from_env.return_value


def test_unreachable_engine(allocator):
    with patch(
        "cli.core.runtime.docker.from_env",
        side_effect=docker.errors.DockerException("no socket"),
    ):
        with pytest.raises(ContainerRuntimeError):
            ContainerRuntime(allocator).client
