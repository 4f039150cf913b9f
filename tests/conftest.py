from pathlib import Path
from unittest.mock import MagicMock

import pytest

TEST_API_KEY = "test-api-key-for-tests"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Redirect all deployhub config to a temp directory for test isolation."""
    monkeypatch.setattr("cli.core.config.DEPLOYHUB_HOME", tmp_path)
    monkeypatch.setattr("cli.core.config.DB_PATH", tmp_path / "deployhub.db")
    monkeypatch.setattr("cli.core.config.BUILDS_DIR", tmp_path / "builds")
    monkeypatch.setattr("cli.core.config.MASTER_KEY_PATH", tmp_path / "master.key")
    monkeypatch.setattr("cli.core.config.PORT_MIN", 4000)
    monkeypatch.setattr("cli.core.config.PORT_MAX", 4009)
    monkeypatch.setattr("cli.core.config.PROBE_TIMEOUT", 0.0)
    (tmp_path / "builds").mkdir()

    # Write a known API key for test isolation
    api_key_path = tmp_path / "api_key.txt"
    api_key_path.write_text(TEST_API_KEY)
    api_key_path.chmod(0o600)

    # Reset engine so each test gets a fresh temp DB
    import cli.core.database as db_mod

    db_mod._engine = None
    db_mod._SessionLocal = None

    yield tmp_path


@pytest.fixture
def fake_cloner():
    """Factory for cloners that write the given files instead of running git."""

    def _make(files: dict[str, str]):
        def _clone(url: str, branch: str, dest: Path) -> None:
            dest.mkdir(parents=True, exist_ok=True)
            for name, content in files.items():
                (dest / name).write_text(content)

        return _clone

    return _make


@pytest.fixture
def mock_docker():
    """A MagicMock docker client whose build succeeds and whose containers start."""
    client = MagicMock()
    client.api.build.return_value = iter(
        [{"stream": "Step 1/2 : FROM nginx:alpine\n"}, {"stream": "Successfully built abc123\n"}]
    )
    client.images.get.return_value.attrs = {"Config": {"ExposedPorts": {"80/tcp": {}}}}
    client.containers.list.return_value = []

    container = MagicMock()
    container.id = "c0ffee" * 10 + "abcd"
    container.status = "running"
    container.attrs = {"HostConfig": {"PortBindings": {}}}
    client.containers.create.return_value = container
    client.containers.get.return_value = container
    return client


@pytest.fixture
def api_services(mock_docker, fake_cloner, monkeypatch):
    """Attach a component graph backed by the mock engine to the API app."""
    from api.main import app
    from cli.core.runtime import ContainerRuntime
    from cli.core.services import build_services

    monkeypatch.setattr(ContainerRuntime, "_probe", lambda self, port: True)
    monkeypatch.setattr("cli.core.orchestrator.current_revision", lambda repo_dir: None)
    services = build_services(
        docker_client=mock_docker, cloner=fake_cloner({"index.html": "<h1>hi</h1>"})
    )
    app.state.services = services
    yield services
    del app.state.services
