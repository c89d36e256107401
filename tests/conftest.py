"""Shared fixtures for the DockaShell test-suite."""
import json
import os
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# Must run before any dockashell import: config and logger resolve the home directory at import time.
os.environ["DOCKASHELL_HOME"] = tempfile.mkdtemp(prefix="dockashell_test_home_")

import pytest
from docker.errors import NotFound # type: ignore

from dockashell.project_manager import ProjectManager

FULL_CONTAINER_ID = "0123456789abcdef0123456789abcdef"


def pytest_configure(config):
    config.addinivalue_line("markers", "docker_required: test needs a reachable Docker daemon")


class FakeClock:
    """Manually advanced UTC clock for trace session tests."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def inspect_payload(running: bool = True, container_id: str = FULL_CONTAINER_ID, image: str = "dockashell/default-dev:latest"):
    return {
        "Id": container_id,
        "Created": "2025-01-01T12:00:00.000000000Z",
        "State": {"Running": running, "Status": "running" if running else "exited"},
        "Config": {"Image": image},
        "HostConfig": {"PortBindings": {"3000/tcp": [{"HostIp": "", "HostPort": "3001"}]}},
        "Mounts": [
            {"Source": "/home/dev/src", "Destination": "/workspace", "RW": True},
            {"Source": "/home/dev/data", "Destination": "/data", "RW": False},
        ],
    }


def not_found() -> NotFound:
    return NotFound("No such container")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def project_manager(tmp_path) -> ProjectManager:
    manager = ProjectManager(home=tmp_path / "dockashell")
    manager.ensure_config_structure()
    return manager


@pytest.fixture
def make_project(project_manager):
    """Write ``projects/<name>/config.json`` and return the loaded ProjectConfig."""
    def _make(name: str = "demo", **config):
        project_dir = project_manager.project_dir(name)
        project_dir.mkdir(parents=True, exist_ok=True)
        (project_dir / "config.json").write_text(json.dumps({"name": name, **config}), encoding="utf-8")
        return project_manager.load_project(name)
    return _make


@pytest.fixture
def docker_api() -> MagicMock:
    """Stand-in for docker.APIClient; containers start out absent."""
    api = MagicMock(name="APIClient")
    api.inspect_container.side_effect = not_found()
    api.create_host_config.side_effect = lambda **kwargs: {"host_config": kwargs}
    api.create_container.return_value = {"Id": FULL_CONTAINER_ID}
    return api
