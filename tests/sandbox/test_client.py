"""Tests for the DockaShell sandbox client (policy gate and facade)."""
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from dockashell.exceptions import InvalidInputError, ProjectNotFoundError
from dockashell.logger import define_log_level
from dockashell.sandbox.client import SandboxClient
from dockashell.sandbox.core.exceptions import CommandBlockedError
from dockashell.schema import ExecutionResult

from conftest import inspect_payload

define_log_level(print_level="DEBUG", logfile_level="DEBUG", name="dockashell_test_client")


@pytest_asyncio.fixture
async def client(project_manager, docker_api, clock):
    sandbox_client = SandboxClient(project_manager=project_manager, api=docker_api, session_timeout=3600, clock=clock)
    yield sandbox_client
    await sandbox_client.cleanup()


@pytest.fixture
def engine_spy(client, monkeypatch):
    result = ExecutionResult(success=True, exit_code=0, stdout="ok", duration=0.01)
    spy = AsyncMock(return_value=result)
    monkeypatch.setattr(client.engine, "execute_command", spy)
    monkeypatch.setattr(client.engine, "apply_patch", AsyncMock(return_value=result))
    monkeypatch.setattr(client.engine, "write_file", AsyncMock(return_value=result))
    return client.engine


class TestRunCommand:
    @pytest.mark.asyncio
    async def test_blocked_command_never_reaches_the_daemon(self, client, engine_spy, docker_api, make_project):
        make_project("locked", security={"restricted_mode": True})
        with pytest.raises(CommandBlockedError):
            await client.run_command("locked", "rm -rf /")
        engine_spy.execute_command.assert_not_called()
        docker_api.inspect_container.assert_not_called()

    @pytest.mark.asyncio
    async def test_allowed_command_uses_project_time_limit(self, client, engine_spy, make_project):
        project = make_project("demo", security={"restricted_mode": True, "max_execution_time": 12})
        result = await client.run_command("demo", "ls -la")
        assert result.stdout == "ok"
        engine_spy.execute_command.assert_awaited_once_with("demo", "ls -la", timeout_ms=12000, project=project)

    @pytest.mark.asyncio
    async def test_invalid_inputs_are_rejected_first(self, client, engine_spy, make_project):
        make_project("demo")
        with pytest.raises(InvalidInputError):
            await client.run_command("bad name", "ls")
        with pytest.raises(InvalidInputError):
            await client.run_command("demo", "  ")
        with pytest.raises(ProjectNotFoundError):
            await client.run_command("ghost", "ls")
        engine_spy.execute_command.assert_not_called()


class TestFileOperations:
    @pytest.mark.asyncio
    async def test_apply_patch_requires_content(self, client, engine_spy, make_project):
        make_project("demo")
        with pytest.raises(InvalidInputError):
            await client.apply_patch("demo", "")
        await client.apply_patch("demo", "*** Begin Patch\n*** End Patch")
        engine_spy.apply_patch.assert_awaited_once()
        assert engine_spy.apply_patch.await_args.kwargs["timeout_ms"] == 300000

    @pytest.mark.asyncio
    async def test_write_file_requires_a_path_and_defaults_content(self, client, engine_spy, make_project):
        project = make_project("demo")
        with pytest.raises(InvalidInputError):
            await client.write_file("demo", "", "x")
        await client.write_file("demo", "notes.txt", None)
        engine_spy.write_file.assert_awaited_once_with(
            "demo", "notes.txt", "", overwrite=False, timeout_ms=300000, project=project
        )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_status_and_stop_for_unknown_container(self, client):
        assert (await client.project_status("demo"))["status"] == "not_found"
        assert (await client.stop_project("demo"))["status"] == "not_found"

    @pytest.mark.asyncio
    async def test_start_project(self, client, docker_api, make_project):
        make_project("demo")
        docker_api.inspect_container.side_effect = [inspect_payload(running=False), inspect_payload()]
        result = await client.start_project("demo")
        assert result["status"] == "started"

    @pytest.mark.asyncio
    async def test_names_are_validated(self, client):
        with pytest.raises(InvalidInputError):
            await client.start_project("../etc")

    def test_list_projects(self, client, make_project):
        make_project("alpha")
        assert [p["name"] for p in client.list_projects()] == ["alpha"]


class TestTraces:
    def test_write_and_read_notes(self, client):
        client.write_trace("demo", "user", "remember the migration")
        client.write_trace("demo", "agent", "ran the migration")
        notes = client.read_traces("demo", type="user")
        assert [n.text for n in notes] == ["remember the migration"]
        assert [n.note_type for n in client.read_traces("demo")] == ["agent", "user"]

    def test_write_trace_validates_type_and_text(self, client):
        with pytest.raises(InvalidInputError):
            client.write_trace("demo", "system", "hi")
        with pytest.raises(InvalidInputError):
            client.write_trace("demo", "user", "   ")

    @pytest.mark.asyncio
    async def test_cleanup_keeps_fresh_sessions_resumable(self, client, project_manager):
        client.write_trace("demo", "summary", "done for today")
        await client.cleanup()
        assert (project_manager.traces_dir("demo") / "current.jsonl").exists()
