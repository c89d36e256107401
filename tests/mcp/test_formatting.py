"""Tests for the Markdown rendering used by the MCP tools."""
from dockashell.mcp import formatting
from dockashell.schema import ExecutionResult, ProjectConfig, TraceRecord


def test_command_result_sections():
    result = ExecutionResult(success=False, exit_code=-1, stdout="partial", stderr="Command timed out", timed_out=True, duration=2.0)
    text = formatting.format_command_result("demo", "sleep 100", result, max_time=2)
    assert text.startswith("# Command Execution: demo\n\n")
    assert "**Command:** `sleep 100`" in text
    assert "**Exit Code:** -1" in text
    assert "**Success:** ❌" in text
    assert "**Output:**\n```\npartial\n```" in text
    assert "**Error Output:**\n```\nCommand timed out\n```" in text
    assert "**Note:** Command timed out after 2 seconds" in text


def test_successful_command_omits_empty_sections():
    result = ExecutionResult(success=True, exit_code=0, stdout="", stderr="", duration=0.1)
    text = formatting.format_command_result("demo", "true", result)
    assert "**Success:** ✅" in text
    assert "Output" not in text
    assert "Note" not in text


def test_write_result():
    result = ExecutionResult(success=False, exit_code=1, stderr="File exists: a.txt (use overwrite to replace it)")
    text = formatting.format_write_result("demo", "a.txt", result)
    assert "**Path:** a.txt" in text
    assert "File exists" in text


def test_status_not_found_and_running():
    assert "Container not found (not started)" in formatting.format_status("demo", {"status": "not_found"})
    text = formatting.format_status("demo", {
        "status": "running",
        "container_id": "0123456789ab",
        "image": "alpine:3",
        "created": "2025-01-01",
        "ports": [{"host": 8080, "container": 80}],
        "mounts": [{"source": "/src", "destination": "/workspace", "mode": "rw"}],
    })
    assert "- http://localhost:8080 → 80" in text
    assert "- /src → /workspace (rw)" in text


def test_start_result_prefers_project_details():
    project = ProjectConfig(name="demo", image="node:20", mounts=[{"host": "~/src", "container": "/workspace"}])
    text = formatting.format_start_result("demo", {"container_id": "abc", "status": "started", "image": "sha256:x"}, project)
    assert "**Image:** node:20" in text
    assert "- ~/src → /workspace" in text


def test_project_list():
    assert "No projects configured" in formatting.format_project_list([])
    text = formatting.format_project_list([{"name": "demo", "description": "", "image": "alpine:3", "status": "configured"}])
    assert "**demo**" in text
    assert "- Description: None" in text


class TestTraceFormatting:
    COMMAND = TraceRecord(
        timestamp="2025-01-01T12:00:00.000Z",
        kind="command",
        command="pytest -q",
        result={"exit_code": 0, "duration": "1.50s", "timed_out": False, "output": "x" * 50},
    )
    NOTE = TraceRecord(timestamp="2025-01-01T12:01:00.000Z", kind="note", note_type="summary", text="all green")

    def test_timestamp_and_type_are_always_selected(self):
        assert formatting.select_trace_fields(["output", "bogus"]) == ["timestamp", "type", "output"]
        assert formatting.select_trace_fields(None) == ["timestamp", "type", "content"]

    def test_default_rendering(self):
        text = formatting.format_traces([self.NOTE, self.COMMAND])
        assert text == (
            "## 2025-01-01T12:01:00.000Z [SUMMARY]\nall green\n\n"
            "## 2025-01-01T12:00:00.000Z [COMMAND]\npytest -q"
        )

    def test_output_preview_is_capped(self):
        text = formatting.format_traces(
            [self.COMMAND], fields=["content", "exit_code", "duration", "output"], output_max_len=10
        )
        assert text.startswith("## 2025-01-01T12:00:00.000Z [COMMAND] exit_code=0 duration=1.50s output_chars=50")
        assert "```bash\npytest -q\n```" in text
        assert "**Output:**\n```\n" + "x" * 10 + "\n```" in text

    def test_lifecycle_records(self):
        record = TraceRecord(timestamp="t", kind="stop", container_id="0123456789ab", status="stopped")
        assert formatting.format_traces([record]) == "## t [STOP]\ncontainer_id=0123456789ab, status=stopped"

    def test_empty(self):
        assert formatting.format_traces([]) == "No trace entries found"
