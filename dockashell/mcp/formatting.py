"""Markdown renderings of DockaShell results for MCP clients."""
from typing import Any, Dict, Iterable, List, Optional

from dockashell.schema import ExecutionResult, ProjectConfig, TraceRecord

TRACE_FIELDS = ("timestamp", "type", "content", "exit_code", "duration", "output")
DEFAULT_TRACE_FIELDS = ("timestamp", "type", "content")
DEFAULT_OUTPUT_PREVIEW = 1000
_EXECUTION_KINDS = ("command", "apply_patch", "write_file")


def _fenced(label: str, body: str, lang: str = "") -> str:
    return f"**{label}:**\n```{lang}\n{body}\n```\n\n"


def format_command_result(project_name: str, command: str, result: ExecutionResult, max_time: Optional[float] = None) -> str:
    response = f"# Command Execution: {project_name}\n\n"
    response += f"**Command:** `{command}`\n"
    response += f"**Exit Code:** {result.exit_code}\n"
    response += f"**Success:** {'✅' if result.success else '❌'}\n\n"
    if result.stdout.strip():
        response += _fenced("Output", result.stdout)
    if result.stderr.strip():
        response += _fenced("Error Output", result.stderr)
    if result.timed_out:
        limit = f"{max_time:g} seconds" if max_time else f"{result.duration}s"
        response += f"**Note:** Command timed out after {limit}\n"
    return response


def format_patch_result(project_name: str, result: ExecutionResult) -> str:
    response = f"# Apply Patch: {project_name}\n\n"
    response += f"**Exit Code:** {result.exit_code}\n"
    response += f"**Success:** {'✅' if result.success else '❌'}\n\n"
    if result.stdout:
        response += _fenced("Output", result.stdout)
    if result.stderr:
        response += _fenced("Error Output", result.stderr)
    return response


def format_write_result(project_name: str, path: str, result: ExecutionResult) -> str:
    response = f"# Write File: {project_name}\n\n"
    response += f"**Path:** {path}\n"
    response += f"**Exit Code:** {result.exit_code}\n"
    response += f"**Success:** {'✅' if result.success else '❌'}\n"
    if result.stderr:
        response += f"\n**Error Output:**\n```\n{result.stderr}\n```"
    return response


def format_project_list(projects: List[Dict[str, Any]]) -> str:
    response = "# Configured Projects\n\n"
    if not projects:
        return response + "No projects configured. Create one under ~/.dockashell/projects/<name>/config.json\n"
    for project in projects:
        response += f"**{project['name']}**\n"
        response += f"- Description: {project.get('description') or 'None'}\n"
        response += f"- Image: {project.get('image')}\n"
        response += f"- Status: {project.get('status')}\n\n"
    return response


def _port_lines(ports: Iterable[Dict[str, Any]]) -> str:
    return "".join(f"- http://localhost:{p['host']} → {p['container']}\n" for p in ports)


def format_start_result(project_name: str, result: Dict[str, Any], project: Optional[ProjectConfig] = None) -> str:
    response = f"# Project Started: {project_name}\n\n"
    response += f"**Container ID:** {result.get('container_id')}\n"
    response += f"**Status:** {result.get('status')}\n"
    response += f"**Image:** {project.image if project else result.get('image')}\n"
    if result.get("ports"):
        response += "**Port Mappings:**\n" + _port_lines(result["ports"])
    if project and project.mounts:
        response += "**Mounts:**\n"
        response += "".join(f"- {m.host} → {m.container}\n" for m in project.mounts)
    return response


def format_stop_result(project_name: str, result: Dict[str, Any]) -> str:
    response = f"# Project Stopped: {project_name}\n\n"
    response += f"**Status:** {result.get('status')}\n"
    if result.get("container_id"):
        response += f"**Container ID:** {result['container_id']}\n"
    return response


def format_status(project_name: str, status: Dict[str, Any]) -> str:
    response = f"# Project Status: {project_name}\n\n"
    if status.get("status") == "not_found":
        return response + "**Status:** Container not found (not started)\n"
    response += f"**Container ID:** {status.get('container_id')}\n"
    response += f"**Status:** {status.get('status')}\n"
    response += f"**Image:** {status.get('image')}\n"
    response += f"**Created:** {status.get('created')}\n"
    if status.get("ports"):
        response += "**Port Mappings:**\n" + _port_lines(status["ports"])
    if status.get("mounts"):
        response += "**Mounts:**\n"
        response += "".join(f"- {m['source']} → {m['destination']} ({m['mode']})\n" for m in status["mounts"])
    return response


def select_trace_fields(fields: Optional[Iterable[str]]) -> List[str]:
    """Valid requested fields; timestamp and type are always included, first."""
    selected = [f for f in fields if f in TRACE_FIELDS] if fields is not None else list(DEFAULT_TRACE_FIELDS)
    if "timestamp" not in selected:
        selected.insert(0, "timestamp")
    if "type" not in selected:
        selected.insert(1, "type")
    return selected


def _type_label(record: TraceRecord) -> str:
    if record.kind in _EXECUTION_KINDS:
        return record.kind.upper()
    return (record.note_type or record.kind or "unknown").upper()


def format_trace_record(record: TraceRecord, selected: List[str], preview_len: int = DEFAULT_OUTPUT_PREVIEW) -> str:
    result = record.result or {}
    is_execution = record.kind in _EXECUTION_KINDS
    output = result.get("output") if is_execution else None

    meta = []
    if "exit_code" in selected and is_execution and result.get("exit_code") is not None:
        meta.append(f"exit_code={result['exit_code']}")
    if "duration" in selected and is_execution and result.get("duration"):
        meta.append(f"duration={result['duration']}")
    if "output" in selected and output:
        meta.append(f"output_chars={len(output)}")

    header = f"## {record.timestamp} [{_type_label(record)}]"
    if meta:
        header += " " + " ".join(meta)
    lines = [header]

    if "content" in selected:
        if record.kind == "command":
            if "output" in selected:
                lines.extend(["```bash", record.command or "", "```"])
            else:
                lines.append(record.command or "")
        elif record.kind == "apply_patch":
            lines.append(record.patch or "")
        elif record.kind == "write_file":
            overwrite = " (overwrite)" if record.overwrite else ""
            size = f" [{record.content_length} bytes]" if record.content_length is not None else ""
            lines.append(f"{record.path or ''}{overwrite}{size}")
        elif record.text is not None:
            lines.append(record.text)
        else:
            details = {k: v for k, v in (record.model_extra or {}).items() if v is not None}
            lines.append(", ".join(f"{k}={v}" for k, v in details.items()))

    if "output" in selected and output:
        lines.extend(["", "**Output:**", "```", output[:preview_len], "```"])
    return "\n".join(lines)


def format_traces(records: List[TraceRecord], fields: Optional[Iterable[str]] = None, output_max_len: Optional[int] = None) -> str:
    selected = select_trace_fields(fields)
    preview_len = output_max_len if isinstance(output_max_len, int) and output_max_len > 0 else DEFAULT_OUTPUT_PREVIEW
    text = "\n\n".join(format_trace_record(r, selected, preview_len) for r in records)
    return text or "No trace entries found"
