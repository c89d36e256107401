"""Reading and normalizing trace logs.

Raw entries differ per tool; ``parse_trace_entry`` folds them into
``TraceRecord`` objects with a ``kind`` that readers can filter on.
Malformed lines are skipped so that one torn write never hides a session.
"""
import json
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from dockashell.logger import logger
from dockashell.schema import TraceRecord
from dockashell.trace.recorder import CURRENT_FILE, SESSIONS_DIR

DEFAULT_LIMIT = 20

_TOOL_KINDS = {
    "run_command": "command",
    "bash": "command",
    "apply_patch": "apply_patch",
    "write_file": "write_file",
    "write_trace": "note",
    "write_log": "note",
}

_COMMON_FIELDS = ("id", "session_id", "timestamp", "tool", "trace_type", "result")
_RAW_ONLY_FIELDS = {"project_name", "elapsed_ms", "content", "contentLength", "diff", "type"}


def parse_trace_entry(entry: Dict[str, Any]) -> TraceRecord:
    tool = entry.get("tool") or entry.get("kind") or "unknown"
    kind = _TOOL_KINDS.get(tool, tool)
    data: Dict[str, Any] = {field: entry.get(field) for field in _COMMON_FIELDS}
    data["kind"] = kind

    if kind == "command":
        data["command"] = entry.get("command")
    elif kind == "apply_patch":
        data["patch"] = entry.get("patch", entry.get("diff"))
    elif kind == "write_file":
        data["path"] = entry.get("path")
        data["overwrite"] = entry.get("overwrite")
        length = entry.get("content_length", entry.get("contentLength"))
        if length is None and isinstance(entry.get("content"), str):
            length = len(entry["content"])
        data["content_length"] = length
    elif kind == "note":
        data["note_type"] = entry.get("type", entry.get("note_type"))
        data["text"] = entry.get("text")
    else:
        # Lifecycle and unknown tools pass their payload through.
        for key, value in entry.items():
            if key not in data and key not in _RAW_ONLY_FIELDS:
                data[key] = value
    return TraceRecord(**data)


def iter_trace_lines(path: Path) -> Iterator[Dict[str, Any]]:
    try:
        with path.open("r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug(f"TraceReader: Skipping malformed line {line_number} in {path}")
                    continue
                if isinstance(entry, dict):
                    yield entry
    except FileNotFoundError:
        return


def trace_files(traces_dir: Path) -> List[Path]:
    """Archived sessions oldest first, then the current session."""
    traces_dir = Path(traces_dir)
    sessions_dir = traces_dir / SESSIONS_DIR
    files = sorted(sessions_dir.glob("*.jsonl")) if sessions_dir.is_dir() else []
    current = traces_dir / CURRENT_FILE
    if current.is_file():
        files.append(current)
    return files


def list_sessions(traces_dir: Path) -> List[str]:
    traces_dir = Path(traces_dir)
    sessions_dir = traces_dir / SESSIONS_DIR
    sessions: List[str] = []
    if sessions_dir.is_dir():
        archived = sorted(sessions_dir.glob("*.jsonl"), key=lambda p: p.stat().st_mtime)
        sessions.extend(p.stem for p in archived)
    if (traces_dir / CURRENT_FILE).is_file():
        sessions.append("current")
    return sessions


def _matches_search(record: TraceRecord, search: str) -> bool:
    haystacks = [record.command, record.text, record.patch, record.path]
    if record.result:
        haystacks.append(record.result.get("output"))
    return any(isinstance(h, str) and search in h for h in haystacks)


def read_traces(
    traces_dir: Path,
    type: Optional[str] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = DEFAULT_LIMIT,
) -> List[TraceRecord]:
    """Filtered, most-recent-first page of trace records.

    ``type`` matches either the record kind (``command``, ``write_file``,
    ...) or a note's type (``user``, ``agent``, ``summary``). ``search`` is a
    case-sensitive substring match over command, text, patch, path and
    result output.
    """
    records: List[TraceRecord] = []
    for path in trace_files(traces_dir):
        for entry in iter_trace_lines(path):
            try:
                records.append(parse_trace_entry(entry))
            except (ValueError, TypeError) as e:
                logger.debug(f"TraceReader: Skipping unparseable entry in {path}: {e}")
    records.reverse()

    if type:
        records = [r for r in records if r.kind == type or r.note_type == type]
    if search:
        records = [r for r in records if _matches_search(r, search)]

    skip = max(0, skip or 0)
    limit = DEFAULT_LIMIT if limit is None else max(0, limit)
    return records[skip:skip + limit]
