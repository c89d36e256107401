"""Append-only, time-rotated trace sessions.

Each project owns ``traces/current.jsonl`` (the live session) and
``traces/sessions/`` (immutable archives). A session ends when the gap since
its last entry exceeds the configured timeout; the next entry archives the
current file under the session's start timestamp and mints a new session id.
A recorder constructed over an existing, still-fresh ``current.jsonl``
resumes that session, so restarting the host process does not split a
session in two.
"""
import json
import secrets
import string
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from dockashell.config import config
from dockashell.logger import logger

CURRENT_FILE = "current.jsonl"
SESSIONS_DIR = "sessions"

_BASE36 = string.digits + string.ascii_lowercase

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_id(prefix: str, moment: datetime) -> str:
    random_part = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{prefix}_{_base36(int(moment.timestamp() * 1000))}{random_part}"


class TraceRecorder:
    """Per-project trace writer.

    Rotation and append are serialized by an in-process lock; nothing is
    locked across processes.
    """

    def __init__(
        self,
        project_name: str,
        traces_dir: Path,
        session_timeout: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        self.project_name = project_name
        self.traces_dir = Path(traces_dir)
        self.current_file = self.traces_dir / CURRENT_FILE
        self.sessions_dir = self.traces_dir / SESSIONS_DIR
        self.session_timeout = (
            session_timeout if session_timeout is not None else config.traces.session_timeout_seconds
        )
        self._clock = clock or utc_now
        self._lock = threading.Lock()

        self.session_id: Optional[str] = None
        self.session_start: Optional[datetime] = None
        self.last_activity: Optional[datetime] = None

        with self._lock:
            self._load_or_start()

    # --- session management -------------------------------------------------

    def _load_or_start(self) -> None:
        now = self._clock()
        if not self.current_file.is_file() or self.current_file.stat().st_size == 0:
            self._start_session(now)
            return

        bounds = self._read_bounds()
        if bounds is None:
            logger.warning(f"TraceRecorder [{self.project_name}]: current.jsonl is unreadable, archiving it")
            mtime = datetime.fromtimestamp(self.current_file.stat().st_mtime, tz=timezone.utc)
            self._archive_current(mtime)
            self._start_session(now)
            return

        first, last = bounds
        last_time = parse_timestamp(last["timestamp"])
        first_time = parse_timestamp(first["timestamp"])
        if (now - last_time).total_seconds() > self.session_timeout:
            logger.debug(f"TraceRecorder [{self.project_name}]: previous session expired, archiving")
            self._archive_current(first_time)
            self._start_session(now)
            return

        self.session_id = last.get("session_id") or generate_id("ses", first_time)
        self.session_start = first_time
        self.last_activity = last_time
        logger.debug(f"TraceRecorder [{self.project_name}]: resumed session {self.session_id}")

    def _read_bounds(self) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
        """First and last parseable entries of current.jsonl, or None."""
        first = last = None
        try:
            with self.current_file.open("r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = json.loads(line)
                        parse_timestamp(entry["timestamp"])
                    except (ValueError, KeyError, TypeError, AttributeError):
                        continue
                    if first is None:
                        first = entry
                    last = entry
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"TraceRecorder [{self.project_name}]: failed to read current.jsonl: {e}")
            return None
        if first is None or last is None:
            return None
        return first, last

    def _start_session(self, now: datetime) -> None:
        self.session_id = generate_id("ses", now)
        self.session_start = now
        self.last_activity = now

    def _archive_current(self, started_at: datetime) -> Optional[Path]:
        if not self.current_file.exists():
            return None
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        stem = format_timestamp(started_at).replace(":", "-")
        target = self.sessions_dir / f"{stem}.jsonl"
        suffix = 1
        while target.exists():
            target = self.sessions_dir / f"{stem}_{suffix}.jsonl"
            suffix += 1
        self.current_file.rename(target)
        return target

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.last_activity is None:
            return False
        now = now or self._clock()
        return (now - self.last_activity).total_seconds() > self.session_timeout

    # --- writing -------------------------------------------------------------

    def record(self, tool: str, trace_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            if self.session_id is None:
                self._start_session(now)
            elif self.is_expired(now):
                self._archive_current(self.session_start or now)
                self._start_session(now)
                logger.debug(f"TraceRecorder [{self.project_name}]: rotated to session {self.session_id}")

            entry = {
                "id": generate_id("tr", now),
                "session_id": self.session_id,
                "project_name": self.project_name,
                "timestamp": format_timestamp(now),
                "elapsed_ms": int((now - self.session_start).total_seconds() * 1000),
                "tool": tool,
                "trace_type": trace_type,
                **payload,
            }
            self.traces_dir.mkdir(parents=True, exist_ok=True)
            line = json.dumps(entry, ensure_ascii=False, default=str) + "\n"
            with self.current_file.open("a", encoding="utf-8") as f:
                f.write(line)
            self.last_activity = now
            return entry

    def execution(self, tool: str, params: Dict[str, Any], result: Dict[str, Any]) -> Dict[str, Any]:
        return self.record(tool, "execution", {**params, "result": result})

    def observation(self, note_type: str, text: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.record("write_trace", "observation", {"type": note_type, "text": text, **(metadata or {})})

    def close(self) -> None:
        with self._lock:
            if self.current_file.exists():
                self._archive_current(self.session_start or self._clock())
            self.session_id = None
            self.session_start = None
            self.last_activity = None


class TraceRegistry:
    """Owns one TraceRecorder per project for the life of the host process."""

    def __init__(
        self,
        traces_dir_for: Callable[[str], Path],
        session_timeout: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        self._traces_dir_for = traces_dir_for
        self._session_timeout = session_timeout
        self._clock = clock
        self._recorders: Dict[str, TraceRecorder] = {}
        self._lock = threading.Lock()

    def get(self, project_name: str) -> TraceRecorder:
        with self._lock:
            recorder = self._recorders.get(project_name)
            if recorder is None:
                recorder = TraceRecorder(
                    project_name,
                    self._traces_dir_for(project_name),
                    session_timeout=self._session_timeout,
                    clock=self._clock,
                )
                self._recorders[project_name] = recorder
            return recorder

    def close(self, project_name: str) -> None:
        with self._lock:
            recorder = self._recorders.pop(project_name, None)
        if recorder is not None:
            recorder.close()

    def shutdown(self) -> None:
        """Close sessions that are already idle past the timeout; leave the rest resumable."""
        with self._lock:
            recorders = list(self._recorders.values())
            self._recorders.clear()
        for recorder in recorders:
            try:
                if recorder.is_expired():
                    recorder.close()
            except OSError as e:
                logger.error(f"TraceRegistry: Failed to close session for '{recorder.project_name}': {e}")
