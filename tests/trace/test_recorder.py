"""Tests for trace session recording and rotation."""
import json
from datetime import datetime, timezone

import pytest

from dockashell.trace.recorder import (
    TraceRecorder,
    TraceRegistry,
    format_timestamp,
    generate_id,
    parse_timestamp,
)

FOUR_HOURS = 4 * 3600


def read_lines(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


@pytest.fixture
def traces_dir(tmp_path):
    return tmp_path / "projects" / "demo" / "traces"


@pytest.fixture
def recorder(traces_dir, clock):
    return TraceRecorder("demo", traces_dir, session_timeout=FOUR_HOURS, clock=clock)


def test_timestamp_format_round_trips_with_millisecond_precision():
    moment = datetime(2025, 3, 4, 5, 6, 7, 891234, tzinfo=timezone.utc)
    assert format_timestamp(moment) == "2025-03-04T05:06:07.891Z"
    assert parse_timestamp("2025-03-04T05:06:07.891Z") == moment.replace(microsecond=891000)


def test_ids_carry_their_prefix(clock):
    assert generate_id("ses", clock()).startswith("ses_")
    assert generate_id("tr", clock()).startswith("tr_")
    assert generate_id("tr", clock()) != generate_id("tr", clock())


def test_record_appends_one_line_per_entry(recorder, clock):
    first = recorder.execution("run_command", {"command": "ls"}, {"exit_code": 0, "duration": "0.10s", "timed_out": False, "output": "a"})
    clock.advance(seconds=2, milliseconds=500)
    second = recorder.observation("agent", "looked around")

    entries = read_lines(recorder.current_file)
    assert [e["id"] for e in entries] == [first["id"], second["id"]]
    assert entries[0]["session_id"] == entries[1]["session_id"] == recorder.session_id
    assert entries[0]["project_name"] == "demo"
    assert entries[0]["trace_type"] == "execution"
    assert entries[0]["command"] == "ls"
    assert entries[0]["result"]["exit_code"] == 0
    assert entries[1]["tool"] == "write_trace"
    assert entries[1]["trace_type"] == "observation"
    assert entries[1]["type"] == "agent"
    assert entries[1]["elapsed_ms"] == 2500


def test_gap_within_timeout_keeps_the_session(recorder, clock):
    recorder.observation("user", "one")
    session = recorder.session_id
    clock.advance(hours=3, minutes=59)
    recorder.observation("user", "two")
    assert recorder.session_id == session
    assert not recorder.sessions_dir.exists()


def test_idle_gap_rotates_the_session(recorder, clock):
    recorder.observation("user", "one")
    session_start = format_timestamp(clock())
    old_session = recorder.session_id

    clock.advance(hours=4, seconds=1)
    entry = recorder.observation("user", "two")

    assert entry["session_id"] != old_session
    archives = list(recorder.sessions_dir.glob("*.jsonl"))
    assert [a.name for a in archives] == [session_start.replace(":", "-") + ".jsonl"]
    assert [e["text"] for e in read_lines(archives[0])] == ["one"]
    assert [e["text"] for e in read_lines(recorder.current_file)] == ["two"]
    assert entry["elapsed_ms"] == 0


def test_new_recorder_resumes_a_fresh_session(traces_dir, clock, recorder):
    recorder.observation("user", "before restart")
    clock.advance(minutes=30)

    resumed = TraceRecorder("demo", traces_dir, session_timeout=FOUR_HOURS, clock=clock)
    assert resumed.session_id == recorder.session_id
    entry = resumed.observation("user", "after restart")
    assert entry["elapsed_ms"] == 30 * 60 * 1000
    assert len(read_lines(resumed.current_file)) == 2


def test_new_recorder_archives_an_expired_session(traces_dir, clock, recorder):
    recorder.observation("user", "yesterday")
    old_session = recorder.session_id
    clock.advance(days=1)

    fresh = TraceRecorder("demo", traces_dir, session_timeout=FOUR_HOURS, clock=clock)
    assert fresh.session_id != old_session
    assert not fresh.current_file.exists()
    assert len(list(fresh.sessions_dir.glob("*.jsonl"))) == 1


def test_unreadable_current_file_is_archived(traces_dir, clock):
    traces_dir.mkdir(parents=True)
    (traces_dir / "current.jsonl").write_text("garbage\n{also garbage\n", encoding="utf-8")

    recorder = TraceRecorder("demo", traces_dir, session_timeout=FOUR_HOURS, clock=clock)
    assert not recorder.current_file.exists()
    assert len(list(recorder.sessions_dir.glob("*.jsonl"))) == 1
    recorder.observation("user", "fresh start")
    assert len(read_lines(recorder.current_file)) == 1


def test_archive_name_collisions_get_a_suffix(recorder, clock):
    sessions = recorder.sessions_dir
    sessions.mkdir(parents=True)
    taken = format_timestamp(clock()).replace(":", "-")
    (sessions / f"{taken}.jsonl").write_text("", encoding="utf-8")

    recorder.observation("user", "one")
    recorder.close()
    assert (sessions / f"{taken}_1.jsonl").exists()


def test_close_is_idempotent(recorder):
    recorder.observation("user", "one")
    recorder.close()
    recorder.close()
    assert not recorder.current_file.exists()
    assert len(list(recorder.sessions_dir.glob("*.jsonl"))) == 1
    assert recorder.session_id is None


class TestTraceRegistry:
    def test_get_returns_one_recorder_per_project(self, tmp_path, clock):
        registry = TraceRegistry(lambda name: tmp_path / name / "traces", session_timeout=FOUR_HOURS, clock=clock)
        assert registry.get("a") is registry.get("a")
        assert registry.get("a") is not registry.get("b")

    def test_shutdown_closes_only_idle_sessions(self, tmp_path, clock):
        registry = TraceRegistry(lambda name: tmp_path / name / "traces", session_timeout=FOUR_HOURS, clock=clock)
        idle = registry.get("idle")
        idle.observation("user", "old")
        clock.advance(hours=5)
        active = registry.get("active")
        active.observation("user", "recent")

        registry.shutdown()

        assert not idle.current_file.exists()
        assert active.current_file.exists()
        assert registry.get("active") is not active

    def test_close_archives_the_project_session(self, tmp_path, clock):
        registry = TraceRegistry(lambda name: tmp_path / name / "traces", session_timeout=FOUR_HOURS, clock=clock)
        recorder = registry.get("demo")
        recorder.observation("summary", "done")
        registry.close("demo")
        assert not recorder.current_file.exists()
