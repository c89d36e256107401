from dockashell.trace.reader import list_sessions, parse_trace_entry, read_traces
from dockashell.trace.recorder import TraceRecorder, TraceRegistry

__all__ = ["TraceRecorder", "TraceRegistry", "read_traces", "parse_trace_entry", "list_sessions"]
