"""Value types shared by the DockaShell core.

Project configuration, execution results and trace entries are pydantic
models so they can be validated on load and dumped straight to JSON.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_IMAGE = "dockashell/default-dev:latest"
DEFAULT_WORKING_DIR = "/workspace"
DEFAULT_SHELL = "/bin/bash"
DEFAULT_MAX_EXECUTION_TIME = 300

DEFAULT_BLOCKED_COMMANDS = [
    "rm -rf /",
    ":(){ :|:& };:",
    "sudo rm -rf",
    "mkfs",
    "dd if=/dev/zero",
    "sudo passwd",
]


class MountConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = Field(..., description="Host path; a leading '~' is expanded when the container is created")
    container: str = Field(..., description="Absolute path inside the container")
    readonly: bool = Field(False, description="Bind the mount read-only")


class PortMapping(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: int = Field(..., description="Host port")
    container: int = Field(..., description="Container port (tcp)")


class SecuritySettings(BaseModel):
    # Loosely typed on purpose: the policy applies its own fallback rules to bad values.
    model_config = ConfigDict(frozen=True, extra="allow")

    max_execution_time: Any = Field(DEFAULT_MAX_EXECUTION_TIME, description="Seconds a single exec may run, in (0, 3600]")
    restricted_mode: bool = Field(False, description="Enable blocked-command checks")
    blocked_commands: Any = Field(None, description="Patterns to block; defaults are used when not a list")


class ProjectConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    description: str = ""
    image: str = DEFAULT_IMAGE
    mounts: List[MountConfig] = Field(default_factory=list)
    ports: List[PortMapping] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)
    working_dir: str = DEFAULT_WORKING_DIR
    shell: str = DEFAULT_SHELL
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    devcontainer: Optional[str] = Field(None, description="Path to a devcontainer.json, relative to the first mount's host path")

    @property
    def container_name(self) -> str:
        return container_name_for(self.name)


def container_name_for(project_name: str) -> str:
    return f"dockashell-{project_name}"


class ExecutionResult(BaseModel):
    success: bool
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration: float = Field(0.0, description="Wall-clock seconds, rounded to 2 decimals")

    @property
    def output(self) -> str:
        """stdout and stderr joined the way patch results are reported."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class TraceResult(BaseModel):
    exit_code: int
    duration: str = Field(..., description="Formatted as '<seconds>s', e.g. '1.23s'")
    timed_out: bool = False
    output: str = ""
    stderr: Optional[str] = None


class TraceRecord(BaseModel):
    """A normalized trace entry, as returned by the reader."""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: Optional[str] = None
    kind: str
    tool: Optional[str] = None
    trace_type: Optional[str] = None
    command: Optional[str] = None
    patch: Optional[str] = None
    path: Optional[str] = None
    overwrite: Optional[bool] = None
    content_length: Optional[int] = None
    note_type: Optional[str] = None
    text: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
