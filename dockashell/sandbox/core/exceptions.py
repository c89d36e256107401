"""Exception classes for the sandbox system.
This module defines the errors raised by the container lifecycle manager,
the execution engine and the policy gate. A command that runs past its
deadline is not an error: it is reported through ``ExecutionResult.timed_out``.
"""

from dockashell.exceptions import DockaShellError


class SandboxError(DockaShellError):
    """Base exception for sandbox-related errors."""
    pass

class ContainerNotRunningError(SandboxError):
    """Raised when an exec is requested against an absent or stopped container."""
    def __init__(self, project_name: str, message: str = "Container is not running. Please start the project first."):
        self.project_name = project_name
        super().__init__(message)

class CommandBlockedError(SandboxError):
    """Raised when the security policy rejects a command."""
    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Command blocked by security policy: {command}")

class DaemonError(SandboxError):
    """Raised for unexpected failures reported by the Docker daemon."""
    pass
