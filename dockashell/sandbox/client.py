from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from docker import APIClient # type: ignore

from dockashell.exceptions import InvalidInputError
from dockashell.logger import logger
from dockashell.project_manager import ProjectManager, validate_project_name
from dockashell.sandbox.core.manager import ContainerManager
from dockashell.sandbox.core.sandbox import ExecutionEngine, SessionFactory
from dockashell.schema import ExecutionResult, TraceRecord
from dockashell.security import SecurityManager
from dockashell.trace.reader import DEFAULT_LIMIT, read_traces
from dockashell.trace.recorder import Clock, TraceRegistry

NOTE_TYPES = ("user", "agent", "summary")


class BaseSandboxClient(ABC):
    """DockaShell sandbox client interface."""
    @abstractmethod
    async def run_command(self, project_name: str, command: str) -> ExecutionResult:
        """Executes a shell command in the project's container."""
        pass
    @abstractmethod
    async def apply_patch(self, project_name: str, patch: str) -> ExecutionResult:
        """Applies a patch inside the project's container."""
        pass
    @abstractmethod
    async def write_file(self, project_name: str, path: str, content: str, overwrite: bool = False) -> ExecutionResult:
        """Writes a file inside the project's container."""
        pass
    @abstractmethod
    async def cleanup(self) -> None:
        """Releases in-process resources. Containers keep running."""
        pass


class SandboxClient(BaseSandboxClient):
    """Policy gate in front of the execution engine.

    Every operation validates its input (and, for commands, the project's
    security policy) before any daemon call is made.
    """

    def __init__(
        self,
        project_manager: Optional[ProjectManager] = None,
        api: Optional[APIClient] = None,
        security: Optional[SecurityManager] = None,
        session_timeout: Optional[float] = None,
        clock: Optional[Clock] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.project_manager = project_manager or ProjectManager()
        self.security = security or SecurityManager()
        self.traces = TraceRegistry(self.project_manager.traces_dir, session_timeout=session_timeout, clock=clock)
        self.containers = ContainerManager(api=api, project_manager=self.project_manager, trace_registry=self.traces)
        self.engine = ExecutionEngine(self.containers, trace_registry=self.traces, session_factory=session_factory)

    # --- lifecycle ------------------------------------------------------------

    async def start_project(self, project_name: str) -> Dict[str, Any]:
        validate_project_name(project_name)
        return await self.containers.start_container(project_name)

    async def stop_project(self, project_name: str) -> Dict[str, Any]:
        validate_project_name(project_name)
        return await self.containers.stop_container(project_name)

    async def project_status(self, project_name: str) -> Dict[str, Any]:
        validate_project_name(project_name)
        return await self.containers.get_status(project_name)

    def list_projects(self) -> List[Dict[str, Any]]:
        return self.project_manager.list_projects()

    # --- execution ------------------------------------------------------------

    async def run_command(self, project_name: str, command: str) -> ExecutionResult:
        validate_project_name(project_name)
        project = self.project_manager.load_project(project_name)
        self.security.validate_command(command, project)
        timeout_ms = int(self.security.get_max_execution_time(project) * 1000)
        logger.info(f"SandboxClient [{project_name}]: run_command (timeout {timeout_ms}ms): {command[:120]}")
        return await self.engine.execute_command(project_name, command, timeout_ms=timeout_ms, project=project)

    async def apply_patch(self, project_name: str, patch: str) -> ExecutionResult:
        validate_project_name(project_name)
        if not isinstance(patch, str) or not patch.strip():
            raise InvalidInputError("Patch must be a non-empty string")
        project = self.project_manager.load_project(project_name)
        timeout_ms = int(self.security.get_max_execution_time(project) * 1000)
        logger.info(f"SandboxClient [{project_name}]: apply_patch ({len(patch)} chars)")
        return await self.engine.apply_patch(project_name, patch, timeout_ms=timeout_ms, project=project)

    async def write_file(self, project_name: str, path: str, content: Optional[str], overwrite: bool = False) -> ExecutionResult:
        validate_project_name(project_name)
        if not isinstance(path, str) or not path.strip():
            raise InvalidInputError("Path must be a non-empty string")
        if content is not None and not isinstance(content, str):
            raise InvalidInputError("Content must be a string")
        project = self.project_manager.load_project(project_name)
        timeout_ms = int(self.security.get_max_execution_time(project) * 1000)
        logger.info(f"SandboxClient [{project_name}]: write_file {path} (overwrite={overwrite})")
        return await self.engine.write_file(
            project_name, path, content or "", overwrite=bool(overwrite), timeout_ms=timeout_ms, project=project
        )

    # --- traces ---------------------------------------------------------------

    def read_traces(
        self,
        project_name: str,
        type: Optional[str] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> List[TraceRecord]:
        validate_project_name(project_name)
        return read_traces(self.project_manager.traces_dir(project_name), type=type, search=search, skip=skip, limit=limit)

    def write_trace(self, project_name: str, type: str, text: str) -> Dict[str, Any]:
        validate_project_name(project_name)
        if type not in NOTE_TYPES:
            raise InvalidInputError(f"Trace type must be one of: {', '.join(NOTE_TYPES)}")
        if not isinstance(text, str) or not text.strip():
            raise InvalidInputError("Trace text must be a non-empty string")
        return self.traces.get(project_name).observation(type, text)

    async def cleanup(self) -> None:
        logger.info("SandboxClient: Cleaning up (containers are left running)")
        self.containers.cleanup()
        self.traces.shutdown()


def create_sandbox_client() -> SandboxClient:
    project_manager = ProjectManager()
    project_manager.ensure_config_structure()
    return SandboxClient(project_manager=project_manager)
