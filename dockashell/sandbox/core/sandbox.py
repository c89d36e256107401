"""
Execution engine for DockaShell project containers.
Runs shell commands, applies patches and writes files inside a project's
running container. Every operation is bounded by a timeout, keeps whatever
output arrived before the deadline, and leaves one trace entry behind
whether it succeeded, failed, timed out or raised.
"""
import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from docker.errors import DockerException # type: ignore

from dockashell.config import config
from dockashell.logger import logger
from dockashell.sandbox.core.exceptions import DaemonError
from dockashell.sandbox.core.manager import ContainerManager
from dockashell.sandbox.core.terminal import ExecSession, OutputBuffer, race_with_timeout
from dockashell.schema import DEFAULT_SHELL, ExecutionResult, ProjectConfig, TraceResult
from dockashell.trace.recorder import TraceRegistry

# Upper bound on the best-effort kill sent after a command times out.
TERMINATE_TIMEOUT = 5.0

COMMAND_TIMEOUT_MESSAGE = "Command timed out"
PATCH_TIMEOUT_MESSAGE = "Patch apply timed out"
WRITE_TIMEOUT_MESSAGE = "Write file timed out"

# FILE and OVERWRITE come from the exec environment; content arrives on stdin.
WRITE_FILE_SCRIPT = """set -e
mkdir -p "$(dirname "$FILE")"
if [ -f "$FILE" ] && [ "$OVERWRITE" != "true" ]; then
  echo "File exists: $FILE (use overwrite to replace it)" >&2
  exit 1
fi
cat > "$FILE"
"""

SessionFactory = Callable[..., ExecSession]


def format_duration(seconds: float) -> str:
    return f"{seconds:.2f}s"


class ExecutionEngine:
    """Runs exec-based operations against running project containers.

    Concurrent operations against the same container are not serialized.
    """

    def __init__(
        self,
        container_manager: ContainerManager,
        trace_registry: Optional[TraceRegistry] = None,
        session_factory: Optional[SessionFactory] = None,
        apply_patch_command: Optional[str] = None,
    ):
        self.container_manager = container_manager
        self.trace_registry = trace_registry
        self.session_factory: SessionFactory = session_factory or ExecSession
        self.apply_patch_command = apply_patch_command or config.docker.apply_patch_command

    async def execute_command(
        self,
        project_name: str,
        command: str,
        timeout_ms: Optional[int] = None,
        project: Optional[ProjectConfig] = None,
    ) -> ExecutionResult:
        started = time.monotonic()
        shell = project.shell if project else DEFAULT_SHELL
        try:
            info = await self.container_manager.require_running(project_name)
            result = await self._run_exec(
                info["Id"],
                [shell, "-c", command],
                timeout_ms,
                started,
                workdir=project.working_dir if project else None,
                kill_on_timeout=True,
                timeout_message=COMMAND_TIMEOUT_MESSAGE,
            )
        except Exception as e:
            await self._record_failure(project_name, "run_command", {"command": command}, started, e)
            if isinstance(e, DockerException):
                raise DaemonError(f"Failed to run command in '{project_name}': {e}") from e
            raise

        if result.timed_out:
            logger.warning(f"ExecutionEngine [{project_name}]: command timed out after {result.duration}s: {command[:80]}")
        await self._safe_record(project_name, "run_command", {"command": command}, TraceResult(
            exit_code=result.exit_code,
            duration=format_duration(result.duration),
            timed_out=result.timed_out,
            output=result.stdout,
            stderr=result.stderr,
        ))
        return result

    async def apply_patch(
        self,
        project_name: str,
        patch: str,
        timeout_ms: Optional[int] = None,
        project: Optional[ProjectConfig] = None,
    ) -> ExecutionResult:
        started = time.monotonic()
        params = {"patch": patch}
        try:
            info = await self.container_manager.require_running(project_name)
            result = await self._run_exec(
                info["Id"],
                [self.apply_patch_command],
                timeout_ms,
                started,
                stdin_data=patch.encode("utf-8"),
                workdir=project.working_dir if project else None,
                timeout_message=PATCH_TIMEOUT_MESSAGE,
            )
        except Exception as e:
            await self._record_failure(project_name, "apply_patch", params, started, e)
            if isinstance(e, DockerException):
                raise DaemonError(f"Failed to apply patch in '{project_name}': {e}") from e
            raise

        await self._safe_record(project_name, "apply_patch", params, self._trace_result(result))
        return result

    async def write_file(
        self,
        project_name: str,
        path: str,
        content: str,
        overwrite: bool = False,
        timeout_ms: Optional[int] = None,
        project: Optional[ProjectConfig] = None,
    ) -> ExecutionResult:
        started = time.monotonic()
        content = content or ""
        params = {
            "path": path,
            "overwrite": overwrite,
            "content": content,
            "content_length": len(content),
        }
        try:
            info = await self.container_manager.require_running(project_name)
            result = await self._run_exec(
                info["Id"],
                [project.shell if project else DEFAULT_SHELL, "-c", WRITE_FILE_SCRIPT],
                timeout_ms,
                started,
                stdin_data=content.encode("utf-8"),
                environment={"FILE": path, "OVERWRITE": "true" if overwrite else "false"},
                workdir=project.working_dir if project else None,
                timeout_message=WRITE_TIMEOUT_MESSAGE,
            )
        except Exception as e:
            await self._record_failure(project_name, "write_file", params, started, e)
            if isinstance(e, DockerException):
                raise DaemonError(f"Failed to write file in '{project_name}': {e}") from e
            raise

        await self._safe_record(project_name, "write_file", params, self._trace_result(result))
        return result

    async def _run_exec(
        self,
        container_id: str,
        cmd: List[str],
        timeout_ms: Optional[int],
        started: float,
        stdin_data: Optional[bytes] = None,
        environment: Optional[Dict[str, str]] = None,
        workdir: Optional[str] = None,
        kill_on_timeout: bool = False,
        timeout_message: str = COMMAND_TIMEOUT_MESSAGE,
    ) -> ExecutionResult:
        timeout_ms = timeout_ms or config.docker.default_timeout_ms
        session = self.session_factory(
            self.container_manager.api,
            container_id,
            cmd,
            environment=environment,
            workdir=workdir,
            attach_stdin=stdin_data is not None,
        )
        stdout, stderr = OutputBuffer(), OutputBuffer()

        def run() -> int:
            session.start(stdin_data)
            session.pump(stdout, stderr)
            return session.exit_code()

        async def on_timeout() -> None:
            # Closing first releases the pump thread, which the kill may need.
            session.close()
            if kill_on_timeout:
                try:
                    await asyncio.wait_for(asyncio.to_thread(session.terminate), TERMINATE_TIMEOUT)
                except asyncio.TimeoutError:
                    logger.warning(f"ExecutionEngine: kill of timed out exec in {container_id[:12]} did not finish in {TERMINATE_TIMEOUT}s")

        try:
            timed_out, exit_code = await race_with_timeout(asyncio.to_thread(run), timeout_ms / 1000, on_timeout)
        finally:
            session.close()

        duration = round(time.monotonic() - started, 2)
        if timed_out:
            return ExecutionResult(
                success=False,
                exit_code=-1,
                stdout=stdout.getvalue().strip(),
                stderr=stderr.getvalue().strip() or timeout_message,
                timed_out=True,
                duration=duration,
            )
        return ExecutionResult(
            success=exit_code == 0,
            exit_code=exit_code,
            stdout=stdout.getvalue().strip(),
            stderr=stderr.getvalue().strip(),
            timed_out=False,
            duration=duration,
        )

    @staticmethod
    def _trace_result(result: ExecutionResult) -> TraceResult:
        return TraceResult(
            exit_code=result.exit_code,
            duration=format_duration(result.duration),
            timed_out=result.timed_out,
            output=result.output,
        )

    async def _record_failure(self, project_name: str, tool: str, params: Dict[str, Any], started: float, error: Exception) -> None:
        logger.error(f"ExecutionEngine [{project_name}]: {tool} failed: {error}")
        await self._safe_record(project_name, tool, params, TraceResult(
            exit_code=-1,
            duration=format_duration(time.monotonic() - started),
            output=str(error),
        ))

    async def _safe_record(self, project_name: str, tool: str, params: Dict[str, Any], result: TraceResult) -> None:
        if self.trace_registry is None:
            return
        registry = self.trace_registry
        payload = result.model_dump(exclude_none=True)
        try:
            # Loading a recorder reads current.jsonl; keep file I/O off the event loop.
            await asyncio.to_thread(lambda: registry.get(project_name).execution(tool, params, payload))
        except Exception as e:
            logger.error(f"ExecutionEngine [{project_name}]: failed to record {tool} trace: {e}")
