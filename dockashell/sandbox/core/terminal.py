"""
Docker exec plumbing for the DockaShell sandbox.
This module wraps a single Docker exec instance (create, optional stdin
streaming, demultiplexed output capture, exit status, best-effort SIGTERM)
and provides ``race_with_timeout``, the primitive every engine operation
uses to bound its wall-clock time.

The Docker SDK is blocking; ``ExecSession`` methods are meant to be called
from worker threads (``asyncio.to_thread``).
"""
import asyncio
import socket
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from docker import APIClient # type: ignore
from docker.errors import APIError, DockerException # type: ignore
from docker.utils.socket import STDERR, STDOUT, frames_iter # type: ignore

from dockashell.logger import logger

MAX_OUTPUT_BYTES = 128 * 1024
TRUNCATION_MARKER = "[truncated]"

# After the output stream closes the daemon may take a moment to flip Running to False.
EXIT_CODE_POLL_ATTEMPTS = 40
EXIT_CODE_POLL_INTERVAL = 0.05

T = TypeVar("T")


class OutputBuffer:
    """Byte-capped, thread-safe accumulator for one output stream."""

    def __init__(self, limit: int = MAX_OUTPUT_BYTES) -> None:
        self.limit = limit
        self.truncated = False
        self._data = bytearray()
        self._lock = threading.Lock()

    def write(self, chunk: bytes) -> None:
        if not chunk:
            return
        with self._lock:
            room = self.limit - len(self._data)
            if len(chunk) > room:
                self.truncated = True
                chunk = chunk[:max(room, 0)]
            self._data.extend(chunk)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def getvalue(self) -> str:
        """Decoded contents, with the truncation marker appended when bytes were dropped."""
        with self._lock:
            text = bytes(self._data).decode("utf-8", errors="replace")
            if self.truncated:
                text += TRUNCATION_MARKER
            return text


class ExecSession:
    """One exec instance inside a running container."""

    def __init__(
        self,
        api: APIClient,
        container_id: str,
        cmd: List[str],
        environment: Optional[Dict[str, str]] = None,
        workdir: Optional[str] = None,
        attach_stdin: bool = False,
    ) -> None:
        self.api = api
        self.container_id = container_id
        self.cmd = cmd
        self.environment = environment
        self.workdir = workdir
        self.attach_stdin = attach_stdin
        self.exec_id: Optional[str] = None
        self.socket: Optional[socket.socket] = None
        self._closed = False
        self._lock = threading.Lock()

    def start(self, stdin_data: Optional[bytes] = None) -> None:
        """Create and start the exec, then stream ``stdin_data`` and half-close stdin.

        Stdin is written in full before any output is read, so this suits
        payloads whose commands produce little output (patches, file contents).
        """
        exec_data = self.api.exec_create(
            self.container_id,
            self.cmd,
            stdin=self.attach_stdin,
            stdout=True,
            stderr=True,
            tty=False,
            environment=self.environment,
            workdir=self.workdir,
        )
        self.exec_id = exec_data["Id"]
        sock = self.api.exec_start(self.exec_id, socket=True, tty=False)
        if hasattr(sock, "_sock"):
            sock = sock._sock # type: ignore

        with self._lock:
            if self._closed:
                # Timed out while the daemon was still answering exec_start.
                _close_socket(sock)
                return
            self.socket = sock

        if self.attach_stdin:
            if stdin_data:
                sock.sendall(stdin_data)
            sock.shutdown(socket.SHUT_WR)

    def pump(self, stdout: OutputBuffer, stderr: OutputBuffer) -> None:
        """Demultiplex frames into the two buffers until the stream ends or is closed."""
        sock = self.socket
        if sock is None:
            return
        try:
            for stream, data in frames_iter(sock, tty=False):
                if stream == STDOUT:
                    stdout.write(data)
                elif stream == STDERR:
                    stderr.write(data)
        except (OSError, ValueError) as e:
            # ValueError: the socket was closed before select/poll registered it.
            if not self._closed:
                raise
            logger.debug(f"ExecSession: stream for exec {self.exec_id} closed during teardown: {e}")

    def exit_code(self) -> int:
        if self.exec_id is None:
            return -1
        info: Dict[str, Any] = {}
        for _ in range(EXIT_CODE_POLL_ATTEMPTS):
            info = self.api.exec_inspect(self.exec_id)
            if not info.get("Running"):
                break
            time.sleep(EXIT_CODE_POLL_INTERVAL)
        exit_code = info.get("ExitCode")
        return exit_code if isinstance(exit_code, int) else -1

    def pid(self) -> Optional[int]:
        if self.exec_id is None:
            return None
        pid = self.api.exec_inspect(self.exec_id).get("Pid")
        return pid if isinstance(pid, int) and pid > 0 else None

    def terminate(self) -> None:
        """Best effort: send SIGTERM to the exec'd process. Failures are logged, never raised."""
        try:
            pid = self.pid()
            if pid is None:
                return
            kill_exec = self.api.exec_create(self.container_id, ["kill", "-TERM", str(pid)])
            self.api.exec_start(kill_exec["Id"], detach=True)
            logger.debug(f"ExecSession: sent SIGTERM to pid {pid} in {self.container_id}")
        except (APIError, DockerException, OSError) as e:
            logger.debug(f"ExecSession: failed to terminate exec {self.exec_id}: {e}")

    def close(self) -> None:
        with self._lock:
            self._closed = True
            sock, self.socket = self.socket, None
        if sock is not None:
            _close_socket(sock)


def _close_socket(sock: Any) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass # already disconnected
    try:
        sock.close()
    except OSError as e:
        logger.debug(f"ExecSession: error closing socket: {e}")


async def race_with_timeout(
    work: Awaitable[T],
    timeout: float,
    on_timeout: Optional[Callable[[], Awaitable[Any]]] = None,
) -> Tuple[bool, Optional[T]]:
    """Run ``work`` for at most ``timeout`` seconds.

    Returns ``(False, result)`` when the work finishes in time; its
    exceptions propagate. On expiry ``on_timeout`` is awaited (its errors are
    logged and swallowed), the work is cancelled and ``(True, None)`` is
    returned.
    """
    task = asyncio.ensure_future(work)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return False, task.result()

    if on_timeout is not None:
        try:
            await on_timeout()
        except Exception as e:
            logger.warning(f"race_with_timeout: cleanup after timeout failed: {e}")

    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"race_with_timeout: work failed after timeout: {task.exception()}")
    return True, None
