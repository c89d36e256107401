import argparse
import asyncio
import atexit
from typing import List, Optional

from mcp.server.fastmcp import FastMCP # type: ignore
from mcp.server.fastmcp.exceptions import ToolError # type: ignore

from dockashell.exceptions import DockaShellError
from dockashell.logger import logger
from dockashell.mcp import formatting
from dockashell.sandbox.client import SandboxClient, create_sandbox_client


class MCPServer:
    """DockaShell MCP server: exposes the sandbox client as MCP tools."""

    def __init__(self, server_name: str = "dockashell", client: Optional[SandboxClient] = None):
        self.server = FastMCP(name=server_name)
        self.client = client or create_sandbox_client()
        self._tools_registered = False

    def register_tools(self) -> None:
        if self._tools_registered:
            return
        client = self.client

        async def list_projects() -> str:
            """Lists all configured DockaShell projects."""
            return formatting.format_project_list(client.list_projects())

        async def start_project(project_name: str) -> str:
            """Starts the project's container, creating it from the project configuration if needed."""
            result = await _guard(client.start_project(project_name))
            project = _guard_sync(client.project_manager.load_project, project_name)
            return formatting.format_start_result(project_name, result, project)

        async def stop_project(project_name: str) -> str:
            """Stops the project's container. The container is kept for the next start."""
            return formatting.format_stop_result(project_name, await _guard(client.stop_project(project_name)))

        async def project_status(project_name: str) -> str:
            """Shows the container status, ports and mounts of a project."""
            return formatting.format_status(project_name, await _guard(client.project_status(project_name)))

        async def bash(project_name: str, command: str) -> str:
            """Executes shell commands in a project container. Avoid interactive commands (vim, nano, less, top) as they require a TTY."""
            result = await _guard(client.run_command(project_name, command))
            project = _guard_sync(client.project_manager.load_project, project_name)
            return formatting.format_command_result(
                project_name, command, result, client.security.get_max_execution_time(project)
            )

        async def apply_patch(project_name: str, patch: str) -> str:
            """Applies a patch in '*** Begin Patch' / '*** End Patch' format inside the project container."""
            return formatting.format_patch_result(project_name, await _guard(client.apply_patch(project_name, patch)))

        async def write_file(project_name: str, path: str, content: str, overwrite: bool = False) -> str:
            """Creates a file in the project container; set overwrite to replace an existing file."""
            result = await _guard(client.write_file(project_name, path, content, overwrite))
            return formatting.format_write_result(project_name, path, result)

        async def write_trace(project_name: str, type: str, text: str) -> str:
            """Records a note (type: user, agent or summary) in the project's trace log."""
            await _guard(asyncio.to_thread(client.write_trace, project_name, type, text))
            return "Trace recorded"

        async def read_traces(
            project_name: str,
            type: Optional[str] = None,
            search: Optional[str] = None,
            skip: int = 0,
            limit: int = 20,
            fields: Optional[List[str]] = None,
            output_max_len: Optional[int] = None,
        ) -> str:
            """Retrieves trace history, most recent first.

            type filters by 'command', 'apply_patch', 'write_file', 'note', 'user', 'agent' or 'summary'.
            fields selects from timestamp, type, content, exit_code, duration, output (preview).
            """
            records = await _guard(asyncio.to_thread(
                client.read_traces, project_name, type=type, search=search, skip=skip, limit=limit
            ))
            return formatting.format_traces(records, fields=fields, output_max_len=output_max_len)

        for tool in (list_projects, start_project, stop_project, project_status, bash,
                     apply_patch, write_file, write_trace, read_traces):
            self.server.tool(name=tool.__name__)(tool)
            logger.debug(f"DockaShell MCPServer: Registered tool '{tool.__name__}'")
        self._tools_registered = True
        logger.info("DockaShell MCPServer: All tools registered")

    async def cleanup(self) -> None:
        logger.info("DockaShell MCPServer: Cleaning up...")
        await self.client.cleanup()

    def run(self, transport: str = "stdio") -> None:
        """Run the DockaShell MCP server (blocking)."""
        self.register_tools()
        atexit.register(lambda: asyncio.run(self.cleanup()))

        logger.info(f"Starting DockaShell MCP Server (name: {self.server.name}, transport: {transport})...")
        try:
            self.server.run(transport=transport)
        except KeyboardInterrupt:
            logger.info("DockaShell MCP Server shutting down (KeyboardInterrupt).")


async def _guard(coro):
    """Await a client call, turning DockaShell errors into MCP tool errors."""
    try:
        return await coro
    except DockaShellError as e:
        logger.warning(f"DockaShell MCPServer: {type(e).__name__}: {e}")
        raise ToolError(str(e)) from e


def _guard_sync(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except DockaShellError as e:
        logger.warning(f"DockaShell MCPServer: {type(e).__name__}: {e}")
        raise ToolError(str(e)) from e


def parse_cli_args() -> argparse.Namespace:
    """Parse command line arguments for the DockaShell MCP Server."""
    parser = argparse.ArgumentParser(description="DockaShell MCP Server")
    parser.add_argument(
        "--transport", choices=["stdio", "sse", "streamable-http"], default="stdio",
        help="Communication method (default: stdio)",
    )
    parser.add_argument("--server-name", default="dockashell", help="Name for the MCP server instance.")
    return parser.parse_args()


def main() -> None:
    cli_args = parse_cli_args()
    logger.info(f"DockaShell MCP Server starting with args: {cli_args}")
    MCPServer(server_name=cli_args.server_name).run(transport=cli_args.transport)


if __name__ == "__main__":
    main()
