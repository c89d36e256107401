# coding: utf-8
# Shortcut to launch the DockaShell MCP server from a source checkout.
import sys
from pathlib import Path

project_root_run_mcp_server = Path(__file__).resolve().parent
if str(project_root_run_mcp_server) not in sys.path:
    sys.path.insert(0, str(project_root_run_mcp_server))

from dockashell.mcp.server import MCPServer, parse_cli_args
from dockashell.config import config
from dockashell.logger import define_log_level, logger

def main_mcp_server():
    define_log_level(
        print_level=config.logging.print_level,
        logfile_level=config.logging.logfile_level,
        name="dockashell_mcp",
    )

    server_cli_args = parse_cli_args()

    logger.info("--- Starting DockaShell MCP Server (via run_mcp_server.py script) ---")
    logger.info(f"DockaShell MCP Server: Transport: {server_cli_args.transport}, Server Name: {server_cli_args.server_name}")

    server = MCPServer(server_name=server_cli_args.server_name)
    server.run(transport=server_cli_args.transport)

    logger.info("--- DockaShell MCP Server (via run_mcp_server.py script) has shut down ---")

if __name__ == "__main__":
    main_mcp_server()
