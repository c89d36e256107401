import sys
from datetime import datetime
from loguru import logger as _logger # Renamed to avoid conflict with the global logger
from dockashell.config import config

_print_level = "INFO"

def define_log_level(print_level="INFO", logfile_level="DEBUG", name: str = "dockashell"):
    """Adjust the log level to above level.

    Console output always goes to stderr: stdout is reserved for the MCP stdio
    transport.
    """
    global _print_level
    _print_level = print_level

    current_date = datetime.now()
    formatted_date = current_date.strftime("%Y%m%d%H%M%S")
    log_name = (
        f"{name}_{formatted_date}" if name else formatted_date
    )

    logs_dir = config.logs_dir
    logs_dir.mkdir(parents=True, exist_ok=True)

    _logger.remove()
    _logger.add(sys.stderr, level=print_level)
    _logger.add(logs_dir / f"{log_name}.log", level=logfile_level)
    return _logger

logger = define_log_level(config.logging.print_level, config.logging.logfile_level)

if __name__ == "__main__":
    logger.info("Starting DockaShell logging test")
    logger.debug("Debug message test")
    logger.warning("Warning message test")
    logger.error("Error message test")

    try:
        raise ValueError("Test error for logging")
    except Exception as e:
        logger.exception(f"An error occurred during logging test: {e}")
