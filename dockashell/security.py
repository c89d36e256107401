"""Pre-execution command policy.

The policy is a pure function of a command string and a project's security
settings: it never touches the daemon and holds no state, so one
``SecurityManager`` can be shared by every concurrent request.
"""
import re
from typing import Any, Dict, Iterable, Mapping, Union

from dockashell.exceptions import InvalidInputError
from dockashell.logger import logger
from dockashell.sandbox.core.exceptions import CommandBlockedError
from dockashell.schema import (
    DEFAULT_BLOCKED_COMMANDS,
    DEFAULT_MAX_EXECUTION_TIME,
    ProjectConfig,
)

MAX_EXECUTION_TIME_CEILING = 3600

ProjectPolicy = Union[ProjectConfig, Mapping[str, Any]]


class SecurityManager:
    """Validates commands against a project's security settings."""

    def validate_command(self, command: Any, project_config: ProjectPolicy) -> bool:
        """Return True when ``command`` may run under ``project_config``.

        Raises:
            InvalidInputError: the command is not a non-empty string, or the
                policy is neither a ProjectConfig nor a mapping.
            CommandBlockedError: restricted mode is on and a blocked pattern matches.
        """
        if not isinstance(command, str) or not command.strip():
            raise InvalidInputError("Invalid command: must be a non-empty string")
        security = self._security_section(project_config)

        if security.get("restricted_mode"):
            blocked = security.get("blocked_commands")
            if not isinstance(blocked, list):
                blocked = DEFAULT_BLOCKED_COMMANDS
            if self.is_blocked(command, blocked):
                logger.warning(f"SecurityManager: Blocked command '{command}'")
                raise CommandBlockedError(command)
        return True

    def is_blocked(self, command: str, blocked_commands: Iterable[Any]) -> bool:
        normalized = command.strip().lower()
        for pattern in blocked_commands:
            if not isinstance(pattern, str) or not pattern:
                continue
            needle = pattern.lower()
            if normalized == needle or normalized.startswith(needle):
                return True
            try:
                if re.search(rf"\b{re.escape(needle)}\b", normalized):
                    return True
            except re.error:
                if needle in normalized:
                    return True
        return False

    def get_max_execution_time(self, project_config: ProjectPolicy) -> Union[int, float]:
        """Seconds a single exec may run; falls back to 300 outside (0, 3600]."""
        try:
            value = self._security_section(project_config).get("max_execution_time")
        except InvalidInputError:
            return DEFAULT_MAX_EXECUTION_TIME
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return DEFAULT_MAX_EXECUTION_TIME
        if 0 < value <= MAX_EXECUTION_TIME_CEILING:
            return value
        return DEFAULT_MAX_EXECUTION_TIME

    def get_default_security_settings(self) -> Dict[str, Any]:
        return {
            "max_execution_time": DEFAULT_MAX_EXECUTION_TIME,
            "restricted_mode": False,
            "blocked_commands": list(DEFAULT_BLOCKED_COMMANDS),
        }

    @staticmethod
    def _security_section(project_config: ProjectPolicy) -> Dict[str, Any]:
        if isinstance(project_config, ProjectConfig):
            return project_config.security.model_dump()
        if isinstance(project_config, Mapping):
            security = project_config.get("security") or {}
            return dict(security) if isinstance(security, Mapping) else {}
        raise InvalidInputError("Invalid project configuration")
