import os
import re
import sys
import threading
import tomllib # Python 3.11+
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DEFAULT_SESSION_TIMEOUT = "4h"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}


def get_dockashell_home() -> Path:
    """Get the DockaShell home directory (``DOCKASHELL_HOME`` or ``~/.dockashell``)"""
    env_home = os.getenv("DOCKASHELL_HOME")
    if env_home:
        return Path(env_home).expanduser()
    return Path.home() / ".dockashell"


def parse_duration(value: Union[str, int, float, None], default: str = DEFAULT_SESSION_TIMEOUT) -> float:
    """Parse a duration such as ``"4h"``, ``"30m"``, ``"500ms"`` or a bare number of seconds.

    Returns the duration in seconds. Unparseable or non-positive values fall
    back to ``default``.
    """
    if isinstance(value, bool):
        value = None
    if isinstance(value, (int, float)) and value > 0:
        return float(value)
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if match:
            seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2) or "s"]
            if seconds > 0:
                return seconds
    if value == default:
        raise ValueError(f"Invalid default duration: {default!r}")
    return parse_duration(default, default)


DOCKASHELL_HOME = get_dockashell_home()

class LoggingSettings(BaseModel):
    print_level: str = Field("INFO", description="Minimum level written to stderr")
    logfile_level: str = Field("DEBUG", description="Minimum level written to the log file")

class TraceSettings(BaseModel):
    session_timeout: Union[str, int, float] = Field(DEFAULT_SESSION_TIMEOUT, description="Idle gap after which a new trace session starts (e.g. '4h', '30m')")

    @property
    def session_timeout_seconds(self) -> float:
        return parse_duration(self.session_timeout)

class DockerSettings(BaseModel):
    base_url: Optional[str] = Field(None, description="Docker daemon URL; docker.from_env() is used when unset")
    apply_patch_command: str = Field("/usr/local/bin/apply_patch", description="Patch helper executed inside the container")
    stop_timeout: int = Field(10, description="Seconds the daemon waits before killing a stopping container")
    default_timeout_ms: int = Field(30000, description="Default exec timeout in milliseconds when none is given")

class AppConfig(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    traces: TraceSettings = Field(default_factory=TraceSettings)
    docker: DockerSettings = Field(default_factory=DockerSettings)

class Config:
    _instance = None
    _lock = threading.Lock()
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            with self._lock:
                if not self._initialized:
                    self._app_config: Optional[AppConfig] = None
                    self._load_initial_config()
                    self._initialized = True

    @staticmethod
    def _get_config_path() -> Path:
        config_path = DOCKASHELL_HOME / "config.toml"
        if config_path.exists():
            return config_path

        defaults = AppConfig()
        default_config_content = f"""
[logging]
print_level = "{defaults.logging.print_level}"
logfile_level = "{defaults.logging.logfile_level}"

[logging.traces]
session_timeout = "{defaults.traces.session_timeout}"

[docker]
apply_patch_command = "{defaults.docker.apply_patch_command}"
stop_timeout = {defaults.docker.stop_timeout}
default_timeout_ms = {defaults.docker.default_timeout_ms}
"""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f: f.write(default_config_content)
        return config_path

    def _load_toml_config(self) -> dict:
        config_path = self._get_config_path()
        with config_path.open("rb") as f: return tomllib.load(f)

    def _load_initial_config(self):
        try:
            raw_config = self._load_toml_config()
        except (OSError, tomllib.TOMLDecodeError) as e:
            # Logger is not importable here (it depends on this module), stderr it is.
            print(f"Warning: Failed to load DockaShell config, using defaults: {e}", file=sys.stderr)
            raw_config = {}

        logging_conf = dict(raw_config.get("logging", {}))
        traces_conf = logging_conf.pop("traces", {})
        docker_conf = raw_config.get("docker", {})

        self._app_config = AppConfig(
            logging=LoggingSettings(**logging_conf),
            traces=TraceSettings(**traces_conf),
            docker=DockerSettings(**docker_conf),
        )

    @property
    def logging(self) -> LoggingSettings:
        if self._app_config is None: self._load_initial_config()
        assert self._app_config is not None
        return self._app_config.logging

    @property
    def traces(self) -> TraceSettings:
        if self._app_config is None: self._load_initial_config()
        assert self._app_config is not None
        return self._app_config.traces

    @property
    def docker(self) -> DockerSettings:
        if self._app_config is None: self._load_initial_config()
        assert self._app_config is not None
        return self._app_config.docker

    @property
    def home(self) -> Path: return DOCKASHELL_HOME

    @property
    def projects_dir(self) -> Path: return DOCKASHELL_HOME / "projects"

    @property
    def logs_dir(self) -> Path: return DOCKASHELL_HOME / "logs"

config = Config()
