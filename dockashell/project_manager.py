"""Project configuration provider.

Projects live under ``<home>/projects/<name>/config.json``. Loading applies
defaults, forces the directory name as the project name and, when a
``devcontainer`` file is referenced, merges its image, workspace folder,
environment and forwarded ports.
"""
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from dockashell.config import config
from dockashell.exceptions import ConfigurationError, InvalidInputError, ProjectNotFoundError
from dockashell.logger import logger
from dockashell.schema import ProjectConfig

PROJECT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
MAX_PROJECT_NAME_LENGTH = 64


def validate_project_name(name: Any) -> str:
    if not isinstance(name, str) or not name:
        raise InvalidInputError("Project name must be a non-empty string")
    if not PROJECT_NAME_PATTERN.match(name):
        raise InvalidInputError(
            "Project name can only contain letters, numbers, hyphens, and underscores"
        )
    if len(name) > MAX_PROJECT_NAME_LENGTH:
        raise InvalidInputError(f"Project name must be {MAX_PROJECT_NAME_LENGTH} characters or less")
    return name


class ProjectManager:
    def __init__(self, home: Optional[Path] = None):
        self.home = Path(home) if home is not None else config.home
        self.projects_dir = self.home / "projects"

    def ensure_config_structure(self) -> None:
        self.projects_dir.mkdir(parents=True, exist_ok=True)
        (self.home / "logs").mkdir(parents=True, exist_ok=True)

    def project_dir(self, project_name: str) -> Path:
        return self.projects_dir / project_name

    def traces_dir(self, project_name: str) -> Path:
        return self.project_dir(project_name) / "traces"

    def load_project(self, project_name: str) -> ProjectConfig:
        validate_project_name(project_name)
        config_path = self.project_dir(project_name) / "config.json"
        if not config_path.is_file():
            raise ProjectNotFoundError(project_name)

        try:
            with config_path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read {config_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Project configuration in {config_path} must be a JSON object")

        raw["name"] = project_name
        if raw.get("devcontainer"):
            raw = self._merge_devcontainer(raw)

        try:
            return ProjectConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid project configuration for '{project_name}': {e}") from e

    def list_projects(self) -> List[Dict[str, Any]]:
        if not self.projects_dir.is_dir():
            return []
        projects = []
        for entry in sorted(self.projects_dir.iterdir()):
            if not (entry / "config.json").is_file():
                continue
            try:
                project = self.load_project(entry.name)
            except (InvalidInputError, ConfigurationError, ProjectNotFoundError) as e:
                logger.warning(f"ProjectManager: Skipping project '{entry.name}': {e}")
                continue
            projects.append({
                "name": project.name,
                "description": project.description,
                "image": project.image,
                "status": "configured",
            })
        return projects

    def _merge_devcontainer(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """Best effort: a broken devcontainer file is logged and ignored."""
        try:
            devcontainer_path = Path(raw["devcontainer"]).expanduser()
            mounts = raw.get("mounts") or []
            if not devcontainer_path.is_absolute() and mounts and isinstance(mounts[0], dict):
                devcontainer_path = Path(mounts[0]["host"]).expanduser() / devcontainer_path
            with devcontainer_path.open("r", encoding="utf-8") as f:
                dev = json.load(f)

            merged = dict(raw)
            if dev.get("image"):
                merged["image"] = dev["image"]
            if dev.get("workspaceFolder"):
                merged["working_dir"] = dev["workspaceFolder"]
            if isinstance(dev.get("containerEnv"), dict):
                merged["environment"] = {**(raw.get("environment") or {}), **dev["containerEnv"]}
            if isinstance(dev.get("forwardPorts"), list):
                ports = list(raw.get("ports") or [])
                mapped = {p.get("container") for p in ports if isinstance(p, dict)}
                for port in dev["forwardPorts"]:
                    if isinstance(port, int) and port not in mapped:
                        ports.append({"host": port, "container": port})
                        mapped.add(port)
                merged["ports"] = ports
            return merged
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"ProjectManager: Failed to parse devcontainer for '{raw.get('name')}': {e}")
            return raw
