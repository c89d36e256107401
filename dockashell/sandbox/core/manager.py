"""Container lifecycle for DockaShell projects.

Each project maps to exactly one container named ``dockashell-<project>``.
The daemon is the source of truth: every operation inspects the container
before acting, and the in-memory id map is only an advisory cache.
"""
import asyncio
import os
from typing import Any, Dict, List, Optional

import docker # type: ignore
from docker import APIClient # type: ignore
from docker.errors import APIError, DockerException, NotFound # type: ignore

from dockashell.config import config
from dockashell.logger import logger
from dockashell.project_manager import ProjectManager
from dockashell.sandbox.core.exceptions import ContainerNotRunningError, DaemonError
from dockashell.schema import ProjectConfig, container_name_for
from dockashell.trace.recorder import TraceRegistry


def create_api_client() -> APIClient:
    """Low-level Docker client, honouring ``[docker] base_url`` and then the DOCKER_* environment."""
    try:
        if config.docker.base_url:
            return APIClient(base_url=config.docker.base_url)
        return docker.from_env().api
    except DockerException as e:
        raise DaemonError(f"Cannot connect to the Docker daemon: {e}") from e


def short_id(container_id: str) -> str:
    return container_id[:12]


def extract_port_mappings(inspect: Dict[str, Any]) -> List[Dict[str, int]]:
    bindings = (inspect.get("HostConfig") or {}).get("PortBindings") or {}
    ports = []
    for container_port, host_bindings in bindings.items():
        if not host_bindings:
            continue
        host_port = host_bindings[0].get("HostPort")
        try:
            ports.append({
                "container": int(str(container_port).split("/")[0]),
                "host": int(host_port),
            })
        except (TypeError, ValueError):
            continue
    return ports


def extract_mounts(inspect: Dict[str, Any]) -> List[Dict[str, str]]:
    return [
        {
            "source": mount.get("Source"),
            "destination": mount.get("Destination"),
            "mode": "rw" if mount.get("RW") else "ro",
        }
        for mount in inspect.get("Mounts") or []
    ]


def _is_running(inspect: Dict[str, Any]) -> bool:
    return bool((inspect.get("State") or {}).get("Running"))


def _has_status(error: APIError, status_code: int) -> bool:
    return error.response is not None and error.response.status_code == status_code


class ContainerManager:
    """Creates, starts, stops and inspects project containers."""

    def __init__(
        self,
        api: Optional[APIClient] = None,
        project_manager: Optional[ProjectManager] = None,
        trace_registry: Optional[TraceRegistry] = None,
        stop_timeout: Optional[int] = None,
    ):
        self._api = api
        self.project_manager = project_manager or ProjectManager()
        self.trace_registry = trace_registry
        self.stop_timeout = stop_timeout if stop_timeout is not None else config.docker.stop_timeout
        self._containers: Dict[str, str] = {}

    @property
    def api(self) -> APIClient:
        # Connect lazily so that policy and input errors never need a daemon.
        if self._api is None:
            self._api = create_api_client()
        return self._api

    async def inspect(self, project_name: str) -> Optional[Dict[str, Any]]:
        """Inspect payload of the project's container, or None when it does not exist."""
        name = container_name_for(project_name)
        try:
            return await asyncio.to_thread(self.api.inspect_container, name)
        except NotFound:
            return None
        except APIError as e:
            if _has_status(e, 404):
                return None
            raise DaemonError(f"Failed to inspect container '{name}': {e}") from e
        except DockerException as e:
            raise DaemonError(f"Failed to inspect container '{name}': {e}") from e

    async def start_container(self, project_name: str) -> Dict[str, Any]:
        info = await self.inspect(project_name)
        if info is not None:
            return await self._start_existing(project_name, info)

        project = self.project_manager.load_project(project_name)
        container_id = await self._create_container(project)
        if container_id is None:
            # Lost a create race: someone else owns the name now.
            info = await self.inspect(project_name)
            if info is None:
                raise DaemonError(f"Container name for '{project_name}' is taken but the container cannot be inspected")
            logger.info(f"ContainerManager: {container_name_for(project_name)} was created concurrently, reusing it")
            return await self._start_existing(project_name, info)

        await self._call_daemon(f"start container for '{project_name}'", self.api.start, container_id)
        info = await self.inspect(project_name)
        if info is None:
            raise DaemonError(f"Container for '{project_name}' disappeared right after creation")
        self._containers[project_name] = info["Id"]
        logger.info(f"ContainerManager: Created and started {container_name_for(project_name)} ({short_id(info['Id'])}) from '{project.image}'")
        await self._trace(project_name, "start", {"container_id": short_id(info["Id"]), "status": "started"})
        return self._describe(info, "started")

    async def _start_existing(self, project_name: str, info: Dict[str, Any]) -> Dict[str, Any]:
        if _is_running(info):
            self._containers[project_name] = info["Id"]
            await self._trace(project_name, "start", {"container_id": short_id(info["Id"]), "status": "already_running", "note": "Already running"})
            return self._describe(info, "already_running")

        logger.info(f"ContainerManager: Restarting existing container for '{project_name}'")
        await self._call_daemon(f"start container for '{project_name}'", self.api.start, info["Id"])
        info = await self.inspect(project_name) or info
        self._containers[project_name] = info["Id"]
        await self._trace(project_name, "start", {"container_id": short_id(info["Id"]), "status": "started", "note": "Restarted existing container"})
        return self._describe(info, "started")

    async def stop_container(self, project_name: str) -> Dict[str, Any]:
        info = await self.inspect(project_name)
        self._containers.pop(project_name, None)
        if info is None:
            return {"success": True, "status": "not_found"}

        if _is_running(info):
            await self._call_daemon(f"stop container for '{project_name}'", lambda: self.api.stop(info["Id"], timeout=self.stop_timeout))
            logger.info(f"ContainerManager: Stopped {container_name_for(project_name)}")
        await self._trace(project_name, "stop", {"container_id": short_id(info["Id"]), "status": "stopped"})
        return {"success": True, "container_id": short_id(info["Id"]), "status": "stopped"}

    async def get_status(self, project_name: str) -> Dict[str, Any]:
        info = await self.inspect(project_name)
        if info is None:
            return {"success": True, "status": "not_found"}
        return self._describe(info, "running" if _is_running(info) else "stopped")

    async def require_running(self, project_name: str) -> Dict[str, Any]:
        info = await self.inspect(project_name)
        if info is None or not _is_running(info):
            self._containers.pop(project_name, None)
            raise ContainerNotRunningError(project_name)
        self._containers[project_name] = info["Id"]
        return info

    def cached_container_id(self, project_name: str) -> Optional[str]:
        return self._containers.get(project_name)

    def cleanup(self) -> None:
        """Forget cached handles. Containers are left running."""
        self._containers.clear()

    async def _create_container(self, project: ProjectConfig) -> Optional[str]:
        """Create the project's container; None when its name is already taken."""
        port_bindings = {port.container: port.host for port in project.ports}
        binds = [
            f"{os.path.expanduser(mount.host)}:{mount.container}{':ro' if mount.readonly else ''}"
            for mount in project.mounts
        ]
        host_config = self.api.create_host_config(
            port_bindings=port_bindings or None,
            binds=binds or None,
            auto_remove=False,
            restart_policy={"Name": "no"},
        )
        logger.debug(f"ContainerManager: Creating {project.container_name} with image '{project.image}'")
        try:
            created = await asyncio.to_thread(
                self.api.create_container,
                image=project.image,
                name=project.container_name,
                environment=[f"{key}={value}" for key, value in project.environment.items()],
                working_dir=project.working_dir,
                entrypoint=[project.shell],
                tty=True,
                stdin_open=True,
                ports=[port.container for port in project.ports] or None,
                host_config=host_config,
            )
        except APIError as e:
            if _has_status(e, 409):
                logger.info(f"ContainerManager: Name conflict creating {project.container_name}: {e}")
                return None
            logger.error(f"ContainerManager: Failed to create container for '{project.name}': {e}")
            raise DaemonError(f"Failed to create container for '{project.name}': {e}") from e
        except DockerException as e:
            logger.error(f"ContainerManager: Failed to create container for '{project.name}': {e}")
            raise DaemonError(f"Failed to create container for '{project.name}': {e}") from e
        return created["Id"]

    async def _call_daemon(self, action: str, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except DockerException as e:
            logger.error(f"ContainerManager: Failed to {action}: {e}")
            raise DaemonError(f"Failed to {action}: {e}") from e

    def _describe(self, info: Dict[str, Any], status: str) -> Dict[str, Any]:
        return {
            "success": True,
            "container_id": short_id(info["Id"]),
            "status": status,
            "image": (info.get("Config") or {}).get("Image"),
            "created": info.get("Created"),
            "ports": extract_port_mappings(info),
            "mounts": extract_mounts(info),
        }

    async def _trace(self, project_name: str, tool: str, payload: Dict[str, Any]) -> None:
        if self.trace_registry is None:
            return
        registry = self.trace_registry
        try:
            await asyncio.to_thread(lambda: registry.get(project_name).record(tool, "execution", payload))
        except Exception as e:
            logger.error(f"ContainerManager: Failed to record {tool} trace for '{project_name}': {e}")
