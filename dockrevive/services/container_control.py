import asyncio
import logging

import docker

from dockrevive.engine.client import EngineClient
from dockrevive.errors import ContainerNotFoundError, WorkflowError
from dockrevive.models import ContainerConfig
from dockrevive.state import ConfigStore
from dockrevive.utils.container_specs import (
    PullProgressLogger,
    normalize_image,
    parse_mount_specs,
    parse_port_specs,
)

logger = logging.getLogger(__name__)


class ContainerController:
    """Manual lifecycle operations on containers known to the config store."""

    def __init__(self, engine: EngineClient, store: ConfigStore):
        self._engine = engine
        self._store = store

    def get_all_configs(self) -> list[ContainerConfig]:
        return self._store.all()

    def get_config(self, ref: str) -> ContainerConfig | None:
        container_id = self._store.resolve(ref)
        return self._store.get(container_id) if container_id else None

    async def get_status(self, container_id: str) -> str:
        """Engine-reported status, or "unknown" if it cannot be resolved."""
        try:
            attrs = await asyncio.to_thread(self._engine.inspect_container, container_id)
        except Exception as e:
            logger.debug(f"Could not resolve status of {container_id[:12]}: {e}")
            return "unknown"
        return (attrs.get("State") or {}).get("Status") or "unknown"

    async def is_engine_healthy(self) -> bool:
        return await asyncio.to_thread(self._engine.ping)

    async def create(
        self,
        name: str,
        image: str,
        ports: list[str],
        mounts: list[str],
        env: list[str],
    ) -> ContainerConfig:
        """Pull, create and start a container, then store its config.

        Raises:
            InvalidSpecError: for malformed image, port or mount input.
            WorkflowError: if the engine rejects any step.
        """
        image = normalize_image(image)
        exposed_ports, port_bindings = parse_port_specs(ports)
        binds = parse_mount_specs(mounts)

        spec = {
            "Image": image,
            "Env": list(env),
            "ExposedPorts": exposed_ports,
            "HostConfig": {"PortBindings": port_bindings, "Binds": binds},
        }

        await self._pull(name, image)

        try:
            container_id = await asyncio.to_thread(self._engine.create_container, name, spec)
        except docker.errors.DockerException as e:
            raise WorkflowError(name, f"Failed to create {name}: {e}") from e

        try:
            await asyncio.to_thread(self._engine.start_container, container_id)
            attrs = await asyncio.to_thread(self._engine.inspect_container, container_id)
        except docker.errors.DockerException as e:
            raise WorkflowError(container_id, f"Failed to start {name}: {e}") from e

        config = ContainerConfig.from_inspect(attrs)
        self._store.upsert(config, replace=True)
        logger.info(f"Created container {name} ({container_id[:12]}) from {image}")
        return config

    async def update(
        self,
        container_id: str,
        name: str,
        image: str,
        ports: list[str],
        mounts: list[str],
        env: list[str],
    ) -> ContainerConfig:
        """Replace a container: remove it, then create a new one (new id)."""
        await self.remove(container_id)
        return await self.create(name, image, ports, mounts, env)

    async def remove(self, ref: str) -> None:
        """Stop (best effort) and force-remove a container, then drop its config.

        ``ref`` may be a full id, a short id or a name; the store entry is
        dropped under the full id it resolves to.

        Raises:
            ContainerNotFoundError: if neither the engine nor the store knows the container.
            WorkflowError: if the engine refuses the removal.
        """
        container_id = await self._resolve_id(ref)

        try:
            await asyncio.to_thread(self._engine.stop_container, container_id)
        except docker.errors.DockerException as e:
            logger.debug(f"Ignoring stop failure for {container_id[:12]}: {e}")

        try:
            await asyncio.to_thread(self._engine.remove_container, container_id, True)
        except docker.errors.NotFound:
            if not self._store.remove(container_id):
                raise ContainerNotFoundError(ref)
            logger.warning(f"Container {container_id[:12]} already gone, dropped stale config")
            return
        except docker.errors.DockerException as e:
            raise WorkflowError(container_id, f"Failed to remove {container_id[:12]}: {e}") from e

        self._store.remove(container_id)
        logger.info(f"Removed container {container_id[:12]}")

    async def _resolve_id(self, ref: str) -> str:
        """Full container id for a name, short id or full id."""
        container_id = self._store.resolve(ref)
        if container_id:
            return container_id
        try:
            attrs = await asyncio.to_thread(self._engine.inspect_container, ref)
        except docker.errors.DockerException:
            return ref
        return attrs.get("Id") or ref

    async def _pull(self, name: str, image: str) -> None:
        progress = PullProgressLogger(image)

        def pull() -> str | None:
            error = None
            for message in self._engine.pull_image(image):
                progress.handle(message)
                if message.get("error"):
                    error = message["error"]
            return error

        try:
            error = await asyncio.to_thread(pull)
        except docker.errors.DockerException as e:
            raise WorkflowError(name, f"Failed to pull {image}: {e}") from e
        if error:
            raise WorkflowError(name, f"Failed to pull {image}: {error}")
