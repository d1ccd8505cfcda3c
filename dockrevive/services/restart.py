import asyncio
import logging
from dataclasses import replace
from typing import Any

import docker

from dockrevive.config import RestartConfig
from dockrevive.engine.client import EngineClient
from dockrevive.errors import VerificationError, WorkflowError
from dockrevive.models import ContainerConfig, resolve_ip_address
from dockrevive.state import ConfigStore

logger = logging.getLogger(__name__)

# Config fields carried over when a container is rebuilt from its snapshot
PRESERVED_CONFIG_FIELDS = (
    "Hostname",
    "Domainname",
    "User",
    "AttachStdin",
    "AttachStdout",
    "AttachStderr",
    "ExposedPorts",
    "Tty",
    "OpenStdin",
    "StdinOnce",
    "Env",
    "Cmd",
    "Volumes",
    "WorkingDir",
    "Entrypoint",
    "NetworkDisabled",
    "MacAddress",
    "Labels",
)


def build_create_spec(config: ContainerConfig) -> dict[str, Any]:
    """Engine create body that rebuilds a container from its snapshot."""
    spec = {
        key: config.runtime_config[key]
        for key in PRESERVED_CONFIG_FIELDS
        if config.runtime_config.get(key) is not None
    }
    spec["Image"] = config.image
    if config.host_config:
        spec["HostConfig"] = config.host_config
    return spec


class RestartWorkflow:
    """Restores a stopped container by recreating it from its stored config.

    The recreate sequence is stop, remove, create under the original name,
    start, then verify. On success the store entry moves to the new id.
    """

    def __init__(
        self,
        engine: EngineClient,
        store: ConfigStore,
        config: RestartConfig | None = None,
    ):
        self._engine = engine
        self._store = store
        self._config = config or RestartConfig()

    async def restart(self, container_id: str) -> ContainerConfig:
        """Recreate a container.

        Returns:
            The snapshot stored under the new container id.

        Raises:
            WorkflowError: if any step fails.
        """
        old = self._store.get(container_id)
        if old is None:
            raise WorkflowError(container_id, f"No stored configuration for {container_id[:12]}")

        logger.info(f"Restarting container {old.name} ({container_id[:12]})")

        await self._stop(container_id)

        await asyncio.sleep(self._config.settle_delay_seconds)

        try:
            await asyncio.to_thread(self._engine.remove_container, container_id, True)
        except docker.errors.DockerException as e:
            raise WorkflowError(container_id, f"Failed to remove {old.name}: {e}") from e

        try:
            new_id = await asyncio.to_thread(
                self._engine.create_container, old.name, build_create_spec(old)
            )
        except docker.errors.DockerException as e:
            raise WorkflowError(container_id, f"Failed to create {old.name}: {e}") from e

        try:
            await asyncio.to_thread(self._engine.start_container, new_id)
        except docker.errors.DockerException as e:
            raise WorkflowError(container_id, f"Failed to start {old.name} ({new_id[:12]}): {e}") from e

        attrs = await self._verify_running(container_id, new_id, old.name)

        new = replace(
            old,
            container_id=new_id,
            ip_address=resolve_ip_address(attrs.get("NetworkSettings") or {}),
        )
        self._store.migrate(container_id, new)
        logger.info(f"Container {old.name} restarted: {container_id[:12]} -> {new_id[:12]}")
        return new

    async def restart_in_background(self, container_id: str) -> ContainerConfig | None:
        """Run a restart to completion, logging the outcome instead of raising.

        Returns:
            The migrated snapshot, or None if the restart failed.
        """
        try:
            return await self.restart(container_id)
        except WorkflowError as e:
            logger.error(f"Restart of {container_id[:12]} failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error restarting {container_id[:12]}: {e}", exc_info=True)
        return None

    async def _stop(self, container_id: str) -> None:
        """Stop within the timeout, escalating to kill.

        The engine gets the same grace period as the client-side bound, so
        the stop call ends on its own once the bound expires. A failed kill
        is only fatal if the container is still running.
        """
        timeout = self._config.stop_timeout_seconds
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._engine.stop_container, container_id, timeout),
                timeout=timeout,
            )
            return
        except asyncio.TimeoutError:
            logger.warning(f"Stopping {container_id[:12]} timed out after {timeout}s, killing")
        except docker.errors.DockerException as e:
            logger.warning(f"Failed to stop {container_id[:12]}: {e}, killing")

        try:
            await asyncio.to_thread(self._engine.kill_container, container_id)
        except docker.errors.DockerException as e:
            if await self._is_running(container_id):
                raise WorkflowError(container_id, f"Failed to stop or kill {container_id[:12]}: {e}") from e
            logger.info(f"Kill of {container_id[:12]} failed but it is no longer running: {e}")

    async def _is_running(self, container_id: str) -> bool:
        try:
            attrs = await asyncio.to_thread(self._engine.inspect_container, container_id)
        except docker.errors.NotFound:
            return False
        except docker.errors.DockerException:
            return True
        return bool((attrs.get("State") or {}).get("Running", False))

    async def _verify_running(self, old_id: str, new_id: str, name: str) -> dict[str, Any]:
        await asyncio.sleep(self._config.verify_delay_seconds)
        try:
            attrs = await asyncio.to_thread(self._engine.inspect_container, new_id)
        except docker.errors.DockerException as e:
            raise VerificationError(old_id, f"Could not verify {name} ({new_id[:12]}): {e}") from e

        if not (attrs.get("State") or {}).get("Running", False):
            raise VerificationError(old_id, f"Container {name} ({new_id[:12]}) is not running after restart")
        return attrs
