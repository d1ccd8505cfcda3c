"""Thin adapter over the Docker SDK used by the reconciliation engine."""

import json
import logging
import os
import subprocess
import time
from typing import Any, Iterator

import docker
from docker.errors import DockerException

from dockrevive.errors import EngineConnectionError

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/var/run/docker.sock"


def discover_socket_path() -> str:
    """Find the engine socket.

    Uses the default socket when present, otherwise asks the docker CLI for
    the active context's endpoint. Falls back to the default path.
    """
    if os.path.exists(DEFAULT_SOCKET_PATH):
        return DEFAULT_SOCKET_PATH

    try:
        result = subprocess.run(
            ["docker", "context", "inspect"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"docker context inspect unavailable: {e}")
        return DEFAULT_SOCKET_PATH

    if result.returncode != 0:
        return DEFAULT_SOCKET_PATH

    try:
        contexts = json.loads(result.stdout)
    except json.JSONDecodeError:
        return DEFAULT_SOCKET_PATH

    for context in contexts or []:
        host = context.get("Endpoints", {}).get("docker", {}).get("Host", "")
        if host.startswith("unix://"):
            return host[len("unix://"):]

    return DEFAULT_SOCKET_PATH


def to_base_url(socket_path: str) -> str:
    """Turn a bare socket path into an SDK base URL."""
    if "://" in socket_path:
        return socket_path
    return f"unix://{socket_path}"


class EngineClient:
    """Capability interface over the container engine.

    All methods are blocking; async callers run them with asyncio.to_thread.
    SDK exceptions (docker.errors.NotFound, APIError) propagate to callers,
    which translate them at the service seam.
    """

    def __init__(self, docker_client: docker.DockerClient):
        self._client = docker_client
        self._api = docker_client.api

    def ping(self) -> bool:
        """Check whether the engine answers."""
        try:
            return bool(self._client.ping())
        except (DockerException, OSError) as e:
            logger.debug(f"Engine ping failed: {e}")
            return False

    def list_containers(self, statuses: list[str], all: bool = True) -> list[dict[str, Any]]:
        return self._api.containers(all=all, filters={"status": statuses})

    def inspect_container(self, container_id: str) -> dict[str, Any]:
        return self._api.inspect_container(container_id)

    def stream_events(self) -> Iterator[dict[str, Any]]:
        """Decoded engine events. Not restartable once ended or closed."""
        return self._api.events(decode=True)

    def start_container(self, container_id: str) -> None:
        self._api.start(container_id)

    def stop_container(self, container_id: str, timeout: int | None = None) -> None:
        self._api.stop(container_id, timeout=timeout)

    def kill_container(self, container_id: str) -> None:
        self._api.kill(container_id)

    def remove_container(self, container_id: str, force: bool = False) -> None:
        self._api.remove_container(container_id, force=force)

    def create_container(self, name: str, spec: dict[str, Any]) -> str:
        """Create a container from a raw engine config body.

        Returns:
            The new container id.
        """
        response = self._api.create_container_from_config(spec, name=name)
        for warning in response.get("Warnings") or []:
            logger.warning(f"Engine warning creating {name}: {warning}")
        return response["Id"]

    def pull_image(self, image: str) -> Iterator[dict[str, Any]]:
        """Pull an image, yielding decoded progress messages."""
        return self._api.pull(image, stream=True, decode=True)

    def close(self) -> None:
        self._client.close()


def connect_with_retry(
    socket_path: str | None = None,
    retries: int = 3,
    retry_delay: float = 1,
    timeout: int = 120,
) -> EngineClient:
    """Connect to the engine and verify the connection with a ping.

    Raises:
        EngineConnectionError: if no attempt produced a working connection.
    """
    base_url = to_base_url(socket_path or discover_socket_path())

    for attempt in range(1, retries + 1):
        try:
            docker_client = docker.DockerClient(base_url=base_url, timeout=timeout)
            if docker_client.ping():
                logger.info(f"Connected to Docker at {base_url}")
                return EngineClient(docker_client)
            docker_client.close()
        except (DockerException, OSError) as e:
            logger.warning(f"Docker connection failed (attempt {attempt}/{retries}): {e}")
        if attempt < retries:
            time.sleep(retry_delay)

    raise EngineConnectionError(f"Could not connect to Docker at {base_url}")
