"""Parsing of user-supplied image, port and mount specifications."""

import logging
from typing import Any

from dockrevive.errors import InvalidSpecError

logger = logging.getLogger(__name__)

DEFAULT_TAG = "latest"


def normalize_image(image: str) -> str:
    """Append the default tag to an image reference that has none.

    A colon in a registry host ("registry:5000/app") is not a tag, and
    digest references are left untouched.
    """
    image = image.strip()
    if not image:
        raise InvalidSpecError("Image reference cannot be empty")
    if "@" in image:
        return image

    last_component = image.rsplit("/", 1)[-1]
    if ":" in last_component:
        return image
    return f"{image}:{DEFAULT_TAG}"


def parse_port_specs(ports: list[str]) -> tuple[dict[str, dict], dict[str, list[dict[str, str]]]]:
    """Build ExposedPorts and PortBindings from "[ip:]host:container[/proto]" strings.

    Returns:
        Tuple of (exposed_ports, port_bindings) in engine API shape.
    """
    exposed_ports: dict[str, dict] = {}
    port_bindings: dict[str, list[dict[str, str]]] = {}

    for spec in ports:
        parts = spec.strip().split(":")
        if len(parts) == 2:
            host_ip, host_port, container_port = "", parts[0], parts[1]
        elif len(parts) == 3:
            host_ip, host_port, container_port = parts
        else:
            raise InvalidSpecError(f"Invalid port mapping '{spec}', expected host:container")

        port, _, protocol = container_port.partition("/")
        protocol = protocol or "tcp"
        if not _is_port(port) or not _is_port(host_port) or protocol not in ("tcp", "udp", "sctp"):
            raise InvalidSpecError(f"Invalid port mapping '{spec}'")

        key = f"{port}/{protocol}"
        exposed_ports[key] = {}
        port_bindings.setdefault(key, []).append({"HostIp": host_ip, "HostPort": host_port})

    return exposed_ports, port_bindings


def parse_mount_specs(mounts: list[str]) -> list[str]:
    """Validate "source:target[:mode]" bind strings and return them as engine Binds."""
    binds = []
    for spec in mounts:
        spec = spec.strip()
        parts = spec.split(":")
        if len(parts) not in (2, 3) or not parts[0] or not parts[1].startswith("/"):
            raise InvalidSpecError(f"Invalid mount '{spec}', expected source:/target[:mode]")
        binds.append(spec)
    return binds


def _is_port(value: str) -> bool:
    return value.isdigit() and 0 < int(value) <= 65535


class PullProgressLogger:
    """Logs image pull progress, skipping repeats of a layer's last status."""

    def __init__(self, image: str):
        self.image = image
        self._last_status: dict[str, str] = {}

    def handle(self, message: dict[str, Any]) -> bool:
        """Log one progress message.

        Returns:
            True if the message was logged, False if it repeated the layer's
            previous status.
        """
        if message.get("error"):
            logger.error(f"Pull of {self.image} reported: {message['error']}")
            return True

        status = message.get("status", "")
        layer = message.get("id", "")
        if self._last_status.get(layer) == status:
            return False

        self._last_status[layer] = status
        if layer:
            logger.info(f"Pulling {self.image}: {layer} {status}")
        else:
            logger.info(f"Pulling {self.image}: {status}")
        return True
