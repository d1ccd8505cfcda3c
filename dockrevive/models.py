from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class ContainerConfig:
    """Last-known configuration snapshot of a container."""

    container_id: str
    name: str
    image: str
    runtime_config: dict[str, Any] = field(default_factory=dict)
    host_config: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None

    @classmethod
    def from_inspect(cls, attrs: dict[str, Any]) -> "ContainerConfig":
        """Build a snapshot from an engine inspect response."""
        runtime_config = attrs.get("Config") or {}
        return cls(
            container_id=attrs.get("Id", ""),
            name=normalize_name(attrs.get("Name", "")),
            image=runtime_config.get("Image", ""),
            runtime_config=runtime_config,
            host_config=attrs.get("HostConfig") or {},
            ip_address=resolve_ip_address(attrs.get("NetworkSettings") or {}),
        )

    @property
    def env(self) -> list[str]:
        return list(self.runtime_config.get("Env") or [])

    @property
    def ports(self) -> list[str]:
        """Port bindings as "host_ip:host_port -> container_port"."""
        ports = []
        bindings = self.host_config.get("PortBindings") or {}
        for container_port, host_ports in bindings.items():
            for host_port in host_ports or []:
                host_ip = host_port.get("HostIp") or "0.0.0.0"
                ports.append(f"{host_ip}:{host_port.get('HostPort', '')} -> {container_port}")
        return ports

    @property
    def mounts(self) -> list[str]:
        """Bind strings followed by typed mounts as "source -> target"."""
        mounts = list(self.host_config.get("Binds") or [])
        for mount in self.host_config.get("Mounts") or []:
            source = mount.get("Source")
            target = mount.get("Target")
            if source and target:
                mounts.append(f"{source} -> {target}")
        return mounts


@dataclass
class RestartRecord:
    """Restart attempts for one container within the debounce window."""

    last_restart: datetime
    restart_count: int = 0


@dataclass
class EngineEvent:
    """A decoded engine lifecycle event."""

    type: str
    action: str
    actor_id: str
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return normalize_name(self.attributes.get("name", ""))


def normalize_name(name: str) -> str:
    """Strip the leading "/" the engine prepends to container names."""
    return name.lstrip("/")


def resolve_ip_address(network_settings: dict[str, Any]) -> str | None:
    """Best-effort container address from inspect NetworkSettings."""
    if network_settings.get("IPAddress"):
        return network_settings["IPAddress"]
    for network in (network_settings.get("Networks") or {}).values():
        if network and network.get("IPAddress"):
            return network["IPAddress"]
    return None
