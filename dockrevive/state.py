import copy
import threading

from dockrevive.models import ContainerConfig


class ConfigStore:
    """Thread-safe store of container configuration snapshots.

    Entries are keyed by the current container id. The event monitor,
    background restart tasks and the HTTP handlers all touch the store, so
    every access goes through one lock. Reads hand out deep copies so no
    caller ever holds a reference into the map once the lock is released.
    """

    def __init__(self):
        self._configs: dict[str, ContainerConfig] = {}
        self._lock = threading.Lock()

    def upsert(self, config: ContainerConfig, replace: bool = False) -> bool:
        """Insert a snapshot.

        Without ``replace`` the insert is skipped when the id is already
        known, so a load or start event never clobbers a config written by
        an in-flight restart.

        Returns:
            True if the entry was written.
        """
        snapshot = copy.deepcopy(config)
        with self._lock:
            if not replace and snapshot.container_id in self._configs:
                return False
            self._configs[snapshot.container_id] = snapshot
            return True

    def migrate(self, old_id: str, config: ContainerConfig) -> None:
        """Move an entry to the id of its recreated container."""
        snapshot = copy.deepcopy(config)
        with self._lock:
            self._configs.pop(old_id, None)
            self._configs[snapshot.container_id] = snapshot

    def get(self, container_id: str) -> ContainerConfig | None:
        with self._lock:
            config = self._configs.get(container_id)
            return copy.deepcopy(config) if config else None

    def resolve(self, ref: str) -> str | None:
        """Full id of the entry matching a full id, a name or a unique id prefix."""
        if not ref:
            return None
        name = ref.lstrip("/")
        with self._lock:
            if ref in self._configs:
                return ref
            for container_id, config in self._configs.items():
                if config.name == name:
                    return container_id
            matches = [cid for cid in self._configs if cid.startswith(ref)]
            return matches[0] if len(matches) == 1 else None

    def remove(self, container_id: str) -> bool:
        with self._lock:
            return self._configs.pop(container_id, None) is not None

    def all(self) -> list[ContainerConfig]:
        with self._lock:
            return copy.deepcopy(list(self._configs.values()))

    def __contains__(self, container_id: str) -> bool:
        with self._lock:
            return container_id in self._configs

    def __len__(self) -> int:
        with self._lock:
            return len(self._configs)
