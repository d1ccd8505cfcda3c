import asyncio
import logging
from datetime import datetime
from typing import Any

import docker

from dockrevive.engine.client import EngineClient
from dockrevive.errors import InspectError
from dockrevive.models import ContainerConfig, EngineEvent
from dockrevive.monitors.debouncer import RestartDebouncer
from dockrevive.services.restart import RestartWorkflow
from dockrevive.state import ConfigStore

logger = logging.getLogger(__name__)

STOP_ACTIONS = frozenset({"die", "stop", "kill", "exited"})
LOADED_STATUSES = ["running", "created", "exited", "paused"]
STOPPED_STATUSES = ["exited", "dead"]


def parse_event(raw: dict[str, Any]) -> EngineEvent | None:
    """Convert a decoded engine event to EngineEvent.

    Returns None for events without an actor id.
    """
    actor = raw.get("Actor") or {}
    actor_id = actor.get("ID") or raw.get("id")
    if not actor_id:
        return None

    return EngineEvent(
        type=raw.get("Type", ""),
        action=raw.get("Action") or raw.get("status", ""),
        actor_id=actor_id,
        attributes=actor.get("Attributes") or {},
    )


class DockerEventMonitor:
    """Restarts containers that stop, driven by the engine event stream."""

    def __init__(
        self,
        engine: EngineClient,
        store: ConfigStore,
        workflow: RestartWorkflow,
        debouncer: RestartDebouncer | None = None,
        ignored_containers: list[str] | None = None,
        health_check_interval: float = 30,
    ):
        self.engine = engine
        self.store = store
        self.workflow = workflow
        self.debouncer = debouncer or RestartDebouncer()
        self.ignored_containers = set(ignored_containers or [])
        self.health_check_interval = health_check_interval
        self._running = False
        self._engine_healthy = True
        self._stream: Any = None
        self._restart_tasks: set[asyncio.Task] = set()
        self._health_task: asyncio.Task | None = None

    @property
    def restart_tasks(self) -> set[asyncio.Task]:
        return set(self._restart_tasks)

    async def load_initial_state(self) -> int:
        """Snapshot the config of every existing container into the store.

        Returns:
            Number of containers loaded.
        """
        summaries = await asyncio.to_thread(self.engine.list_containers, LOADED_STATUSES)

        loaded = 0
        for summary in summaries:
            try:
                config = await self._inspect(summary["Id"])
            except InspectError as e:
                logger.warning(f"Skipping container during load: {e}")
                continue
            self.store.upsert(config)
            loaded += 1

        logger.info(f"Loaded {len(self.store)} container configs")
        return loaded

    async def sweep_stopped_containers(self) -> list[str]:
        """Run the restart decision for containers that are already stopped.

        Returns:
            Ids of the containers a restart was dispatched for.
        """
        summaries = await asyncio.to_thread(self.engine.list_containers, STOPPED_STATUSES)

        dispatched = []
        for summary in summaries:
            container_id = summary["Id"]
            logger.info(f"Found stopped container {container_id[:12]}")
            if self.handle_container_stop(container_id):
                dispatched.append(container_id)
        return dispatched

    async def start(self) -> None:
        """Sweep stopped containers, then consume events until the stream ends."""
        self._running = True
        logger.info("Starting Docker event monitor")

        await self.sweep_stopped_containers()

        self._health_task = asyncio.create_task(self._health_loop())

        queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        loop = asyncio.get_running_loop()
        self._stream = self.engine.stream_events()

        def stream_to_queue():
            """Blocking function that drains the event stream into the queue."""
            try:
                for raw in self._stream:
                    if not self._running:
                        break
                    loop.call_soon_threadsafe(queue.put_nowait, raw)
            except Exception as e:
                if self._running:
                    logger.error(f"Docker event stream failed: {e}")
            finally:
                loop.call_soon_threadsafe(queue.put_nowait, None)

        stream_task = asyncio.create_task(asyncio.to_thread(stream_to_queue))

        try:
            while self._running:
                raw = await queue.get()
                if raw is None:
                    logger.warning("Docker event stream ended")
                    break
                try:
                    await self.handle_event(raw)
                except Exception as e:
                    logger.error(f"Error handling Docker event: {e}")
        finally:
            self._running = False
            self._close_stream()
            await stream_task
            if self._health_task:
                self._health_task.cancel()
                try:
                    await self._health_task
                except asyncio.CancelledError:
                    pass

    def stop(self) -> None:
        """Stop consuming events. In-flight restarts keep running."""
        self._running = False
        self._close_stream()
        logger.info("Stopping Docker event monitor")

    async def drain(self, timeout: float) -> None:
        """Wait for in-flight restarts, cancelling whatever outlives the timeout."""
        pending = self.restart_tasks
        if not pending:
            return

        logger.info(f"Waiting up to {timeout}s for {len(pending)} restart(s)")
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} unfinished restart(s)")
            await asyncio.gather(*still_running, return_exceptions=True)

    async def handle_event(self, raw: dict[str, Any]) -> None:
        """Classify one engine event and act on it."""
        event = parse_event(raw)
        if event is None:
            logger.warning(f"Ignoring malformed Docker event: {raw}")
            return

        if event.type != "container":
            return

        if event.action in STOP_ACTIONS:
            logger.info(f"Container {event.name or event.actor_id[:12]} stopped ({event.action})")
            self.handle_container_stop(event.actor_id, event.name)
        elif event.action == "start":
            await self._handle_container_start(event.actor_id)
        elif event.action == "destroy":
            self.debouncer.clear(event.actor_id)

    def handle_container_stop(self, container_id: str, name: str = "", now: datetime | None = None) -> bool:
        """Record the attempt and dispatch a restart.

        Returns:
            True if a restart task was dispatched.
        """
        if not name:
            config = self.store.get(container_id)
            name = config.name if config else ""
        if name in self.ignored_containers:
            logger.debug(f"Not restarting ignored container {name}")
            return False

        record = self.debouncer.record(container_id, now)
        logger.info(
            f"Restarting container {name or container_id[:12]} "
            f"(attempt {record.restart_count})"
        )

        task = asyncio.create_task(self._restart(container_id))
        self._restart_tasks.add(task)
        task.add_done_callback(self._restart_tasks.discard)
        return True

    async def _restart(self, container_id: str) -> None:
        if await self.workflow.restart_in_background(container_id) is not None:
            # The recreated container runs under a new id
            self.debouncer.clear(container_id)

    async def _handle_container_start(self, container_id: str) -> None:
        self.debouncer.clear(container_id)
        try:
            config = await self._inspect(container_id)
        except InspectError as e:
            logger.warning(f"Container started but could not be inspected: {e}")
            return
        if self.store.upsert(config):
            logger.info(f"Tracking new container {config.name} ({container_id[:12]})")

    async def _inspect(self, container_id: str) -> ContainerConfig:
        try:
            attrs = await asyncio.to_thread(self.engine.inspect_container, container_id)
        except docker.errors.DockerException as e:
            raise InspectError(container_id, str(e)) from e
        return ContainerConfig.from_inspect(attrs)

    async def _health_loop(self) -> None:
        """Periodically ping the engine, logging connectivity changes."""
        while self._running:
            await asyncio.sleep(self.health_check_interval)
            healthy = await asyncio.to_thread(self.engine.ping)
            if not healthy and self._engine_healthy:
                logger.warning("Docker engine is not responding")
            elif healthy and not self._engine_healthy:
                logger.info("Docker engine is reachable again")
            self._engine_healthy = healthy

    def _close_stream(self) -> None:
        stream = self._stream
        if stream is not None and hasattr(stream, "close"):
            try:
                stream.close()
            except Exception as e:
                logger.debug(f"Error closing event stream: {e}")
