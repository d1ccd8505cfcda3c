import asyncio
import logging
import os
import sys

import uvicorn

from dockrevive.api.app import create_app, find_available_port
from dockrevive.config import AppConfig, Settings, generate_default_config
from dockrevive.engine.client import connect_with_retry
from dockrevive.errors import EngineConnectionError
from dockrevive.monitors.debouncer import RestartDebouncer
from dockrevive.monitors.docker_events import DockerEventMonitor
from dockrevive.services.container_control import ContainerController
from dockrevive.services.restart import RestartWorkflow
from dockrevive.state import ConfigStore


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def main() -> None:
    # Check for first run and generate default config if needed
    config_path = os.environ.get("CONFIG_PATH", "config/config.yaml")
    if generate_default_config(config_path):
        logger.info(f"Created default config at {config_path}")

    try:
        settings = Settings()
        config = AppConfig(settings)
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    logging.getLogger().setLevel(config.log_level)
    logger.info("Configuration loaded")

    monitor_config = config.monitor
    docker_config = config.docker
    api_config = config.api

    try:
        engine = await asyncio.to_thread(
            connect_with_retry,
            docker_config.socket_path,
            docker_config.connect_retries,
            docker_config.connect_retry_delay_seconds,
            docker_config.timeout_seconds,
        )
    except EngineConnectionError as e:
        logger.error(f"Failed to connect to Docker: {e}")
        sys.exit(1)

    store = ConfigStore()
    workflow = RestartWorkflow(engine, store, config.restart)
    monitor = DockerEventMonitor(
        engine=engine,
        store=store,
        workflow=workflow,
        debouncer=RestartDebouncer(window_seconds=monitor_config.restart_window_seconds),
        ignored_containers=monitor_config.ignored_containers,
        health_check_interval=monitor_config.health_check_interval_seconds,
    )

    try:
        await monitor.load_initial_state()
    except Exception as e:
        logger.error(f"Failed to load containers from Docker: {e}")
        sys.exit(1)

    # Start the HTTP API as background task (if enabled)
    server = None
    server_task = None
    if api_config.enabled:
        port = find_available_port(api_config.host, api_config.port, api_config.port_end)
        if port is None:
            logger.error(f"No free port between {api_config.port} and {api_config.port_end}, API disabled")
        else:
            app = create_app(ContainerController(engine, store))
            server = uvicorn.Server(
                uvicorn.Config(app, host=api_config.host, port=port, log_level=config.log_level.lower())
            )
            server_task = asyncio.create_task(server.serve())
            logger.info(f"API listening on http://{api_config.host}:{port}")

    monitor_failed = False
    try:
        await monitor.start()
        # Only cancellation is a clean shutdown; a finished stream is a failure
        monitor_failed = True
        logger.error("Docker event monitor stopped unexpectedly")
    except asyncio.CancelledError:
        logger.info("Monitor cancelled")
    finally:
        logger.info("Shutting down...")
        monitor.stop()
        await monitor.drain(monitor_config.shutdown_grace_seconds)
        if server is not None and server_task is not None:
            server.should_exit = True
            try:
                await server_task
            except asyncio.CancelledError:
                pass
        engine.close()

    if monitor_failed:
        sys.exit(1)


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
