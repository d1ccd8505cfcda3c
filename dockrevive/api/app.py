"""HTTP API over the container config store and manual lifecycle operations."""

import logging
import socket

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dockrevive.errors import ContainerNotFoundError, InvalidSpecError, WorkflowError
from dockrevive.models import ContainerConfig
from dockrevive.services.container_control import ContainerController

logger = logging.getLogger(__name__)


class ContainerInfo(BaseModel):
    id: str
    name: str
    image: str
    status: str
    ports: list[str]
    mounts: list[str]
    env: list[str]


class ContainerRequest(BaseModel):
    name: str = Field(min_length=1)
    image: str = Field(min_length=1)
    ports: list[str] = Field(default_factory=list)
    mounts: list[str] = Field(default_factory=list)
    env: list[str] = Field(default_factory=list)


async def to_container_info(controller: ContainerController, config: ContainerConfig) -> ContainerInfo:
    return ContainerInfo(
        id=config.container_id,
        name=config.name,
        image=config.image,
        status=await controller.get_status(config.container_id),
        ports=config.ports,
        mounts=config.mounts,
        env=config.env,
    )


def create_app(controller: ContainerController) -> FastAPI:
    """Build the API application around a controller."""
    app = FastAPI(title="dockrevive", description="Container auto-restart monitor API")

    @app.exception_handler(ContainerNotFoundError)
    async def not_found_handler(request: Request, exc: ContainerNotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(InvalidSpecError)
    async def invalid_spec_handler(request: Request, exc: InvalidSpecError):
        return JSONResponse(status_code=400, content={"detail": exc.message})

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=502, content={"detail": exc.message})

    @app.get("/health")
    async def health():
        engine_ok = await controller.is_engine_healthy()
        return {
            "status": "healthy" if engine_ok else "degraded",
            "engine": engine_ok,
            "containers": len(controller.get_all_configs()),
        }

    @app.get("/api/containers", response_model=list[ContainerInfo])
    async def list_containers():
        return [await to_container_info(controller, c) for c in controller.get_all_configs()]

    @app.get("/api/container/{container_id}", response_model=ContainerInfo)
    async def get_container(container_id: str):
        config = controller.get_config(container_id)
        if config is None:
            raise HTTPException(status_code=404, detail=f"Container '{container_id}' not found")
        return await to_container_info(controller, config)

    @app.post("/api/containers", response_model=ContainerInfo, status_code=201)
    async def create_container(request: ContainerRequest):
        config = await controller.create(
            request.name, request.image, request.ports, request.mounts, request.env
        )
        return await to_container_info(controller, config)

    @app.put("/api/container/{container_id}", response_model=ContainerInfo)
    async def update_container(container_id: str, request: ContainerRequest):
        config = await controller.update(
            container_id, request.name, request.image, request.ports, request.mounts, request.env
        )
        return await to_container_info(controller, config)

    @app.delete("/api/container/{container_id}", status_code=204)
    async def delete_container(container_id: str):
        await controller.remove(container_id)
        return Response(status_code=204)

    return app


def find_available_port(host: str, start: int, end: int) -> int | None:
    """First port in [start, end) that can be bound on host."""
    for port in range(start, end):
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((host, port))
                return port
        except OSError:
            logger.info(f"Port {port} is in use, trying the next one")
    return None
