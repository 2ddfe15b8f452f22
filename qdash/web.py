"""HTTP surface exposing the queue dashboard API over FastAPI."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import AppConfig
from .connections import StoreClientFactory, StoreError
from .keys import QueueKeys
from .queries import QueueFacade, StoreNotConnectedError
from .registry import ConnectionRegistry, InvalidConnectRequest, MissingEndpointError

LOG = logging.getLogger(__name__)

SESSION_COOKIE = "cppq_session"
SESSION_MAX_AGE = 60 * 60 * 24 * 7


class ConnectRequest(BaseModel):
    uri: str | None = None


def get_facade(request: Request) -> QueueFacade:
    return request.app.state.facade


def get_session_id(request: Request) -> str:
    return request.cookies.get(SESSION_COOKIE) or ""


router = APIRouter(prefix="/api")


@router.post("/redis/connect")
async def connect(
    body: ConnectRequest,
    request: Request,
    facade: QueueFacade = Depends(get_facade),
) -> JSONResponse:
    if not body.uri:
        raise MissingEndpointError("Redis URI is required")
    session_id = get_session_id(request) or str(uuid.uuid4())
    try:
        await facade.registry.connect(session_id, body.uri)
    except StoreError as exc:
        return JSONResponse({"connected": False, "error": str(exc)}, status_code=502)
    response = JSONResponse({"connected": True})
    response.set_cookie(
        SESSION_COOKIE,
        session_id,
        max_age=SESSION_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
    )
    return response


@router.get("/redis/connect")
async def connection_status(
    session_id: str = Depends(get_session_id),
    facade: QueueFacade = Depends(get_facade),
) -> dict[str, bool]:
    return {"connected": await facade.is_connected(session_id)}


@router.post("/redis/disconnect")
async def disconnect(
    session_id: str = Depends(get_session_id),
    facade: QueueFacade = Depends(get_facade),
) -> dict[str, bool]:
    await facade.registry.disconnect(session_id)
    return {"connected": False}


@router.get("/queue")
async def list_queues(
    session_id: str = Depends(get_session_id),
    facade: QueueFacade = Depends(get_facade),
) -> list[str]:
    return await facade.list_queues(session_id)


@router.get("/queue/{queue}/stats")
async def queue_stats(
    queue: str,
    session_id: str = Depends(get_session_id),
    facade: QueueFacade = Depends(get_facade),
) -> dict[str, int | bool]:
    stats = await facade.get_stats(session_id, queue)
    return stats.to_dict()


@router.get("/queue/{queue}/memory")
async def queue_memory(
    queue: str,
    session_id: str = Depends(get_session_id),
    facade: QueueFacade = Depends(get_facade),
) -> dict[str, int]:
    return {"memory": await facade.get_memory_usage_mb(session_id, queue)}


@router.post("/queue/{queue}/pause")
async def pause_queue(
    queue: str,
    session_id: str = Depends(get_session_id),
    facade: QueueFacade = Depends(get_facade),
) -> dict[str, bool]:
    await facade.pause(session_id, queue)
    return {"success": True}


@router.post("/queue/{queue}/unpause")
async def unpause_queue(
    queue: str,
    session_id: str = Depends(get_session_id),
    facade: QueueFacade = Depends(get_facade),
) -> dict[str, bool]:
    await facade.unpause(session_id, queue)
    return {"success": True}


@router.get("/queue/{queue}/{state}/tasks")
async def queue_tasks(
    queue: str,
    state: str,
    session_id: str = Depends(get_session_id),
    facade: QueueFacade = Depends(get_facade),
) -> list[dict[str, str]]:
    tasks = await facade.list_tasks(session_id, queue, state)
    return [task.to_dict() for task in tasks]


async def _invalid_request(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


async def _not_connected(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=503)


async def _store_failure(request: Request, exc: Exception) -> JSONResponse:
    LOG.warning("Store request failed", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse({"error": str(exc)}, status_code=502)


def create_app(
    registry: ConnectionRegistry | None = None,
    *,
    config: AppConfig | None = None,
) -> FastAPI:
    """Build the API app around one registry shared by every request."""

    config = config or AppConfig()
    if registry is None:
        registry = ConnectionRegistry(
            StoreClientFactory(connect_timeout=config.connect_timeout, key_prefix=config.key_prefix)
        )
    facade = QueueFacade(registry, keys=QueueKeys(config.key_prefix), scan_count=config.scan_count)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await registry.shutdown()

    app = FastAPI(title="qdash", lifespan=lifespan)
    app.state.registry = registry
    app.state.facade = facade
    app.include_router(router)
    app.add_exception_handler(InvalidConnectRequest, _invalid_request)
    app.add_exception_handler(StoreNotConnectedError, _not_connected)
    app.add_exception_handler(StoreError, _store_failure)
    return app


def serve(config: AppConfig, *, host: str = "127.0.0.1", port: int = 8000) -> None:
    """Run the API with uvicorn."""

    logging.basicConfig(level=config.log_level)
    uvicorn.run(create_app(config=config), host=host, port=port, log_level=config.log_level.lower())


__all__ = ["SESSION_COOKIE", "create_app", "router", "serve"]
