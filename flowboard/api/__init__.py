"""FastAPI application wiring the store, broadcaster, runner and driver."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..activities import Activities
from ..broadcast import BroadcastDispatcher, SubscriptionRegistry
from ..config import FlowboardConfig, load_config
from ..driver import WorkflowDriver
from ..errors import (
    DuplicateInstanceError,
    InvalidStepUpdateError,
    InvalidTransitionError,
    NotFoundError,
)
from ..persistence import WorkflowRepository, get_repository
from ..runner import LocalStepRunner, StepRunner
from ..service import WorkflowService
from ..transports import BaseTransport, get_transport
from ..workflow import build_default_template
from .routes import router

logger = logging.getLogger(__name__)

_ERROR_STATUS = (
    (NotFoundError, 404),
    (DuplicateInstanceError, 409),
    (InvalidTransitionError, 409),
    (InvalidStepUpdateError, 422),
)


def create_app(
    config: Optional[FlowboardConfig] = None,
    *,
    repository: Optional[WorkflowRepository] = None,
    runner: Optional[StepRunner] = None,
    activities: Optional[Activities] = None,
    transport: Optional[BaseTransport] = None,
) -> FastAPI:
    """Build the dashboard application.

    Components not passed in are built from ``config``. A custom ``runner``
    must call ``app.state.driver`` as its workflow entrypoint.
    """
    config = config or load_config()
    repository = repository or get_repository(config=config)
    if transport is None:
        transport = get_transport(config=config)

    http_client: Optional[httpx.AsyncClient] = None
    if activities is None:
        http_client = httpx.AsyncClient()
        activities = Activities(config.workflow, http_client)

    registry = SubscriptionRegistry(max_pending=config.stream.max_pending_events)
    dispatcher = BroadcastDispatcher(registry, transport)
    template = build_default_template(config.workflow)
    driver = WorkflowDriver(repository, dispatcher, template, activities)
    runner = runner or LocalStepRunner(driver)
    service = WorkflowService(repository, runner, dispatcher, template)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        relay_task = None
        if transport is not None:
            await transport.connect()
            relay_task = asyncio.create_task(dispatcher.relay())
            # let the relay start listening before requests publish
            await asyncio.sleep(0)
        try:
            yield
        finally:
            if relay_task is not None:
                relay_task.cancel()
                try:
                    await relay_task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("Event relay stopped with an error")
            await runner.shutdown()
            registry.close()
            if transport is not None:
                await transport.disconnect()
            if http_client is not None:
                await http_client.aclose()
            await repository.close()

    app = FastAPI(title="Flowboard", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.repository = repository
    app.state.registry = registry
    app.state.dispatcher = dispatcher
    app.state.driver = driver
    app.state.runner = runner
    app.state.service = service

    @app.middleware("http")
    async def catch_unhandled_exceptions(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Unhandled exception")
            return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    for exc_class, status_code in _ERROR_STATUS:
        app.add_exception_handler(exc_class, _error_handler(status_code))

    app.include_router(router)
    return app


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


__all__ = ["create_app"]
