"""FastAPI app entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from deploywatch.api.deps import get_monitor
from deploywatch.api.routes.events import router as events_router
from deploywatch.api.routes.logs import router as logs_router
from deploywatch.api.routes.projects import router as projects_router
from deploywatch.api.routes.settings import router as settings_router
from deploywatch.api.routes.watch import router as watch_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    monitor = app.dependency_overrides.get(get_monitor, get_monitor)()
    monitor.open()
    try:
        yield
    finally:
        monitor.close()


def create_app(*, manage_monitor: bool = True) -> FastAPI:
    app = FastAPI(
        title="deploywatch API",
        version="0.1.0",
        lifespan=lifespan if manage_monitor else None,
    )
    app.include_router(projects_router)
    app.include_router(watch_router)
    app.include_router(logs_router)
    app.include_router(events_router)
    app.include_router(settings_router)

    @app.get("/api/v1/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


def run(host: str = "127.0.0.1", port: int = 8000) -> None:
    uvicorn.run("deploywatch.api.app:app", host=host, port=port, reload=False)
