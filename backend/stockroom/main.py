from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from stockroom.api.routes.inventory_routes import router as inventory_router
from stockroom.container import cache_breaker, container, mongo_manager, redis_manager, settings


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    await container.start()
    try:
        yield
    finally:
        await container.stop()


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.include_router(inventory_router, prefix=settings.api_prefix)


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "status": "ok",
        "services": {
            "mongo": {"status": mongo_manager.status, "error": mongo_manager.error},
            "redis": {"status": redis_manager.status, "error": redis_manager.error},
            "cache": cache_breaker.snapshot.as_dict(),
        },
    }
