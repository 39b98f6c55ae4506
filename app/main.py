from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.runner import build_default_runner


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    runner = build_default_runner()
    try:
        yield
    finally:
        runner.shutdown()
        build_default_runner.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Heat Map Batch Service",
        description="Daily grid-cell density maps built from geo-tagged reading batches.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
