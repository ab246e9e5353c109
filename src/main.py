"""Entry point for the peer-to-peer calling client."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import get_call_manager
from api.routes import router as api_router
from config.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    provider = app.dependency_overrides.get(get_call_manager, get_call_manager)
    manager = provider()
    await manager.start()
    yield
    await manager.shutdown()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Peer Call Client",
    description="Signaling client for direct audio/video calls between two users.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")
