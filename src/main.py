"""Entry point for the conference wake-phrase voice bridge."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from api.dependencies import get_orchestrator
from api.routes import router as api_router
from config.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    orchestrator = app.dependency_overrides.get(get_orchestrator, get_orchestrator)()
    await orchestrator.close_all()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Conference Voice Bridge",
    description="Wake-phrase activated conversational agent for Twilio conference calls.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


@app.get("/health", response_class=PlainTextResponse)
async def health() -> str:
    return "ok"
