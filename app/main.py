import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.v1.router import router as v1_router
from app.core.config import settings
from app.core.telemetry import setup_telemetry
from app.providers.doordash.client import build_doordash_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=logging.INFO)
    app.state.doordash = build_doordash_client(settings)
    try:
        yield
    finally:
        await app.state.doordash.aclose()


app = FastAPI(title="Brew & Board Dispatch API", version="0.1.0", lifespan=lifespan)

setup_telemetry(app)
app.include_router(v1_router)
