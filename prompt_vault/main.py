"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from prompt_vault.api.router import api_router
from prompt_vault.config import get_settings
from prompt_vault.db.client import get_supabase_client
from prompt_vault.utils.logging import setup_logging

logger = structlog.get_logger()

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("promptvault.starting", port=settings.port, bucket=settings.storage_bucket)

    if settings.supabase_configured:
        get_supabase_client()
    else:
        logger.warning("promptvault.supabase_missing")

    yield

    logger.info("promptvault.shutdown")


app = FastAPI(
    title="PromptVault",
    description="Personal prompt library with tags and images",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Service info endpoint."""
    return {"service": "promptvault", "version": VERSION}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "promptvault",
        "version": VERSION,
        "supabase_configured": get_settings().supabase_configured,
    }


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
