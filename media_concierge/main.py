"""Main FastAPI application entry point."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from media_concierge.api import chat
from media_concierge.core.logging_config import get_logger, setup_logging
from media_concierge.middleware.logging_middleware import RequestLoggingMiddleware
from media_concierge.services.context_store import get_context_store
from media_concierge.services.orchestrator import reset_orchestrator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and start the pending-context sweeper.

    On shutdown the sweeper is stopped and the catalog clients are closed.
    """
    setup_logging()
    store = get_context_store()
    store.start_sweeper()
    logger.info(
        "Media Concierge started",
        extra={"extra_data": {"context_ttl_seconds": store.config.ttl_seconds}},
    )
    try:
        yield
    finally:
        await store.stop_sweeper()
        await reset_orchestrator()
        logger.info("Media Concierge stopped")


app = FastAPI(
    title="Media Concierge API",
    description="Conversational requests for a movie and TV library",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

# CORS for browser-based chat clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:5173").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(chat.router, prefix="/chat", tags=["chat"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Media Concierge API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint with pending-context count."""
    return {"status": "healthy", "pending_contexts": get_context_store().size()}
