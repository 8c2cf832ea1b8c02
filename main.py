"""
Humidor API

FastAPI backend for identifying cigars from band photos and keeping a
personal humidor log with offline-first persistence.

Usage:
    uvicorn main:app --reload
"""

# Load environment variables from .env file FIRST
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from humidor.config import Config

# Configure logging from environment
logging.basicConfig(
    level=getattr(logging, Config.log_level(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)
logger.info(f"Starting with LOG_LEVEL={Config.log_level()}, USE_MOCKS={Config.use_mocks()}")

from humidor.db import ensure_schema
from humidor.routes import logs_router, sessions_router
from humidor.routes.dependencies import get_orchestrator, get_persistence_manager
from humidor.services.catalog_matcher import get_catalog_matcher

# Startup state - set to True once the local schema is ready
_is_ready = False


def is_ready() -> bool:
    """Check if the service is ready to handle requests."""
    return _is_ready


def set_ready(ready: bool = True):
    """Set the service ready state."""
    global _is_ready
    _is_ready = ready


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    ensure_schema(Config.database_path())
    matcher = get_catalog_matcher()
    logger.info(f"Local catalog warmed: {len(matcher)} cigar lines")
    set_ready(True)
    logger.info("Service ready to handle requests")
    yield
    set_ready(False)
    # Let in-flight stats updates and pending contributions finish before shutdown
    await get_persistence_manager().drain()
    await get_orchestrator().drain()


app = FastAPI(
    title="Humidor API",
    description="Identify cigars from band photos and keep a personal humidor",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for the Expo dev client and web builds
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8081",  # Expo dev server
        "http://localhost:19006",  # Expo web
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def warmup_middleware(request: Request, call_next):
    """Return 503 with retry hint if service is still warming up."""
    # Always allow health checks (for probes) and root
    if request.url.path in ("/health", "/", "/docs", "/openapi.json"):
        return await call_next(request)

    if not is_ready():
        return JSONResponse(
            status_code=503,
            content={
                "error": "Service warming up",
                "message": "The server is starting up. Please retry in a few seconds.",
                "retry_after": 10,
            },
            headers={"Retry-After": "10"},
        )

    return await call_next(request)

# Include routers
app.include_router(sessions_router, tags=["sessions"])
app.include_router(logs_router, tags=["logs"])


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Humidor API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint for container probes."""
    return {"status": "healthy"}
