"""
Cigar Scanner API

Recognizes cigars from photos or free-text names and matches them
against the catalog.

Usage:
    uvicorn main:app --reload
"""

# .env must be loaded before anything reads Config
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cigar_scanner.config import Config

logging.basicConfig(
    level=getattr(logging, Config.log_level(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)
logger.info(f"Cigar Scanner starting, LOG_LEVEL={Config.log_level()}")

from cigar_scanner.routes import recognize_router
from cigar_scanner.routes.recognize import get_orchestrator
from cigar_scanner.services.result_cache import get_result_cache

# Flipped once the cache sweeper is running
_ready = False
_ALWAYS_OPEN_PATHS = ("/", "/health", "/docs", "/openapi.json")


def is_ready() -> bool:
    """Whether startup has finished."""
    return _ready


def set_ready(ready: bool = True):
    """Mark startup finished (or, on shutdown, not ready)."""
    global _ready
    _ready = ready


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the cache sweeper; on shutdown drain pending stats writes."""
    cache = get_result_cache()
    cache.start_sweeper()
    set_ready(True)
    logger.info("Cigar Scanner ready")
    yield
    set_ready(False)
    cache.stop_sweeper()
    if get_orchestrator.cache_info().currsize:
        get_orchestrator().shutdown(wait=True)


app = FastAPI(
    title="Cigar Scanner API",
    description="Recognize cigars from photos or names and match them to the catalog",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def warmup_middleware(request: Request, call_next):
    """Answer 503 with Retry-After until startup has finished."""
    if request.url.path in _ALWAYS_OPEN_PATHS or is_ready():
        return await call_next(request)

    return JSONResponse(
        status_code=503,
        content={
            "error": "Starting up",
            "message": "Cigar Scanner is still starting. Retry shortly.",
            "retry_after": 10,
        },
        headers={"Retry-After": "10"},
    )


app.include_router(recognize_router, tags=["recognize"])


@app.get("/")
async def root():
    """Service name, version and docs location."""
    return {
        "name": "Cigar Scanner API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "healthy"}
