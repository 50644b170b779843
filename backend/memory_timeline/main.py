"""Memory Timeline FastAPI application.

Entry point for the cross-reference and pattern engine server.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from memory_timeline.api.health import VERSION
from memory_timeline.api.health import router as health_router
from memory_timeline.api.v1.timeline import router as timeline_router
from memory_timeline.api.v1.timeline import set_core
from memory_timeline.config import settings
from memory_timeline.db.database import create_db_and_tables, engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    create_db_and_tables()

    core = None
    try:
        from memory_timeline.core import build_core

        core = build_core(engine)
        set_core(core)
        logger.info(
            "Timeline engine ready: embeddings=%s/%s, classifier=%s",
            core.embeddings.provider_name, core.embeddings.model, core.classifier_mode,
        )
    except Exception as e:
        # /health reports the engine as missing; endpoints answer 503
        logger.error("Timeline engine init failed: %s", e)
    yield
    if core is not None:
        await core.aclose()
        set_core(None)


app = FastAPI(
    title="Memory Timeline",
    description="Semantic cross-reference and pattern engine for a personal life timeline",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


# Global exception handler: internal details never leak
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        raise exc
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error."},
    )


app.include_router(health_router)
app.include_router(timeline_router)


@app.get("/")
async def root():
    return {"name": "Memory Timeline", "version": VERSION, "status": "running"}
