"""Health check endpoint: database, embedding provider and classifier mode."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from memory_timeline.config import settings

router = APIRouter()

VERSION = "0.1.0"


class HealthStatus(BaseModel):
    status: str  # "healthy" | "degraded" | "unhealthy"
    version: str
    checks: dict[str, dict]
    timestamp: datetime


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    from memory_timeline.api.v1.timeline import _core

    checks: dict[str, dict] = {}
    overall_healthy = True
    has_warning = False

    # 1. SQLite DB
    try:
        db_engine = _core.db_engine if _core is not None else None
        if db_engine is None:
            from memory_timeline.db.database import engine as db_engine
        with db_engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
            wal = conn.execute(text("PRAGMA journal_mode")).fetchone()
            checks["database"] = {"status": "ok", "detail": f"journal_mode={wal[0]}"}
    except Exception as e:
        checks["database"] = {"status": "error", "detail": str(e)}
        overall_healthy = False

    # 2. Embedding provider
    if _core is None:
        checks["embeddings"] = {"status": "error", "detail": "engine not initialized"}
        overall_healthy = False
    else:
        provider = _core.embeddings.provider
        detail = f"{provider.name}/{provider.model} (dim={provider.dimension})"
        if provider.name == "local":
            checks["embeddings"] = {"status": "warning", "detail": f"{detail}, offline fallback"}
            has_warning = True
        else:
            checks["embeddings"] = {"status": "ok", "detail": detail}

    # 3. Relationship classifier
    if _core is not None and _core.classifier_mode == "llm":
        checks["classifier"] = {"status": "ok", "detail": f"llm ({settings.classifier_model})"}
    else:
        checks["classifier"] = {"status": "warning", "detail": "heuristic (ANTHROPIC_API_KEY not set)"}
        has_warning = True

    if not overall_healthy:
        status = "unhealthy"
    elif has_warning:
        status = "degraded"
    else:
        status = "healthy"

    return HealthStatus(
        status=status,
        version=VERSION,
        checks=checks,
        timestamp=datetime.now(timezone.utc),
    )
