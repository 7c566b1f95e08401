"""Health check endpoints.

/health is a plain liveness check. /health/ready also verifies the
database connection and reports whether the bot poller is running.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.meetbot.config import get_settings
from src.meetbot.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: database connectivity plus poller and Recall.ai config.

    Returns 200 if the database answers, 503 otherwise.
    """
    checks: dict = {"database": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    poller = getattr(request.app.state, "bot_poller", None)
    checks["bot_poller"] = "running" if poller is not None and poller.running else "stopped"
    checks["recall_ai"] = "ok" if get_settings().RECALL_AI_API_KEY else "no_key"

    healthy = checks["database"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if healthy else "degraded", "checks": checks},
    )
