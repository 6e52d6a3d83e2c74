"""
Health check and monitoring endpoints.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from leadlink.config import config
from leadlink.logging_config import logger

router = APIRouter(tags=["Health & Monitoring"])

SERVICE_NAME = "leadlink"
SERVICE_VERSION = "1.0.0"


# GET /health
# Gets: nothing
# Returns: {status, service, version}
# Example:
#   curl http://localhost:8000/health
@router.get("/health")
async def health_check():
    """
    Basic health check - returns 200 if service is running.
    Use this for basic liveness probes.
    """
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    }


# GET /health/ready
# Gets: nothing
# Returns: dependency readiness checks; 503 when the database is unreachable
# Example:
#   curl http://localhost:8000/health/ready
@router.get("/health/ready")
def readiness_check(request: Request):
    """
    Readiness check - verifies dependencies are available.
    Use this for Kubernetes readiness probes.

    Checks:
    - Database connectivity
    - Voice API configuration (not called; linking endpoints report their own failures)
    """
    checks = {
        "database": False,
        "voice_api": "configured" if config.has_voice_api_key() else "not_configured",
        "ready": False,
    }

    try:
        db = request.app.state.session_factory()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        checks["database"] = True
        logger.debug("readiness_check_database", status="ok")
    except SQLAlchemyError as e:
        logger.warning("readiness_check_database", status="error", error=str(e))

    checks["ready"] = checks["database"] is True

    return JSONResponse(status_code=200 if checks["ready"] else 503, content=checks)


# GET /health/info
# Gets: nothing
# Returns: service configuration summary
# Example:
#   curl http://localhost:8000/health/info
@router.get("/health/info")
async def system_info(request: Request):
    """
    System information and configuration status.
    """
    settings = request.app.state.match_settings
    client = request.app.state.voice_client
    rate_limit = client.rate_limit_info
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "configuration": {
            "voice_api_configured": config.has_voice_api_key(),
            "voice_api_base_url": config.VOICE_API_BASE_URL,
            "database_backend": "sqlite" if config.is_sqlite() else "postgresql",
            "debug_mode": config.DEBUG,
        },
        "matching": {
            "tool_name": settings.tool_name,
            "time_window_minutes": int(settings.time_window.total_seconds() // 60),
            "score_threshold": settings.score_threshold,
            "candidate_page_size": settings.candidate_page_size,
        },
        "voice_api_rate_limit": (
            {"limit": rate_limit.limit, "remaining": rate_limit.remaining, "reset": rate_limit.reset}
            if rate_limit else None
        ),
    }
