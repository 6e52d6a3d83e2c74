from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["Core"])


# GET /
# Gets: nothing
# Returns: basic API metadata and a map of key endpoints
# Example:
#   curl http://localhost:8000/
@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Lead Linker API - voice widget leads and their conversations",
        "version": "1.0.0",
        "endpoints": {
            "create_lead": "/leads",
            "list_leads": "/leads",
            "link_lead": "/link",
            "link_batch": "/link/batch",
            "link_auto": "/link/auto",
            "link_force": "/link/force",
            "health": "/health",
            "metrics": "/metrics",
        },
    }


# GET /metrics
# Gets: nothing
# Returns: Prometheus text exposition
# Example:
#   curl http://localhost:8000/metrics
@router.get("/metrics")
async def metrics():
    """Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
