from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from leadlink.database import get_db
from leadlink.dependencies import client_ip, get_lead_rate_limiter
from leadlink.logging_config import get_logger
from leadlink.metrics import leads_created
from leadlink.models import LeadCreateRequest, LeadResponse
from leadlink.rate_limit import SlidingWindowRateLimiter
from leadlink.services import LeadService

logger = get_logger(__name__)

router = APIRouter(prefix="/leads", tags=["Leads"])


# POST /leads
# Gets: JSON body {name?, phone?, email?, notes?, source?, agent_id?, external_conversation_id?}
# Returns: the created lead (201); 400 without name and phone; 429 when rate limited
# Example:
#   curl -X POST http://localhost:8000/leads \
#     -H 'Content-Type: application/json' \
#     -d '{"name": "Дмитрий Иванов", "phone": "+375291234567"}'
@router.post("", response_model=LeadResponse, status_code=201)
def create_lead(
    payload: LeadCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    limiter: SlidingWindowRateLimiter = Depends(get_lead_rate_limiter),
):
    """Capture a lead submitted by the voice widget."""
    ip = client_ip(request)
    if not limiter.allow(ip):
        logger.warning("lead_rate_limited", client_ip=ip)
        raise HTTPException(status_code=429, detail="Rate limit exceeded")

    if not (payload.name or payload.phone):
        raise HTTPException(status_code=400, detail="No valid contact information found")

    lead = LeadService.create_lead(
        db,
        name=payload.name,
        phone=payload.phone,
        email=payload.email,
        notes=payload.notes,
        source=payload.source,
        agent_id=payload.agent_id,
        external_conversation_id=payload.external_conversation_id,
    )
    leads_created.labels(source=payload.source).inc()
    return LeadService.to_response(lead)


# GET /leads?unlinked=true&limit=50
# Gets: optional query params unlinked (bool), skip, limit
# Returns: JSON array of leads, newest first
# Example:
#   curl 'http://localhost:8000/leads?unlinked=true'
@router.get("", response_model=list[LeadResponse])
def list_leads(
    unlinked: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """List leads."""
    return [LeadService.to_response(lead) for lead in LeadService.list_leads(db, skip=skip, limit=limit, unlinked=unlinked)]


# GET /leads/{lead_id}
# Gets: path param lead_id
# Returns: the lead, or 404
# Example:
#   curl http://localhost:8000/leads/3f1c...
@router.get("/{lead_id}", response_model=LeadResponse)
def get_lead(lead_id: str, db: Session = Depends(get_db)):
    """Get a single lead."""
    lead = LeadService.get_lead(db, lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail=f"Lead {lead_id} not found")
    return LeadService.to_response(lead)
