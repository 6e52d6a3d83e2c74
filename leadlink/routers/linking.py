import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadlink.config import MatchSettings
from leadlink.database import get_db
from leadlink.dependencies import get_match_settings, get_voice_client
from leadlink.errors import LinkingError
from leadlink.linking import auto_link_recent_leads, force_link_lead, link_unlinked_leads, smart_link_lead
from leadlink.logging_config import bind_lead_context, get_logger
from leadlink.metrics import link_attempts, link_duration
from leadlink.models import ForceLinkRequest, LinkRequest
from leadlink.security import verify_api_key
from leadlink.voice_client import VoiceClient

logger = get_logger(__name__)

router = APIRouter(prefix="/link", tags=["Linking"], dependencies=[Depends(verify_api_key)])


def _error_response(error: LinkingError, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": error.message, **extra},
    )


# POST /link
# Gets: JSON body {lead_id: str, force?: bool}
# Returns: 200 {success, lead_id, linked_conversation, candidates, search_criteria, ...}
#          404 {success: false, error, search_criteria, ...} when no conversation matches
# Example:
#   curl -X POST http://localhost:8000/link \
#     -H 'Content-Type: application/json' \
#     -d '{"lead_id": "3f1c..."}'
@router.post("")
def link_lead(
    body: LinkRequest,
    db: Session = Depends(get_db),
    client: VoiceClient = Depends(get_voice_client),
    settings: MatchSettings = Depends(get_match_settings),
):
    """Match one lead to the voice conversation it came from and link it."""
    if not body.lead_id:
        return JSONResponse(status_code=400, content={"success": False, "error": "lead_id is required"})

    started = time.perf_counter()
    try:
        with bind_lead_context(body.lead_id):
            outcome = smart_link_lead(db, client, body.lead_id, settings, force=body.force)
    except LinkingError as e:
        link_attempts.labels(endpoint="link", outcome=type(e).__name__).inc()
        logger.warning("link_failed", lead_id=body.lead_id, error=e.message, status=e.status_code)
        return _error_response(e, lead_id=body.lead_id)
    finally:
        link_duration.labels(endpoint="link").observe(time.perf_counter() - started)

    link_attempts.labels(endpoint="link", outcome="linked" if outcome.success else "no_match").inc()
    return JSONResponse(
        status_code=200 if outcome.success else 404,
        content=outcome.model_dump(mode="json"),
    )


# POST /link/batch
# Gets: nothing
# Returns: batch report {success, processed, successful_links, failed_links, linking_methods, results}
# Example:
#   curl -X POST http://localhost:8000/link/batch
@router.post("/batch")
def link_batch(
    db: Session = Depends(get_db),
    client: VoiceClient = Depends(get_voice_client),
    settings: MatchSettings = Depends(get_match_settings),
):
    """Link every unlinked lead (metadata id first, then scoring)."""
    with link_duration.labels(endpoint="batch").time():
        try:
            report = link_unlinked_leads(db, client, settings)
        except LinkingError as e:
            link_attempts.labels(endpoint="batch", outcome=type(e).__name__).inc()
            return _error_response(e)

    link_attempts.labels(endpoint="batch", outcome="completed").inc()
    return report.model_dump(mode="json")


# POST /link/auto
# Gets: nothing
# Returns: batch report for leads created in the last few minutes, linked by time proximity
# Example:
#   curl -X POST http://localhost:8000/link/auto
@router.post("/auto")
def link_auto(
    db: Session = Depends(get_db),
    client: VoiceClient = Depends(get_voice_client),
    settings: MatchSettings = Depends(get_match_settings),
):
    """Link freshly created leads to the conversation closest in time."""
    with link_duration.labels(endpoint="auto").time():
        try:
            report = auto_link_recent_leads(db, client, settings)
        except LinkingError as e:
            link_attempts.labels(endpoint="auto", outcome=type(e).__name__).inc()
            return _error_response(e)

    link_attempts.labels(endpoint="auto", outcome="completed").inc()
    return report.model_dump(mode="json")


# POST /link/force
# Gets: JSON body {lead_id: str, conversation_id: str}
# Returns: 200 {success, message, lead_id, conversation_id, local_conversation_id}
#          400 when either id is missing, 404 unknown lead, 500 database failure
# Example:
#   curl -X POST http://localhost:8000/link/force \
#     -H 'Content-Type: application/json' \
#     -d '{"lead_id": "3f1c...", "conversation_id": "conv_01jx..."}'
@router.post("/force")
def link_force(body: ForceLinkRequest, db: Session = Depends(get_db)):
    """Link a lead to a conversation picked by hand."""
    if not body.lead_id or not body.conversation_id:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "lead_id and conversation_id are required"},
        )

    try:
        result = force_link_lead(db, body.lead_id, body.conversation_id)
    except LinkingError as e:
        link_attempts.labels(endpoint="force", outcome=type(e).__name__).inc()
        return _error_response(e, lead_id=body.lead_id)

    link_attempts.labels(endpoint="force", outcome="linked").inc()
    return result.model_dump(mode="json")
