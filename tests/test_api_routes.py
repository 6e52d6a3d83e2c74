"""Tests for API routes."""

from datetime import timedelta

from leadlink.config import config
from leadlink.rate_limit import SlidingWindowRateLimiter
from leadlink.services import LeadService, LinkService

from voice_fakes import LEAD_NAME, LEAD_PHONE, T0, conversation, lead_tool_message, perfect_conversation


def _create_lead(api_client, **body):
    body = {"name": LEAD_NAME, "phone": LEAD_PHONE, **body}
    response = api_client.post("/leads", json=body)
    assert response.status_code == 201
    return response.json()


def test_root_endpoint(api_client):
    """Test root endpoint returns API info."""
    response = api_client.get("/")
    assert response.status_code == 200

    data = response.json()
    assert "message" in data
    assert data["endpoints"]["link_lead"] == "/link"


# ---------------------------------------------------------------------------
# Leads
# ---------------------------------------------------------------------------

def test_create_lead(api_client):
    data = _create_lead(api_client, email="d.ivanov@example.com", external_conversation_id="conv_widget")

    assert data["id"]
    assert data["name"] == LEAD_NAME
    assert data["phone"] == LEAD_PHONE
    assert data["source"] == "voice_widget"
    assert data["status"] == "NEW"
    assert data["conversation_id"] is None
    assert data["external_conversation_id"] == "conv_widget"


def test_create_lead_requires_name_or_phone(api_client):
    response = api_client.post("/leads", json={"email": "only@example.com"})

    assert response.status_code == 400
    assert response.json()["detail"] == "No valid contact information found"


def test_create_lead_is_rate_limited_per_client(api_client):
    api_client.app.state.lead_rate_limiter = SlidingWindowRateLimiter(2, 60)

    codes = [api_client.post("/leads", json={"name": f"Lead {i}"}).status_code for i in range(3)]
    other = api_client.post("/leads", json={"name": "Other"}, headers={"X-Forwarded-For": "10.0.0.9"})

    assert codes == [201, 201, 429]
    assert other.status_code == 201


def test_list_leads_filters_unlinked(api_client, db):
    linked = _create_lead(api_client, name="Linked")
    _create_lead(api_client, name="Waiting")
    lead = LeadService.get_lead(db, linked["id"])
    LinkService.persist_link(db, lead, "conv_x", method="manual")

    all_leads = api_client.get("/leads").json()
    unlinked = api_client.get("/leads", params={"unlinked": "true"}).json()

    assert len(all_leads) == 2
    assert [lead["name"] for lead in unlinked] == ["Waiting"]


def test_get_lead(api_client):
    created = _create_lead(api_client)

    response = api_client.get(f"/leads/{created['id']}")

    assert response.status_code == 200
    assert response.json()["name"] == LEAD_NAME


def test_get_unknown_lead(api_client):
    assert api_client.get("/leads/does-not-exist").status_code == 404


# ---------------------------------------------------------------------------
# Linking
# ---------------------------------------------------------------------------

def test_link_lead_success(api_client, db, voice_client):
    lead = LeadService.create_lead(db, name=LEAD_NAME, phone=LEAD_PHONE, created_at=T0)
    voice_client.conversations = [perfect_conversation("conv_match")]

    response = api_client.post("/link", json={"lead_id": lead.id})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["linked_conversation"]["conversation_id"] == "conv_match"
    assert data["linked_conversation"]["match_score"] == 100
    assert data["linked_conversation"]["time_diff_minutes"] == 10
    assert api_client.get(f"/leads/{lead.id}").json()["conversation_id"] is not None


def test_link_lead_without_match_is_404(api_client, db, voice_client):
    lead = LeadService.create_lead(db, name=LEAD_NAME, phone=LEAD_PHONE, created_at=T0)
    voice_client.conversations = [
        conversation("conv_partial", T0 + timedelta(minutes=10), [
            lead_tool_message({"FullName": "Дмитрий", "Phone": "+375447654321"}),
        ]),
    ]

    response = api_client.post("/link", json={"lead_id": lead.id})

    assert response.status_code == 404
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "No matching conversations found"
    assert data["search_criteria"]["lead_phone"] == LEAD_PHONE
    assert data["search_criteria"]["time_window_hours"] == 2
    assert data["candidates"][0]["score"] == 30


def test_link_requires_lead_id(api_client):
    response = api_client.post("/link", json={})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "lead_id is required"}


def test_link_unknown_lead(api_client):
    response = api_client.post("/link", json={"lead_id": "missing"})

    assert response.status_code == 404
    assert response.json()["error"] == "Lead not found"
    assert response.json()["lead_id"] == "missing"


def test_link_already_linked_lead_is_conflict(api_client, db, voice_client):
    lead = LeadService.create_lead(db, name=LEAD_NAME, phone=LEAD_PHONE, created_at=T0)
    voice_client.conversations = [perfect_conversation("conv_match")]
    api_client.post("/link", json={"lead_id": lead.id})

    assert api_client.post("/link", json={"lead_id": lead.id}).status_code == 409
    assert api_client.post("/link", json={"lead_id": lead.id, "force": True}).status_code == 200


def test_link_voice_api_failure_is_502(api_client, db, voice_client):
    lead = LeadService.create_lead(db, name=LEAD_NAME, phone=LEAD_PHONE, created_at=T0)
    voice_client.fail_list = True

    response = api_client.post("/link", json={"lead_id": lead.id})

    assert response.status_code == 502
    assert response.json()["success"] is False
    assert "upstream unavailable" in response.json()["error"]


def test_link_endpoints_require_api_key_when_configured(api_client, db, voice_client, monkeypatch):
    monkeypatch.setattr(config, "API_KEY", "s3cret")
    lead = LeadService.create_lead(db, name=LEAD_NAME, phone=LEAD_PHONE, created_at=T0)
    voice_client.conversations = [perfect_conversation()]

    assert api_client.post("/link", json={"lead_id": lead.id}).status_code == 403
    assert api_client.post("/link/batch", headers={"X-API-Key": "wrong"}).status_code == 403

    response = api_client.post("/link", json={"lead_id": lead.id}, headers={"X-API-Key": "s3cret"})
    assert response.status_code == 200


def test_link_batch(api_client, db, voice_client):
    LeadService.create_lead(db, name=LEAD_NAME, phone=LEAD_PHONE, created_at=T0)
    LeadService.create_lead(db, name="Анна", phone="+375447654321", created_at=T0, external_conversation_id="conv_known")
    voice_client.conversations = [perfect_conversation("conv_match"), conversation("conv_known", T0)]

    response = api_client.post("/link/batch")

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 2
    assert data["successful_links"] == 2
    assert data["linking_methods"] == {"score_match": 1, "metadata_match": 1}


def test_link_batch_voice_api_failure(api_client, db, voice_client):
    LeadService.create_lead(db, name=LEAD_NAME, phone=LEAD_PHONE, created_at=T0)
    voice_client.fail_list = True

    response = api_client.post("/link/batch")

    assert response.status_code == 502
    assert response.json()["success"] is False


def test_link_auto_without_recent_leads(api_client, voice_client):
    response = api_client.post("/link/auto")

    assert response.status_code == 200
    assert response.json()["message"] == "No new unlinked leads found"
    assert voice_client.list_calls == []


def test_link_force(api_client, db):
    lead = LeadService.create_lead(db, name=LEAD_NAME, phone=LEAD_PHONE, created_at=T0)

    response = api_client.post("/link/force", json={"lead_id": lead.id, "conversation_id": "conv_manual"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["conversation_id"] == "conv_manual"
    assert api_client.get(f"/leads/{lead.id}").json()["conversation_id"] == data["local_conversation_id"]


def test_link_force_requires_both_ids(api_client):
    response = api_client.post("/link/force", json={"lead_id": "abc"})

    assert response.status_code == 400
    assert response.json()["error"] == "lead_id and conversation_id are required"


def test_link_force_unknown_lead(api_client):
    response = api_client.post("/link/force", json={"lead_id": "missing", "conversation_id": "conv_manual"})

    assert response.status_code == 404
    assert response.json()["error"] == "Lead not found"


def test_link_batch_reports_partial_progress_when_a_transcript_fails(api_client, db, voice_client):
    LeadService.create_lead(db, name="Анна", created_at=T0, external_conversation_id="conv_known")
    LeadService.create_lead(db, name=LEAD_NAME, phone=LEAD_PHONE, created_at=T0)
    voice_client.conversations = [conversation("conv_known", T0), perfect_conversation("conv_bad")]
    voice_client.fail_detail_ids = {"conv_bad"}

    response = api_client.post("/link/batch")

    assert response.status_code == 200
    assert response.json()["successful_links"] == 1
    assert response.json()["failed_links"] == 1
