from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from leadlink.voice_client import RateLimitInfo


def test_health_check(api_client):
    resp = api_client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["service"] == "leadlink"


def test_health_ready(api_client):
    resp = api_client.get("/health/ready")
    assert resp.status_code == 200
    data = resp.json()

    assert data["database"] is True
    assert data["ready"] is True
    assert data["voice_api"] == "configured"


def test_health_ready_database_down(api_client):
    broken = MagicMock()
    broken.return_value.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
    api_client.app.state.session_factory = broken

    resp = api_client.get("/health/ready")

    assert resp.status_code == 503
    assert resp.json()["ready"] is False
    broken.return_value.close.assert_called_once()


def test_health_info(api_client):
    resp = api_client.get("/health/info")
    assert resp.status_code == 200
    data = resp.json()
    assert data["service"] == "leadlink"
    assert data["configuration"]["voice_api_configured"] is True
    assert data["matching"]["tool_name"] == "SendToCRMLead"
    assert data["matching"]["time_window_minutes"] == 120
    assert data["matching"]["score_threshold"] == 50
    assert data["voice_api_rate_limit"] is None


def test_health_info_reports_voice_api_rate_limit(api_client, voice_client):
    voice_client.rate_limit_info = RateLimitInfo(limit=100, remaining=7, reset=1740830460)

    data = api_client.get("/health/info").json()

    assert data["voice_api_rate_limit"] == {"limit": 100, "remaining": 7, "reset": 1740830460}


def test_metrics_endpoint(api_client):
    api_client.post("/leads", json={"name": "Metric Lead"})

    resp = api_client.get("/metrics")

    assert resp.status_code == 200
    assert "leads_created_total" in resp.text
