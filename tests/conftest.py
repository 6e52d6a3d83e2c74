import pytest
from fastapi.testclient import TestClient

from leadlink.config import MatchSettings
from leadlink.database import build_session_factory, create_db_engine, init_db
from leadlink.rate_limit import SlidingWindowRateLimiter


@pytest.fixture(autouse=True)
def _safe_test_config(monkeypatch):
    """Force deterministic, offline-safe config for tests.

    The repo loads .env on import; these overrides keep the admin endpoints
    open and the detail-fetch delay at zero unless a test opts in.
    """
    from leadlink.config import config, Config

    overrides = {
        "API_KEY": "",
        "VOICE_API_KEY": "test",
        "DEBUG": False,
        "DETAIL_FETCH_DELAY_SECONDS": 0.0,
    }
    for name, value in overrides.items():
        monkeypatch.setattr(Config, name, value, raising=False)
        # Keep the instance in sync for any code that reads instance attributes directly.
        monkeypatch.setattr(config, name, value, raising=False)

    return config


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database per test."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def match_settings():
    return MatchSettings(detail_fetch_delay=0.0)


@pytest.fixture
def voice_client():
    from voice_fakes import FakeVoiceClient

    return FakeVoiceClient()


@pytest.fixture
def api_client(session_factory, voice_client, match_settings):
    """TestClient wired to the test database and the fake voice API."""
    from leadlink.main import app

    app.state.session_factory = session_factory
    app.state.voice_client = voice_client
    app.state.match_settings = match_settings
    app.state.lead_rate_limiter = SlidingWindowRateLimiter(10, 60)
    return TestClient(app)
