"""Main FastAPI application."""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leadlink.config import config
from leadlink.database import build_session_factory, create_db_engine, init_db
from leadlink.health import router as health_router
from leadlink.logging_config import logger
from leadlink.rate_limit import SlidingWindowRateLimiter
from leadlink.routers.core import router as core_router
from leadlink.routers.leads import router as leads_router
from leadlink.routers.linking import router as linking_router
from leadlink.voice_client import VoiceClient


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - build clients on startup, release them on shutdown."""
    logger.info("application_starting", version="1.0.0")

    engine = create_db_engine(config.DATABASE_URL, echo=config.DEBUG)
    init_db(engine)
    app.state.session_factory = build_session_factory(engine)
    logger.info("database_initialized", backend="sqlite" if config.is_sqlite() else "postgresql")

    app.state.voice_client = VoiceClient(
        api_key=config.VOICE_API_KEY,
        base_url=config.VOICE_API_BASE_URL,
        timeout=config.VOICE_API_TIMEOUT_SECONDS,
        max_retries=config.VOICE_API_MAX_RETRIES,
    )
    logger.info("voice_api_configured", configured=config.has_voice_api_key())

    app.state.match_settings = config.match_settings()
    app.state.lead_rate_limiter = SlidingWindowRateLimiter(
        config.LEAD_RATE_LIMIT_MAX, config.LEAD_RATE_LIMIT_WINDOW_SECONDS
    )

    yield

    logger.info("application_shutting_down")
    app.state.voice_client.close()
    engine.dispose()


app = FastAPI(
    title="Lead Linker API",
    description="Links voice widget leads to the conversations they came from",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(core_router)
app.include_router(health_router)
app.include_router(leads_router)
app.include_router(linking_router)
