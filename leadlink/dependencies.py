"""FastAPI dependency providers for the clients built at startup."""

from fastapi import Request

from leadlink.config import MatchSettings
from leadlink.rate_limit import SlidingWindowRateLimiter
from leadlink.voice_client import VoiceClient


def get_voice_client(request: Request) -> VoiceClient:
    return request.app.state.voice_client


def get_match_settings(request: Request) -> MatchSettings:
    return request.app.state.match_settings


def get_lead_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.lead_rate_limiter


def client_ip(request: Request) -> str:
    """Client address, preferring the first hop of X-Forwarded-For."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
