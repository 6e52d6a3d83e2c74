"""
Security utilities.
- API key authentication for the admin linking endpoints
"""

import secrets

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader
from leadlink.config import config
from leadlink.logging_config import get_logger

logger = get_logger(__name__)

# Sent by the admin dashboard on every /link* call
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(request: Request, api_key: str = Security(api_key_header)) -> str:
    """
    Guard for the linking endpoints.

    With no API_KEY configured every caller is let through as "development".
    Keys are compared in constant time.
    """
    if not config.API_KEY:
        return "development"

    if not api_key or not secrets.compare_digest(api_key.encode(), config.API_KEY.encode()):
        logger.warning(
            "api_key_rejected",
            path=request.url.path,
            key_present=bool(api_key),
        )
        raise HTTPException(status_code=403, detail="Invalid or missing API key")

    return api_key
