"""Domain errors raised by the linking core and translated to HTTP by the routers."""

from typing import Optional


class LinkingError(Exception):
    """Base class for linking failures."""

    status_code: int = 500

    def __init__(self, message: str, *, lead_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.lead_id = lead_id


class LeadNotFound(LinkingError):
    status_code = 404


class InvalidLeadData(LinkingError):
    """Stored contact/metadata JSON could not be parsed."""
    status_code = 422


class LeadAlreadyLinked(LinkingError):
    status_code = 409


class VoiceAPIUnavailable(LinkingError):
    """A voice API call failed; the matching run cannot proceed."""
    status_code = 502


class LinkPersistenceError(LinkingError):
    status_code = 500
