"""Data models for Lead Linker."""

from datetime import datetime, timezone
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Voice API payloads
# ---------------------------------------------------------------------------

class ToolCall(BaseModel):
    """A tool invocation recorded in a transcript turn.

    Two shapes appear in the wild: the voice API's own
    ``{"tool_name", "params_as_json"}`` and the OpenAI-style
    ``{"function": {"name", "arguments"}}``.
    """
    model_config = ConfigDict(extra="allow")

    tool_name: Optional[str] = None
    params_as_json: Any = None
    function: Any = None

    @property
    def name(self) -> Optional[str]:
        if self.tool_name:
            return self.tool_name
        if isinstance(self.function, dict):
            return self.function.get("name")
        return None

    def matches(self, tool_name: str) -> bool:
        """True when either shape names ``tool_name``."""
        if self.tool_name == tool_name:
            return True
        return isinstance(self.function, dict) and self.function.get("name") == tool_name

    @property
    def raw_arguments(self) -> Any:
        """Native arguments, falling back to the function-style ones when empty."""
        if self.params_as_json:
            return self.params_as_json
        if isinstance(self.function, dict):
            return self.function.get("arguments")
        return self.params_as_json


class TranscriptMessage(BaseModel):
    """One turn of a conversation transcript."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    role: str = "user"
    text: Optional[str] = Field(default=None, validation_alias=AliasChoices("message", "content", "text"))
    time_in_call_secs: Optional[float] = None
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @field_validator("tool_calls", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []


class ConversationSummary(BaseModel):
    """Conversation as returned by the list endpoint."""
    model_config = ConfigDict(extra="allow")

    conversation_id: str
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    start_time_unix_secs: Optional[int] = None
    call_duration_secs: int = 0
    message_count: int = 0
    status: Optional[str] = None
    call_successful: Optional[str] = None

    @property
    def start_time(self) -> Optional[datetime]:
        if self.start_time_unix_secs is None:
            return None
        return datetime.fromtimestamp(self.start_time_unix_secs, tz=timezone.utc)

    @property
    def duration_seconds(self) -> int:
        return self.call_duration_secs


class ConversationDetail(ConversationSummary):
    """Conversation with its transcript."""
    transcript: list[TranscriptMessage] = Field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None
    end_time_unix_secs: Optional[int] = None

    @field_validator("transcript", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []


class ConversationPage(BaseModel):
    """One page of the conversation list."""
    conversations: list[ConversationSummary] = Field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[str] = None


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

NAME_KEYS = ("FullName", "full_name", "fullName", "name", "Name")
PHONE_KEYS = ("Phone", "phone", "phone_number", "phoneNumber", "PhoneNumber", "mobile")


def _first_text(args: dict, keys: tuple) -> Optional[str]:
    for key in keys:
        value = args.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


class LeadContact(BaseModel):
    """Contact data of a stored lead, as the scorer sees it."""
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class LeadPayload(BaseModel):
    """Lead data carried by a lead-submission tool call, one internal shape."""
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_arguments(cls, args: dict) -> "LeadPayload":
        return cls(name=_first_text(args, NAME_KEYS), phone=_first_text(args, PHONE_KEYS))


class ExtractedPayload(BaseModel):
    """A lead-submission tool call found in a transcript."""
    message: TranscriptMessage
    tool_call: ToolCall
    arguments: dict[str, Any]
    payload: LeadPayload


class MatchCandidate(BaseModel):
    """A scored conversation for one lead. Never mutated after creation."""
    model_config = ConfigDict(frozen=True)

    conversation_id: str
    score: int = Field(ge=0, le=100)
    time_offset_minutes: int
    conversation_start: Optional[datetime] = None
    conversation_status: Optional[str] = None
    agent_id: Optional[str] = None
    matched_payload: Optional[LeadPayload] = None


# ---------------------------------------------------------------------------
# API schemas
# ---------------------------------------------------------------------------

class LeadCreateRequest(BaseModel):
    """Request model for POST /leads."""
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    source: str = "voice_widget"
    agent_id: Optional[str] = None
    external_conversation_id: Optional[str] = None


class LeadResponse(BaseModel):
    """A lead as returned by the API."""
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    source: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    conversation_id: Optional[str] = None
    external_conversation_id: Optional[str] = None
    created_at: Optional[datetime] = None


class LinkRequest(BaseModel):
    """Request model for POST /link."""
    lead_id: Optional[str] = None
    force: bool = False


class ForceLinkRequest(BaseModel):
    """Request model for POST /link/force."""
    lead_id: Optional[str] = None
    conversation_id: Optional[str] = None


class ForceLinkResult(BaseModel):
    success: bool = True
    message: str = "Lead successfully linked to conversation"
    lead_id: str
    conversation_id: str
    local_conversation_id: str


class SearchCriteria(BaseModel):
    lead_name: Optional[str] = None
    lead_phone: Optional[str] = None
    lead_created_at: Optional[datetime] = None
    time_window_hours: float = 2


class LinkedConversation(BaseModel):
    conversation_id: str
    local_conversation_id: Optional[str] = None
    match_score: int
    time_diff_minutes: int


class LinkOutcome(BaseModel):
    """Result of linking a single lead."""
    success: bool
    lead_id: str
    message: Optional[str] = None
    error: Optional[str] = None
    linked_conversation: Optional[LinkedConversation] = None
    candidates: list[MatchCandidate] = Field(default_factory=list)
    search_criteria: Optional[SearchCriteria] = None
    total_conversations_checked: int = 0


class BatchLinkResult(BaseModel):
    lead_id: str
    success: bool
    lead_name: Optional[str] = None
    conversation_id: Optional[str] = None
    method: Optional[str] = None
    score: Optional[int] = None
    error: Optional[str] = None


class BatchLinkReport(BaseModel):
    """Result of linking a batch of unlinked leads."""
    success: bool = True
    message: Optional[str] = None
    processed: int = 0
    successful_links: int = 0
    failed_links: int = 0
    total_conversations: int = 0
    linking_methods: dict[str, int] = Field(default_factory=dict)
    results: list[BatchLinkResult] = Field(default_factory=list)
