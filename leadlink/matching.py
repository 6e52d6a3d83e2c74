"""Lead-to-conversation matching heuristic.

Pure functions, no I/O. A lead is matched against the lead-submission tool
calls recorded in each candidate conversation's transcript:

- name: exact (case-insensitive) +50, substring either way +30
- phone: exact after normalization +50, shared last 7 digits +30
- conversations outside the time window are dropped before scoring
- the best candidate wins only if it reaches the score threshold
"""

import json
import re
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from leadlink.logging_config import get_logger
from leadlink.models import (
    ConversationDetail,
    ConversationSummary,
    ExtractedPayload,
    LeadContact,
    LeadPayload,
    MatchCandidate,
)

logger = get_logger(__name__)

DEFAULT_LEAD_TOOL_NAME = "SendToCRMLead"
DEFAULT_TIME_WINDOW = timedelta(hours=2)
DEFAULT_SCORE_THRESHOLD = 50

NAME_EXACT_SCORE = 50
NAME_PARTIAL_SCORE = 30
PHONE_EXACT_SCORE = 50
PHONE_PARTIAL_SCORE = 30
PHONE_SUFFIX_DIGITS = 7

# Belarus: default country for local numbers
COUNTRY_CODE = "375"
NATIONAL_TRUNK_PREFIX = "80"
SUBSCRIBER_NUMBER_LENGTH = 9

_NON_PHONE_CHARS = re.compile(r"[^0-9+]")
_DIGIT = re.compile(r"[0-9]")


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize_phone(raw: Optional[str]) -> str:
    """Best-effort canonical form of a human-entered phone number.

    Returns "" when the input carries no digits at all.
    """
    if not raw:
        return ""

    cleaned = _NON_PHONE_CHARS.sub("", str(raw))
    if not _DIGIT.search(cleaned):
        return ""

    if cleaned.startswith(COUNTRY_CODE):
        return "+" + cleaned
    if cleaned.startswith("+" + COUNTRY_CODE):
        return cleaned
    if cleaned.startswith(NATIONAL_TRUNK_PREFIX) and len(cleaned) >= 11:
        return "+" + COUNTRY_CODE + cleaned[len(NATIONAL_TRUNK_PREFIX):]
    if len(cleaned) == SUBSCRIBER_NUMBER_LENGTH:
        return "+" + COUNTRY_CODE + cleaned

    return cleaned if cleaned.startswith("+") else "+" + cleaned


def normalize_name(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return " ".join(str(raw).split()).lower()


# ---------------------------------------------------------------------------
# Transcript extraction
# ---------------------------------------------------------------------------

def parse_tool_arguments(raw: Any) -> Optional[dict]:
    """Decode tool-call arguments that arrive either as a JSON string or an object."""
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError:
            return None
        return decoded if isinstance(decoded, dict) else None
    if isinstance(raw, Mapping):
        return dict(raw)
    return None


def extract_lead_payloads(
    conversation: ConversationDetail,
    tool_name: str = DEFAULT_LEAD_TOOL_NAME,
) -> list[ExtractedPayload]:
    """Collect every lead-submission tool call in the transcript, in turn order.

    Tool calls whose arguments cannot be parsed are skipped.
    """
    extracted = []
    for message in conversation.transcript or []:
        for tool_call in message.tool_calls:
            if not tool_call.matches(tool_name):
                continue

            arguments = parse_tool_arguments(tool_call.raw_arguments)
            if arguments is None:
                logger.debug(
                    "tool_call_arguments_unparseable",
                    conversation_id=conversation.conversation_id,
                    tool_name=tool_name,
                )
                continue

            extracted.append(ExtractedPayload(
                message=message,
                tool_call=tool_call,
                arguments=arguments,
                payload=LeadPayload.from_arguments(arguments),
            ))
    return extracted


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def name_score(lead_name: Optional[str], payload_name: Optional[str]) -> int:
    a = normalize_name(lead_name)
    b = normalize_name(payload_name)
    if not a or not b:
        return 0
    if a == b:
        return NAME_EXACT_SCORE
    if a in b or b in a:
        return NAME_PARTIAL_SCORE
    return 0


def phone_score(lead_phone: Optional[str], payload_phone: Optional[str]) -> int:
    a = normalize_phone(lead_phone)
    b = normalize_phone(payload_phone)
    if not a or not b:
        return 0
    if a == b:
        return PHONE_EXACT_SCORE

    # Partial match needs a full suffix on both sides
    if len(_DIGIT.findall(a)) < PHONE_SUFFIX_DIGITS or len(_DIGIT.findall(b)) < PHONE_SUFFIX_DIGITS:
        return 0
    if b[-PHONE_SUFFIX_DIGITS:] in a or a[-PHONE_SUFFIX_DIGITS:] in b:
        return PHONE_PARTIAL_SCORE
    return 0


def score_payload(lead: LeadContact, payload: LeadPayload) -> int:
    """Confidence (0-100) that a tool-call payload describes this lead."""
    return name_score(lead.name, payload.name) + phone_score(lead.phone, payload.phone)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def time_offset(lead_created_at: datetime, conversation_start: datetime) -> timedelta:
    return abs(_as_utc(lead_created_at) - _as_utc(conversation_start))


def time_offset_minutes(lead_created_at: datetime, conversation_start: datetime) -> int:
    seconds = time_offset(lead_created_at, conversation_start).total_seconds()
    return int(seconds / 60 + 0.5)


def within_time_window(
    lead_created_at: datetime,
    conversation_start: Optional[datetime],
    window: timedelta = DEFAULT_TIME_WINDOW,
) -> bool:
    if conversation_start is None:
        return False
    return time_offset(lead_created_at, conversation_start) <= window


def score_conversation(
    lead: LeadContact,
    lead_created_at: datetime,
    summary: ConversationSummary,
    detail: ConversationDetail,
    tool_name: str = DEFAULT_LEAD_TOOL_NAME,
) -> Optional[MatchCandidate]:
    """Score a conversation by its best-matching payload.

    Returns None when the transcript holds no lead-submission tool call.
    """
    payloads = extract_lead_payloads(detail, tool_name)
    if not payloads:
        return None

    best_score = -1
    best_payload = None
    for item in payloads:
        score = score_payload(lead, item.payload)
        if score > best_score:
            best_score = score
            best_payload = item.payload

    start = summary.start_time or detail.start_time
    return MatchCandidate(
        conversation_id=summary.conversation_id,
        score=best_score,
        time_offset_minutes=time_offset_minutes(lead_created_at, start) if start else 0,
        conversation_start=start,
        conversation_status=summary.status,
        agent_id=summary.agent_id,
        matched_payload=best_payload,
    )


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

def rank_candidates(candidates: Iterable[MatchCandidate]) -> list[MatchCandidate]:
    """Highest score first; ties go to the conversation closest in time."""
    return sorted(candidates, key=lambda c: (-c.score, c.time_offset_minutes))


def select_best(
    candidates: Iterable[MatchCandidate],
    threshold: int = DEFAULT_SCORE_THRESHOLD,
) -> Optional[MatchCandidate]:
    ranked = rank_candidates(candidates)
    if not ranked or ranked[0].score < threshold:
        return None
    return ranked[0]


def closest_in_time(
    lead_created_at: datetime,
    conversations: Iterable[ConversationSummary],
    window: timedelta,
) -> Optional[ConversationSummary]:
    """Conversation starting nearest to the lead's creation, within the window."""
    in_window = [
        c for c in conversations
        if within_time_window(lead_created_at, c.start_time, window)
    ]
    if not in_window:
        return None
    return min(in_window, key=lambda c: time_offset(lead_created_at, c.start_time))
