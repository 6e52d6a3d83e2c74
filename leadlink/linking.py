"""
Lead <-> conversation linking runs.

Each run is synchronous and request-scoped: fetch a bounded window of recent
conversations, drop the ones outside the time window, pull transcripts one
at a time, score, rank, and write the winning link.
"""

import time
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session

from leadlink.config import MatchSettings
from leadlink.db_models import DBLead, utcnow
from leadlink.errors import InvalidLeadData, LeadAlreadyLinked, LeadNotFound, LinkPersistenceError, VoiceAPIUnavailable
from leadlink.logging_config import get_logger
from leadlink.matching import (
    closest_in_time,
    normalize_name,
    normalize_phone,
    rank_candidates,
    score_conversation,
    select_best,
    within_time_window,
)
from leadlink.models import (
    BatchLinkReport,
    BatchLinkResult,
    ConversationDetail,
    ConversationSummary,
    ForceLinkResult,
    LeadContact,
    LinkedConversation,
    LinkOutcome,
    MatchCandidate,
    SearchCriteria,
)
from leadlink.services import LeadService, LinkService
from leadlink.voice_client import VoiceClient

logger = get_logger(__name__)

SMART_LINK_METHOD = "smart_time_and_data_matching"
METADATA_MATCH = "metadata_match"
SCORE_MATCH = "score_match"
TIME_MATCH = "time_match"
MANUAL_LINK = "manual"

# Detail bodies that arrived but could not be read; the conversation is skipped
MALFORMED_BODY_CODES = frozenset({"invalid_response", "invalid_json"})


def fetch_candidate_window(
    client: VoiceClient,
    lead_created_at: datetime,
    page_size: int = 100,
    agent_id: Optional[str] = None,
) -> list[ConversationSummary]:
    """The most recent conversations, unfiltered by time.

    Raises VoiceAPIUnavailable when the list call fails.
    """
    result = client.list_conversations(page_size=page_size, agent_id=agent_id)
    if not result.success:
        message = result.error.message if result.error else "unknown error"
        logger.error("candidate_fetch_failed", error=message)
        raise VoiceAPIUnavailable(f"Failed to fetch conversations: {message}")

    conversations = result.data.conversations
    logger.info(
        "candidate_window_fetched",
        count=len(conversations),
        lead_created_at=lead_created_at.isoformat(),
    )
    return conversations


class CandidateWindow:
    """Fetched conversation list plus transcripts, fetched lazily and sequentially."""

    def __init__(
        self,
        client: VoiceClient,
        conversations: list[ConversationSummary],
        delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.conversations = conversations
        self._delay = delay
        self._sleep = sleep
        self._details: dict[str, Optional[ConversationDetail]] = {}

    def detail(self, summary: ConversationSummary) -> Optional[ConversationDetail]:
        """Transcript for a conversation, or None if the body is unusable.

        Raises VoiceAPIUnavailable when the detail call itself fails.
        """
        conversation_id = summary.conversation_id
        if conversation_id in self._details:
            return self._details[conversation_id]

        if self._details and self._delay > 0:
            self._sleep(self._delay)

        result = self.client.get_conversation(conversation_id)
        if not result.success:
            if result.error and result.error.code in MALFORMED_BODY_CODES:
                logger.warning("conversation_skipped", conversation_id=conversation_id, reason=result.error.code)
                self._details[conversation_id] = None
                return None
            message = result.error.message if result.error else "unknown error"
            logger.error("conversation_fetch_failed", conversation_id=conversation_id, error=message)
            raise VoiceAPIUnavailable(f"Failed to fetch conversation {conversation_id}: {message}")

        self._details[conversation_id] = result.data
        return result.data


def collect_candidates(
    window: CandidateWindow,
    lead: LeadContact,
    lead_created_at: datetime,
    settings: MatchSettings,
) -> list[MatchCandidate]:
    """Score every in-window conversation that carries a lead-submission tool call."""
    candidates = []
    for summary in window.conversations:
        if not within_time_window(lead_created_at, summary.start_time, settings.time_window):
            continue

        detail = window.detail(summary)
        if detail is None or not detail.transcript:
            continue

        try:
            candidate = score_conversation(lead, lead_created_at, summary, detail, settings.tool_name)
        except (ValueError, TypeError) as e:
            logger.warning("conversation_processing_failed", conversation_id=summary.conversation_id, error=str(e))
            continue

        if candidate is not None:
            logger.debug(
                "candidate_scored",
                conversation_id=candidate.conversation_id,
                score=candidate.score,
                time_offset_minutes=candidate.time_offset_minutes,
            )
            candidates.append(candidate)
    return candidates


def _search_criteria(contact: LeadContact, lead: DBLead, settings: MatchSettings) -> SearchCriteria:
    return SearchCriteria(
        lead_name=normalize_name(contact.name) or None,
        lead_phone=normalize_phone(contact.phone) or None,
        lead_created_at=lead.created_at,
        time_window_hours=settings.time_window.total_seconds() / 3600,
    )


def smart_link_lead(
    db: Session,
    client: VoiceClient,
    lead_id: str,
    settings: MatchSettings,
    *,
    force: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> LinkOutcome:
    """
    Find the conversation a lead came from and link it.

    A run that finds nothing above the threshold returns
    ``LinkOutcome(success=False)``; that is a normal outcome, not an error.

    Raises:
        LeadNotFound, LeadAlreadyLinked, InvalidLeadData,
        VoiceAPIUnavailable, LinkPersistenceError
    """
    lead = LeadService.get_lead(db, lead_id)
    if not lead:
        raise LeadNotFound("Lead not found", lead_id=lead_id)
    if lead.conversation_id and not force:
        raise LeadAlreadyLinked("Lead is already linked to a conversation", lead_id=lead_id)

    contact = LeadService.parse_contact(lead)
    LeadService.parse_metadata(lead)
    criteria = _search_criteria(contact, lead, settings)
    logger.info("smart_link_started", lead_id=lead_id, has_name=bool(contact.name), lead_phone=criteria.lead_phone)

    conversations = fetch_candidate_window(client, lead.created_at, settings.candidate_page_size, settings.agent_id)
    window = CandidateWindow(client, conversations, settings.detail_fetch_delay, sleep)
    candidates = rank_candidates(collect_candidates(window, contact, lead.created_at, settings))
    best = select_best(candidates, settings.score_threshold)

    if best is None:
        logger.info("no_match_found", lead_id=lead_id, checked=len(conversations), candidates=len(candidates))
        return LinkOutcome(
            success=False,
            lead_id=lead_id,
            error="No matching conversations found",
            candidates=candidates,
            search_criteria=criteria,
            total_conversations_checked=len(conversations),
        )

    conversation = LinkService.persist_link(
        db,
        lead,
        best.conversation_id,
        method=SMART_LINK_METHOD,
        status=best.conversation_status,
        agent_id=best.agent_id,
        candidate=best,
    )

    return LinkOutcome(
        success=True,
        lead_id=lead_id,
        message="Conversation linked successfully",
        linked_conversation=LinkedConversation(
            conversation_id=best.conversation_id,
            local_conversation_id=conversation.id,
            match_score=best.score,
            time_diff_minutes=best.time_offset_minutes,
        ),
        candidates=candidates,
        search_criteria=criteria,
        total_conversations_checked=len(conversations),
    )


def _report(results: Iterable[BatchLinkResult], total_conversations: int, message: str) -> BatchLinkReport:
    results = list(results)
    successful = [r for r in results if r.success]
    methods: dict[str, int] = {}
    for r in successful:
        methods[r.method] = methods.get(r.method, 0) + 1

    return BatchLinkReport(
        message=message,
        processed=len(results),
        successful_links=len(successful),
        failed_links=len(results) - len(successful),
        total_conversations=total_conversations,
        linking_methods=methods,
        results=results,
    )


def link_unlinked_leads(
    db: Session,
    client: VoiceClient,
    settings: MatchSettings,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchLinkReport:
    """
    Try to link every lead that has no conversation yet.

    A conversation id already recorded in the lead's metadata wins when it is
    in the fetched page; otherwise the scorer picks from the shared window.
    Per-lead failures, including a transcript that cannot be fetched, are
    reported in the results, not raised. Only a failed list call aborts.
    """
    leads = LeadService.list_unlinked(db, limit=settings.batch_link_limit)
    if not leads:
        return BatchLinkReport(message="No unlinked leads found")

    conversations = fetch_candidate_window(client, utcnow(), settings.candidate_page_size, settings.agent_id)
    by_id = {c.conversation_id: c for c in conversations}
    window = CandidateWindow(client, conversations, settings.detail_fetch_delay, sleep)

    results = []
    for lead in leads:
        lead_id = lead.id
        try:
            contact = LeadService.parse_contact(lead)
            metadata = LeadService.parse_metadata(lead)

            known_id = metadata.get("external_conversation_id")
            if known_id and known_id in by_id:
                known = by_id[known_id]
                LinkService.persist_link(
                    db, lead, known_id, method=METADATA_MATCH, status=known.status, agent_id=known.agent_id
                )
                results.append(BatchLinkResult(
                    lead_id=lead_id, success=True, lead_name=contact.name,
                    conversation_id=known_id, method=METADATA_MATCH,
                ))
                continue

            best = select_best(
                collect_candidates(window, contact, lead.created_at, settings),
                settings.score_threshold,
            )
            if best is None:
                results.append(BatchLinkResult(
                    lead_id=lead_id, success=False, lead_name=contact.name,
                    error="No matching conversation found",
                ))
                continue

            LinkService.persist_link(
                db, lead, best.conversation_id, method=SCORE_MATCH,
                status=best.conversation_status, agent_id=best.agent_id, candidate=best,
            )
            results.append(BatchLinkResult(
                lead_id=lead_id, success=True, lead_name=contact.name,
                conversation_id=best.conversation_id, method=SCORE_MATCH, score=best.score,
            ))
        except (InvalidLeadData, LinkPersistenceError, VoiceAPIUnavailable) as e:
            logger.warning("batch_link_lead_failed", lead_id=lead_id, error=e.message)
            results.append(BatchLinkResult(lead_id=lead_id, success=False, error=e.message))

    report = _report(results, len(conversations), "Lead-conversation linking completed")
    logger.info("batch_link_completed", processed=report.processed, linked=report.successful_links)
    return report


def auto_link_recent_leads(
    db: Session,
    client: VoiceClient,
    settings: MatchSettings,
    *,
    now: Optional[datetime] = None,
) -> BatchLinkReport:
    """
    Link freshly created leads by time alone.

    Each unlinked lead from the lookback period gets the conversation that
    started closest to its creation, if one started within the window.
    """
    now = now or utcnow()
    leads = LeadService.list_unlinked(db, limit=settings.batch_link_limit, since=now - settings.auto_link_lookback)
    if not leads:
        return BatchLinkReport(message="No new unlinked leads found")

    conversations = fetch_candidate_window(client, now, settings.auto_link_page_size, settings.agent_id)

    results = []
    for lead in leads:
        lead_id = lead.id
        try:
            contact = LeadService.parse_contact(lead)
            match = closest_in_time(lead.created_at, conversations, settings.auto_link_window)
            if match is None:
                results.append(BatchLinkResult(
                    lead_id=lead_id, success=False, lead_name=contact.name,
                    error="No matching conversation found in time window",
                ))
                continue

            LinkService.persist_link(
                db, lead, match.conversation_id, method=TIME_MATCH, status=match.status, agent_id=match.agent_id
            )
            results.append(BatchLinkResult(
                lead_id=lead_id, success=True, lead_name=contact.name,
                conversation_id=match.conversation_id, method=TIME_MATCH,
            ))
        except (InvalidLeadData, LinkPersistenceError) as e:
            logger.warning("auto_link_lead_failed", lead_id=lead_id, error=e.message)
            results.append(BatchLinkResult(lead_id=lead_id, success=False, error=e.message))

    report = _report(results, len(conversations), "Auto-linking completed")
    logger.info("auto_link_completed", processed=report.processed, linked=report.successful_links)
    return report


def force_link_lead(db: Session, lead_id: str, external_conversation_id: str) -> ForceLinkResult:
    """Link a lead to a conversation chosen by an operator, skipping matching.

    Overwrites any existing link. Raises LeadNotFound, InvalidLeadData,
    LinkPersistenceError.
    """
    lead = LeadService.get_lead(db, lead_id)
    if not lead:
        raise LeadNotFound("Lead not found", lead_id=lead_id)

    logger.info("force_link_requested", lead_id=lead_id, external_conversation_id=external_conversation_id)
    conversation = LinkService.persist_link(db, lead, external_conversation_id, method=MANUAL_LINK)
    return ForceLinkResult(
        lead_id=lead_id,
        conversation_id=external_conversation_id,
        local_conversation_id=conversation.id,
    )
