"""
Service layer for database operations.
Leads, local conversation records, and the lead -> conversation link writer.
"""

from typing import List, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from datetime import datetime
import json

from leadlink.db_models import DBLead, DBConversation, ConversationStatus, LeadStatus, utcnow
from leadlink.errors import InvalidLeadData, LinkPersistenceError
from leadlink.models import LeadContact, LeadResponse, MatchCandidate
from leadlink.logging_config import get_logger

logger = get_logger(__name__)


# Voice API / legacy status strings -> local conversation status
_STATUS_MAP = {
    "done": ConversationStatus.COMPLETED,
    "completed": ConversationStatus.COMPLETED,
    "ended": ConversationStatus.COMPLETED,
    "active": ConversationStatus.ACTIVE,
    "in-progress": ConversationStatus.ACTIVE,
    "initiated": ConversationStatus.ACTIVE,
    "ongoing": ConversationStatus.ACTIVE,
    "processing": ConversationStatus.ACTIVE,
    "failed": ConversationStatus.FAILED,
    "error": ConversationStatus.FAILED,
    "timeout": ConversationStatus.CANCELLED,
    "cancelled": ConversationStatus.CANCELLED,
}


def map_conversation_status(raw: Optional[str]) -> ConversationStatus:
    """Map a voice API status string; unknown or missing means completed."""
    if not raw:
        return ConversationStatus.COMPLETED
    return _STATUS_MAP.get(raw.strip().lower(), ConversationStatus.COMPLETED)


def _load_json_object(raw: Optional[str], field: str, lead_id: str) -> dict:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise InvalidLeadData(f"Invalid lead data format: {field} is not valid JSON", lead_id=lead_id) from e
    if not isinstance(value, dict):
        raise InvalidLeadData(f"Invalid lead data format: {field} is not a JSON object", lead_id=lead_id)
    return value


class LeadService:
    """Service for managing leads."""

    @staticmethod
    def create_lead(
        db: Session,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        notes: Optional[str] = None,
        source: str = "voice_widget",
        agent_id: Optional[str] = None,
        external_conversation_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> DBLead:
        """Create a new lead."""
        metadata = {"captured_at": utcnow().isoformat()}
        if external_conversation_id:
            metadata["external_conversation_id"] = external_conversation_id

        lead = DBLead(
            agent_id=agent_id,
            contact_info=json.dumps({"name": name, "phone": phone, "email": email}, ensure_ascii=False),
            lead_metadata=json.dumps(metadata, ensure_ascii=False),
            source=source,
            status=LeadStatus.NEW,
            notes=notes,
        )
        if created_at is not None:
            lead.created_at = created_at
        db.add(lead)
        db.commit()
        db.refresh(lead)

        logger.info("lead_created", lead_id=lead.id, source=source)
        return lead

    @staticmethod
    def get_lead(db: Session, lead_id: str) -> Optional[DBLead]:
        """Get lead by ID."""
        return db.query(DBLead).filter(DBLead.id == lead_id).first()

    @staticmethod
    def list_leads(db: Session, skip: int = 0, limit: int = 100, unlinked: Optional[bool] = None) -> List[DBLead]:
        """List leads, newest first, optionally only linked or unlinked ones."""
        query = db.query(DBLead)

        if unlinked is True:
            query = query.filter(DBLead.conversation_id.is_(None))
        elif unlinked is False:
            query = query.filter(DBLead.conversation_id.isnot(None))

        return query.order_by(DBLead.created_at.desc()).offset(skip).limit(limit).all()

    @staticmethod
    def list_unlinked(db: Session, limit: int = 50, since: Optional[datetime] = None) -> List[DBLead]:
        """Leads with no conversation link, newest first."""
        query = db.query(DBLead).filter(DBLead.conversation_id.is_(None))
        if since is not None:
            query = query.filter(DBLead.created_at >= since)
        return query.order_by(DBLead.created_at.desc()).limit(limit).all()

    @staticmethod
    def parse_contact(lead: DBLead) -> LeadContact:
        """Decode the stored contact JSON. Raises InvalidLeadData."""
        data = _load_json_object(lead.contact_info, "contact_info", lead.id)
        return LeadContact(
            name=data.get("name") or None,
            phone=data.get("phone") or None,
            email=data.get("email") or None,
        )

    @staticmethod
    def parse_metadata(lead: DBLead) -> dict:
        """Decode the stored metadata JSON. Raises InvalidLeadData."""
        return _load_json_object(lead.lead_metadata, "metadata", lead.id)

    @staticmethod
    def to_response(lead: DBLead) -> LeadResponse:
        """API view of a lead; unreadable JSON columns are shown as empty."""
        try:
            contact = LeadService.parse_contact(lead)
        except InvalidLeadData:
            contact = LeadContact()
        try:
            metadata = LeadService.parse_metadata(lead)
        except InvalidLeadData:
            metadata = {}

        return LeadResponse(
            id=lead.id,
            name=contact.name,
            phone=contact.phone,
            email=contact.email,
            source=lead.source,
            status=lead.status.value if lead.status else None,
            notes=lead.notes,
            conversation_id=lead.conversation_id,
            external_conversation_id=metadata.get("external_conversation_id"),
            created_at=lead.created_at,
        )


class ConversationService:
    """Service for local conversation records."""

    @staticmethod
    def get_by_external_id(db: Session, external_conversation_id: str) -> Optional[DBConversation]:
        return (
            db.query(DBConversation)
            .filter(DBConversation.external_conversation_id == external_conversation_id)
            .first()
        )

    @staticmethod
    def get_or_create(
        db: Session,
        external_conversation_id: str,
        status: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> DBConversation:
        """Look up a conversation row by external id, creating it if absent (not committed)."""
        existing = ConversationService.get_by_external_id(db, external_conversation_id)
        if existing:
            return existing

        conversation = DBConversation(
            external_conversation_id=external_conversation_id,
            agent_id=agent_id,
            status=map_conversation_status(status),
        )
        db.add(conversation)
        try:
            db.flush()
        except IntegrityError:
            # Another writer inserted the same external id first
            db.rollback()
            logger.info("conversation_created_concurrently", external_conversation_id=external_conversation_id)
            return (
                db.query(DBConversation)
                .filter(DBConversation.external_conversation_id == external_conversation_id)
                .one()
            )

        logger.info(
            "conversation_record_created",
            conversation_id=conversation.id,
            external_conversation_id=external_conversation_id,
            status=conversation.status.value,
        )
        return conversation


class LinkService:
    """Writes the lead -> conversation link."""

    @staticmethod
    def persist_link(
        db: Session,
        lead: DBLead,
        external_conversation_id: str,
        *,
        method: str,
        status: Optional[str] = None,
        agent_id: Optional[str] = None,
        candidate: Optional[MatchCandidate] = None,
    ) -> DBConversation:
        """
        Link a lead to the conversation with the given external id.

        Creates the local conversation row when missing, then points the
        lead's foreign keys at it and records how the match was made in the
        lead metadata. Does not check for an existing link.

        Raises:
            InvalidLeadData: stored metadata is not a JSON object
            LinkPersistenceError: the database write failed
        """
        metadata = LeadService.parse_metadata(lead)
        lead_id = lead.id

        try:
            conversation = ConversationService.get_or_create(
                db, external_conversation_id, status=status, agent_id=agent_id
            )

            linking = {"matched_at": utcnow().isoformat(), "method": method}
            if candidate is not None:
                linking["match_score"] = candidate.score
                linking["time_diff_minutes"] = candidate.time_offset_minutes

            metadata["external_conversation_id"] = external_conversation_id
            metadata["linking"] = linking

            lead.conversation_id = conversation.id
            lead.source_conversation_id = conversation.id
            lead.lead_metadata = json.dumps(metadata, ensure_ascii=False)
            lead.updated_at = utcnow()

            db.commit()
            db.refresh(lead)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("link_persist_failed", lead_id=lead_id, external_conversation_id=external_conversation_id, error=str(e))
            raise LinkPersistenceError(f"Failed to link lead to conversation: {e}", lead_id=lead_id) from e

        logger.info(
            "lead_linked",
            lead_id=lead_id,
            conversation_id=conversation.id,
            external_conversation_id=external_conversation_id,
            method=method,
        )
        return conversation
