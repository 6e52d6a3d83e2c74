"""
SQLAlchemy database models.
Leads captured from the voice widget and the conversation records they link to.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
import uuid

from leadlink.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


class LeadStatus(str, enum.Enum):
    """Lead status enum."""
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    CONVERTED = "CONVERTED"
    LOST = "LOST"


class ConversationStatus(str, enum.Enum):
    """Conversation status enum."""
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class DBConversation(Base):
    """
    Local record of a voice conversation held by the voice API.
    Created on demand when a lead is linked to it.
    """
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=_new_id)
    client_id = Column(String(100), default="default-client")
    agent_id = Column(String(100), nullable=True)
    # Voice API conversation id; unique so concurrent link writers cannot duplicate it
    external_conversation_id = Column(String(100), unique=True, nullable=False, index=True)
    status = Column(SQLEnum(ConversationStatus), default=ConversationStatus.COMPLETED)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    leads = relationship("DBLead", back_populates="conversation", foreign_keys="DBLead.conversation_id")


class DBLead(Base):
    """Lead database model."""
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_new_id)
    client_id = Column(String(100), default="default-client")
    agent_id = Column(String(100), nullable=True)

    # JSON-encoded {"name", "phone", "email"} as submitted by the widget
    contact_info = Column(Text)
    # JSON-encoded free-form metadata; "metadata" is reserved on declarative classes
    lead_metadata = Column("metadata", Text)

    source = Column(String(100), default="voice_widget")
    status = Column(SQLEnum(LeadStatus), default=LeadStatus.NEW)
    notes = Column(Text)

    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=True, index=True)
    source_conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    conversation = relationship("DBConversation", back_populates="leads", foreign_keys=[conversation_id])
