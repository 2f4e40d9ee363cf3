"""Database models for profiles, conversations, messages and risk assessments."""

from collections.abc import Mapping
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Date, Text, ForeignKey, Enum, JSON, Integer, Float
from sqlalchemy.orm import relationship
import enum
import uuid

from kardia_engine.db.database import Base


def generate_uuid():
    """Generate a UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores datetimes without zone)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MessageRole(str, enum.Enum):
    """Message role types, matching the remote model's turn roles."""
    USER = "user"
    MODEL = "model"


class UserProfile(Base):
    """
    Profile fields used to personalize replies.

    One profile per user. ``language`` is the reply language preference
    (free text such as "English" or "Indonesian").
    """
    __tablename__ = "user_profiles"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    first_name = Column(String(100), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    sex = Column(String(20), nullable=True)
    language = Column(String(50), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<UserProfile(user_id={self.user_id}, name={self.first_name})>"


class Conversation(Base):
    """
    A conversation (thread) owned by exactly one user.

    Title and ``updated_at`` change on new activity; messages are append-only.
    """
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    messages = relationship(
        "ChatMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ChatMessage.id",
    )

    def __repr__(self):
        return f"<Conversation(id={self.id}, user={self.user_id}, title={self.title})>"


class ChatMessage(Base):
    """
    One turn of a conversation.

    User turns hold plain text; model turns hold a serialized CanonicalReply.
    The integer primary key records persistence order.
    """
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(Enum(MessageRole), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")

    def __repr__(self):
        return f"<ChatMessage(id={self.id}, conversation={self.conversation_id}, role={self.role})>"


class RiskAssessment(Base):
    """
    A cardiovascular risk assessment result.

    ``result_details`` holds the personalized report once attached; the risk
    category title lives at ``result_details.riskSummary.riskCategory.title``.
    """
    __tablename__ = "risk_assessments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    model_used = Column(String(100), nullable=True)
    final_risk_percentage = Column(Float, nullable=False)
    inputs = Column(JSON, nullable=True)
    generated_values = Column(JSON, nullable=True)
    result_details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def risk_category(self, key: str = "title") -> str:
        """Category field from the attached report; "N/A" when absent or malformed."""
        value = self.result_details
        for step in ("riskSummary", "riskCategory", key):
            if not isinstance(value, Mapping):
                return "N/A"
            value = value.get(step)
        return value if isinstance(value, str) and value else "N/A"

    def __repr__(self):
        return f"<RiskAssessment(id={self.id}, user={self.user_id}, risk={self.final_risk_percentage})>"
