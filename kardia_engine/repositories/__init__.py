"""Repository layer for database operations."""

from .profile_repository import ProfileRepository
from .conversation_repository import ConversationRepository
from .message_repository import MessageRepository
from .risk_assessment_repository import RiskAssessmentRepository
from .context_store import SqlContextStore

__all__ = [
    "ProfileRepository",
    "ConversationRepository",
    "MessageRepository",
    "RiskAssessmentRepository",
    "SqlContextStore",
]
