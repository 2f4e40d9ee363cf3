"""SQL-backed Context Store and Persistence adapters."""

from typing import List, Optional

from sqlalchemy.orm import Session

from kardia_engine.cache.store import CacheStore
from kardia_engine.config.models import CacheConfig
from kardia_engine.models.conversation import ChatMessage, MessageRole
from kardia_engine.repositories.message_repository import MessageRepository
from kardia_engine.repositories.profile_repository import ProfileRepository
from kardia_engine.repositories.risk_assessment_repository import RiskAssessmentRepository
from kardia_engine.services.context_assembly import AssessmentSummary, ProfileSnapshot, StoredMessage


def to_stored_message(message: ChatMessage) -> StoredMessage:
    return StoredMessage(
        id=message.id,
        role=message.role.value,
        content=message.content,
        created_at=message.created_at,
    )


class SqlContextStore:
    """
    Plain-data reads for context assembly plus the message append the
    reply pipeline needs. Callers never see ORM objects.
    """

    def __init__(
        self,
        profiles: ProfileRepository,
        messages: MessageRepository,
        assessments: RiskAssessmentRepository,
    ):
        self.profiles = profiles
        self.messages = messages
        self.assessments = assessments

    @classmethod
    def from_session(
        cls,
        db: Session,
        cache: CacheStore,
        config: Optional[CacheConfig] = None,
        digest_size: int = 3,
    ) -> "SqlContextStore":
        config = config or CacheConfig()
        return cls(
            profiles=ProfileRepository(db, cache, ttl_seconds=config.profile_ttl_seconds),
            messages=MessageRepository(db, cache),
            assessments=RiskAssessmentRepository(
                db,
                cache,
                digest_size=digest_size,
                digest_ttl_seconds=config.recent_assessments_ttl_seconds,
                dashboard_ttl_seconds=config.dashboard_ttl_seconds,
            ),
        )

    # Context Store

    def load_profile_snapshot(self, user_id: str) -> Optional[ProfileSnapshot]:
        return self.profiles.get_snapshot(user_id)

    def load_recent_messages(self, conversation_id: str, limit: int) -> List[StoredMessage]:
        return [to_stored_message(m) for m in self.messages.list_recent(conversation_id, limit)]

    def load_recent_assessments(self, user_id: str, limit: int) -> List[AssessmentSummary]:
        return self.assessments.list_recent_summaries(user_id, limit)

    # Persistence

    def append_message(self, conversation_id: str, role: str, content: str) -> StoredMessage:
        return to_stored_message(self.messages.append(conversation_id, MessageRole(role), content))
