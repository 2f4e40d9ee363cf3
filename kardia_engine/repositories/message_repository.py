"""Repository for message operations."""

import logging
from typing import List

from sqlalchemy.orm import Session

from kardia_engine.cache import keys
from kardia_engine.cache.store import CacheStore
from kardia_engine.cache.views import ViewCache
from kardia_engine.db.database import commit_or_fail
from kardia_engine.llm.base import PersistenceFailure
from kardia_engine.models.conversation import ChatMessage, Conversation, MessageRole, utcnow

logger = logging.getLogger(__name__)


class MessageRepository:
    """
    Handle database operations for messages.

    Messages are append-only: there is no update or single-message delete.
    """

    def __init__(self, db: Session, cache: CacheStore):
        self.db = db
        self.views = ViewCache(cache)

    def append(self, conversation_id: str, role: MessageRole, content: str) -> ChatMessage:
        """
        Append a message and mark the conversation active.

        Args:
            conversation_id: Parent conversation
            role: user or model
            content: Plain text (user) or serialized CanonicalReply (model)

        Returns:
            Created message

        Raises:
            PersistenceFailure: Conversation missing or commit failed
        """
        conversation = self.db.query(Conversation).filter(Conversation.id == conversation_id).first()
        if conversation is None:
            raise PersistenceFailure(f"Conversation {conversation_id} not found")

        message = ChatMessage(conversation_id=conversation_id, role=MessageRole(role), content=content)
        self.db.add(message)
        conversation.updated_at = utcnow()
        commit_or_fail(self.db, f"append {message.role.value} message to {conversation_id}")

        self.views.invalidate(
            keys.conversation_dependents(conversation.user_id, conversation_id),
            reason="message appended",
        )
        return message

    def list_recent(self, conversation_id: str, limit: int = 10) -> List[ChatMessage]:
        """
        Most recent messages in persistence order, oldest first.

        Args:
            conversation_id: Conversation ID
            limit: Maximum number of messages
        """
        if limit <= 0:
            return []
        newest_first = (
            self.db.query(ChatMessage)
            .filter(ChatMessage.conversation_id == conversation_id)
            .order_by(ChatMessage.id.desc())
            .limit(limit)
            .all()
        )
        return list(reversed(newest_first))

