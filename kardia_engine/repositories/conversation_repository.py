"""Repository for conversation operations."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from kardia_engine.cache import keys
from kardia_engine.cache.store import CacheStore
from kardia_engine.cache.views import ViewCache
from kardia_engine.db.database import commit_or_fail
from kardia_engine.models.conversation import ChatMessage, Conversation, MessageRole, utcnow
from kardia_engine.services.reply_normalizer import parse_stored_reply

logger = logging.getLogger(__name__)

TITLE_LIMIT = 40
SNIPPET_LIMIT = 40
EMPTY_SNIPPET = "[New conversation]"


def limit_text(text: str, limit: int) -> str:
    """First ``limit`` characters, ellipsised when cut."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def message_snippet(message: Optional[ChatMessage]) -> str:
    """Short preview of a conversation's last message."""
    if message is None:
        return EMPTY_SNIPPET
    text = message.content
    if message.role == MessageRole.MODEL:
        reply = parse_stored_reply(message.content)
        if reply is not None and reply.first_text():
            text = reply.first_text()
    return limit_text(text, SNIPPET_LIMIT)


def message_to_dict(message: ChatMessage) -> Dict[str, Any]:
    content: Any = message.content
    if message.role == MessageRole.MODEL:
        reply = parse_stored_reply(message.content)
        content = reply.to_dict() if reply is not None else message.content
    return {
        "id": message.id,
        "role": message.role.value,
        "content": content,
        "created_at": message.created_at.isoformat(),
    }


class ConversationRepository:
    """Handle database operations for conversations."""

    def __init__(
        self,
        db: Session,
        cache: CacheStore,
        list_ttl_seconds: int = 600,
        detail_ttl_seconds: int = 3600,
    ):
        self.db = db
        self.views = ViewCache(cache)
        self.list_ttl_seconds = list_ttl_seconds
        self.detail_ttl_seconds = detail_ttl_seconds

    def create(self, user_id: str, first_message: str) -> Conversation:
        """
        Create a conversation titled after its first message.

        Args:
            user_id: Owner
            first_message: The message that opens the conversation

        Returns:
            Created conversation
        """
        conversation = Conversation(user_id=user_id, title=limit_text(first_message, TITLE_LIMIT))
        self.db.add(conversation)
        commit_or_fail(self.db, "create conversation")
        self._forget(conversation, "conversation created")
        return conversation

    def get(self, conversation_id: str) -> Optional[Conversation]:
        return self.db.query(Conversation).filter(Conversation.id == conversation_id).first()

    def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Conversation list with last-message snippets, most recently active first.

        Cached per owner.
        """
        def load() -> List[Dict[str, Any]]:
            conversations = (
                self.db.query(Conversation)
                .filter(Conversation.user_id == user_id)
                .order_by(Conversation.updated_at.desc())
                .all()
            )
            return [
                {
                    "id": c.id,
                    "title": c.title,
                    "last_message_snippet": message_snippet(self._last_message(c.id)),
                    "created_at": c.created_at.isoformat(),
                    "updated_at": c.updated_at.isoformat(),
                }
                for c in conversations
            ]

        return self.views.remember(keys.conversation_list_key(user_id), self.list_ttl_seconds, load)

    def get_detail(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        """Conversation with all messages; None if it does not exist."""
        conversation = self.get(conversation_id)
        if conversation is None:
            return None

        def load() -> Dict[str, Any]:
            messages = (
                self.db.query(ChatMessage)
                .filter(ChatMessage.conversation_id == conversation_id)
                .order_by(ChatMessage.id)
                .all()
            )
            return {
                "id": conversation.id,
                "user_id": conversation.user_id,
                "title": conversation.title,
                "created_at": conversation.created_at.isoformat(),
                "updated_at": conversation.updated_at.isoformat(),
                "messages": [message_to_dict(m) for m in messages],
            }

        return self.views.remember(keys.conversation_detail_key(conversation_id), self.detail_ttl_seconds, load)

    def update_title(self, conversation: Conversation, title: str) -> Conversation:
        conversation.title = title
        conversation.updated_at = utcnow()
        commit_or_fail(self.db, f"rename conversation {conversation.id}")
        self._forget(conversation, "title changed")
        return conversation

    def delete(self, conversation: Conversation) -> None:
        """Delete the conversation and all of its messages."""
        conversation_id, owner_id = conversation.id, conversation.user_id
        self.db.delete(conversation)
        commit_or_fail(self.db, f"delete conversation {conversation_id}")
        self.views.invalidate(
            keys.conversation_dependents(owner_id, conversation_id),
            reason="conversation deleted",
        )

    def _last_message(self, conversation_id: str) -> Optional[ChatMessage]:
        return (
            self.db.query(ChatMessage)
            .filter(ChatMessage.conversation_id == conversation_id)
            .order_by(ChatMessage.id.desc())
            .first()
        )

    def _forget(self, conversation: Conversation, reason: str) -> None:
        self.views.invalidate(
            keys.conversation_dependents(conversation.user_id, conversation.id),
            reason=reason,
        )

