"""
Context Assembly

Builds the bounded context package for one reply:
- Profile snapshot (or an explicit "no profile" marker)
- Up to N most recent risk-assessment summaries
- Up to M most recent prior messages, oldest first

Model turns are reduced to their first textual component so the history
stays compact. Reads go through the ContextStore protocol, which returns
plain data; nothing here touches the ORM. Assembly never aborts: a failed
read is logged and replaced by an empty section.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Protocol

from kardia_engine.services.reply_normalizer import parse_stored_reply

logger = logging.getLogger(__name__)

STRUCTURED_REPLY_PLACEHOLDER = "[structured reply]"


@dataclass(frozen=True)
class ProfileSnapshot:
    """Read-only projection of the profile fields used in prompts."""
    first_name: Optional[str] = None
    age: Optional[int] = None
    sex: Optional[str] = None
    language: Optional[str] = None
    missing: bool = False


# Returned when the user has no profile yet
NO_PROFILE = ProfileSnapshot(missing=True)


@dataclass(frozen=True)
class AssessmentSummary:
    assessed_at: datetime
    risk_percentage: float
    category: str


@dataclass(frozen=True)
class StoredMessage:
    """A persisted conversation turn as plain data."""
    id: int
    role: str
    content: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class HistoryTurn:
    role: str
    text: str


@dataclass
class AssembledContext:
    """Everything the prompt builder needs besides the new message."""
    profile: ProfileSnapshot = NO_PROFILE
    assessments: List[AssessmentSummary] = field(default_factory=list)
    history: List[HistoryTurn] = field(default_factory=list)

    @property
    def language(self) -> Optional[str]:
        return self.profile.language


class ContextStore(Protocol):
    """Read-only access to the data context assembly needs."""

    def load_profile_snapshot(self, user_id: str) -> Optional[ProfileSnapshot]:
        ...

    def load_recent_messages(self, conversation_id: str, limit: int) -> List[StoredMessage]:
        """Most recent ``limit`` messages, oldest first."""
        ...

    def load_recent_assessments(self, user_id: str, limit: int) -> List[AssessmentSummary]:
        """Most recent ``limit`` summaries, newest first."""
        ...


def age_from_birthdate(born: Optional[date], today: Optional[date] = None) -> Optional[int]:
    """Whole years since ``born``; None if unknown."""
    if born is None:
        return None
    today = today or date.today()
    return today.year - born.year - ((today.month, today.day) < (born.month, born.day))


def truncate_text(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def history_text(message: StoredMessage) -> str:
    """User turns as-is; model turns reduced to their first textual component."""
    if message.role != "model":
        return message.content
    reply = parse_stored_reply(message.content)
    if reply is None:
        return STRUCTURED_REPLY_PLACEHOLDER
    return reply.first_text() or STRUCTURED_REPLY_PLACEHOLDER


class ContextAssembler:
    """Assembles profile, assessment and history context for one reply."""

    def __init__(
        self,
        store: ContextStore,
        max_messages: int = 10,
        max_assessments: int = 3,
        max_message_chars: int = 200,
    ):
        self.store = store
        self.max_messages = max_messages
        self.max_assessments = max_assessments
        self.max_message_chars = max_message_chars

    def assemble(
        self,
        user_id: str,
        conversation_id: str,
        exclude_message_id: Optional[int] = None,
    ) -> AssembledContext:
        """
        Assemble context for a reply.

        Args:
            user_id: Owner of the conversation
            conversation_id: Conversation being answered
            exclude_message_id: The just-persisted user turn, which is sent
                separately as the new message

        Returns:
            AssembledContext (never raises)
        """
        return AssembledContext(
            profile=self._load_profile(user_id),
            assessments=self._load_assessments(user_id),
            history=self._load_history(conversation_id, exclude_message_id),
        )

    def _load_profile(self, user_id: str) -> ProfileSnapshot:
        try:
            snapshot = self.store.load_profile_snapshot(user_id)
        except Exception as e:
            logger.warning(f"Could not load profile for user {user_id}: {e}", exc_info=True)
            return NO_PROFILE
        return snapshot if snapshot is not None else NO_PROFILE

    def _load_assessments(self, user_id: str) -> List[AssessmentSummary]:
        if self.max_assessments <= 0:
            return []
        try:
            return list(self.store.load_recent_assessments(user_id, self.max_assessments))[:self.max_assessments]
        except Exception as e:
            logger.warning(f"Could not load assessments for user {user_id}: {e}", exc_info=True)
            return []

    def _load_history(self, conversation_id: str, exclude_message_id: Optional[int]) -> List[HistoryTurn]:
        if self.max_messages <= 0:
            return []
        # One extra row so excluding the current turn still leaves a full window
        limit = self.max_messages + (1 if exclude_message_id is not None else 0)
        try:
            messages = self.store.load_recent_messages(conversation_id, limit)
        except Exception as e:
            logger.warning(f"Could not load history for conversation {conversation_id}: {e}", exc_info=True)
            return []

        if exclude_message_id is not None:
            messages = [m for m in messages if m.id != exclude_message_id]
        messages = messages[-self.max_messages:]

        return [
            HistoryTurn(role=m.role, text=truncate_text(history_text(m), self.max_message_chars))
            for m in messages
        ]
