"""Models package for Kardia Engine."""

from .conversation import (
    UserProfile, Conversation, ChatMessage, RiskAssessment, MessageRole, utcnow
)
from .reply import CanonicalReply, ReplyComponent, ComponentKind

__all__ = [
    "UserProfile",
    "Conversation",
    "ChatMessage",
    "RiskAssessment",
    "MessageRole",
    "utcnow",
    "CanonicalReply",
    "ReplyComponent",
    "ComponentKind",
]
