"""
Cache key builders.

Two keyspaces are kept apart: ``reply:`` for memoized model replies and
``view:`` for read-optimized aggregates. View keys are derived from explicit
dependency identifiers (owner id, conversation id) so every entry that depends
on an entity can be enumerated and deleted without a pattern scan.
"""

import hashlib
import re
from typing import List

_WHITESPACE = re.compile(r"\s+")


def normalize_message_text(text: str) -> str:
    """Trim and collapse internal whitespace; case is preserved."""
    return _WHITESPACE.sub(" ", text).strip()


def reply_key(conversation_id: str, message_text: str) -> str:
    """Memoization key for a (conversation, user message) pair."""
    digest = hashlib.sha256()
    digest.update(conversation_id.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(normalize_message_text(message_text).encode("utf-8"))
    return f"reply:conv:{conversation_id}:{digest.hexdigest()}"


# Derived views

def conversation_list_key(user_id: str) -> str:
    return f"view:user:{user_id}:conversations_list"


def conversation_detail_key(conversation_id: str) -> str:
    return f"view:conversation:{conversation_id}:details"


def dashboard_key(user_id: str) -> str:
    return f"view:user:{user_id}:dashboard_assessments"


def recent_assessments_key(user_id: str) -> str:
    return f"view:user:{user_id}:latest_assessments"


def profile_key(user_id: str) -> str:
    return f"view:user_profile:{user_id}"


# Dependency sets: every view whose value depends on the named entity

def conversation_dependents(owner_id: str, conversation_id: str) -> List[str]:
    """Views depending on a conversation or any of its messages."""
    return [conversation_detail_key(conversation_id), conversation_list_key(owner_id)]


def assessment_dependents(user_id: str) -> List[str]:
    """Views depending on any of a user's risk assessments."""
    return [recent_assessments_key(user_id), dashboard_key(user_id)]


def profile_dependents(user_id: str) -> List[str]:
    return [profile_key(user_id)]
