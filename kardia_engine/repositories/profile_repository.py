"""Repository for user profile operations."""

import logging
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from kardia_engine.cache import keys
from kardia_engine.cache.store import CacheStore
from kardia_engine.cache.views import ViewCache
from kardia_engine.db.database import commit_or_fail
from kardia_engine.models.conversation import UserProfile
from kardia_engine.services.context_assembly import ProfileSnapshot, age_from_birthdate

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("first_name", "date_of_birth", "sex", "language")


def profile_to_dict(profile: UserProfile) -> Dict[str, Any]:
    return {
        "user_id": profile.user_id,
        "first_name": profile.first_name,
        "date_of_birth": profile.date_of_birth.isoformat() if profile.date_of_birth else None,
        "sex": profile.sex,
        "language": profile.language,
        "updated_at": profile.updated_at.isoformat() if profile.updated_at else None,
    }


class ProfileRepository:
    """Handle database operations for user profiles."""

    def __init__(self, db: Session, cache: CacheStore, ttl_seconds: int = 86400):
        self.db = db
        self.views = ViewCache(cache)
        self.ttl_seconds = ttl_seconds

    def get(self, user_id: str) -> Optional[UserProfile]:
        return self.db.query(UserProfile).filter(UserProfile.user_id == user_id).first()

    def get_view(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Cached profile fields, or None when the user has no profile."""
        def load() -> Optional[Dict[str, Any]]:
            profile = self.get(user_id)
            return profile_to_dict(profile) if profile else None

        return self.views.remember(keys.profile_key(user_id), self.ttl_seconds, load)

    def get_snapshot(self, user_id: str, today: Optional[date] = None) -> Optional[ProfileSnapshot]:
        """
        Prompt-facing projection of the profile.

        Age is derived from the birthdate on every call; only the raw
        fields are cached.
        """
        view = self.get_view(user_id)
        if view is None:
            return None
        born = date.fromisoformat(view["date_of_birth"]) if view.get("date_of_birth") else None
        return ProfileSnapshot(
            first_name=view.get("first_name"),
            age=age_from_birthdate(born, today),
            sex=view.get("sex"),
            language=view.get("language"),
        )

    def upsert(self, user_id: str, **fields: Any) -> UserProfile:
        """
        Create or update the user's profile.

        Args:
            user_id: Profile owner
            **fields: Any of first_name, date_of_birth, sex, language

        Returns:
            The saved profile

        Raises:
            ValueError: Unknown field name
            PersistenceFailure: Commit failed
        """
        unknown = set(fields) - set(PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")

        profile = self.get(user_id)
        if profile is None:
            profile = UserProfile(user_id=user_id)
            self.db.add(profile)
        for name, value in fields.items():
            setattr(profile, name, value)

        commit_or_fail(self.db, f"save profile for user {user_id}")
        self.views.invalidate(keys.profile_dependents(user_id), reason="profile saved")
        return profile
